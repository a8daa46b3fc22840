"""生成会话与会话协调器。"""
