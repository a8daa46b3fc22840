"""领域层模型与协议。

包含：
- models: 消息变体（TextMessage / ImageMessage）、Conversation 与请求模型。
- conversation: 内存中的 MessageStore 及 ConversationRepository 抽象。
- cancellation: 一次性取消令牌。
- exceptions: 业务异常类型定义。
"""
