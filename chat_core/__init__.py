"""Chat Core 顶层包。

该包提供对话与生成编排的核心实现：配置加载、会话/消息模型、
取消令牌、SSE 流解码、OpenRouter 与图像 Provider 适配、
文本/图像生成会话、会话协调器以及 JSON 持久化。
"""

from chat_core.api.service import create_coordinator
from chat_core.sessions.coordinator import SessionCoordinator

__all__ = ["create_coordinator", "SessionCoordinator"]
