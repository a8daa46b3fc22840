"""对外 API 服务模块。

提供简化的函数接口供上层应用（UI、命令行壳等）调用：
组装默认的存储、Transport 与协调器，并把会话转换为纯字典视图。
"""

from typing import Any, Dict, List, Optional

from chat_core.config.settings import Settings, settings as default_settings
from chat_core.domain.conversation import ConversationRepository, MessageStore
from chat_core.domain.models import Conversation, message_to_dict
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.logging.notifier import Notifier
from chat_core.infrastructure.storage.json_store import JsonConversationRepository
from chat_core.providers.base import Transport
from chat_core.providers.http_transport import HttpxTransport
from chat_core.providers.openrouter_client import OpenRouterClient
from chat_core.providers.pollinations_client import PollinationsClient
from chat_core.sessions.coordinator import SessionCoordinator


def create_coordinator(
    settings: Optional[Settings] = None,
    transport: Optional[Transport] = None,
    repository: Optional[ConversationRepository] = None,
    notifier: Optional[Notifier] = None,
    load_existing: bool = True,
) -> SessionCoordinator:
    """组装一个完整的 SessionCoordinator。

    Args:
        settings: 配置实例（可选，默认使用全局 settings）
        transport: HTTP Transport（可选，默认 HttpxTransport）
        repository: 会话持久化实现（可选，默认 JSON 文件存储）
        notifier: 通知出口（可选，默认写日志）
        load_existing: 是否从持久化层加载已有会话

    Returns:
        每次调用都返回一个全新的协调器，彼此不共享状态
    """
    cfg = settings or default_settings
    transport = transport or HttpxTransport(cfg)
    repository = repository or JsonConversationRepository(root=cfg.storage_root)
    store = MessageStore(repository=repository)
    if load_existing:
        conversations = repository.load_all()
        store.load(conversations)
        logger.info("Loaded conversations", extra={"extra": {"count": len(conversations)}})
    return SessionCoordinator(
        store=store,
        config_source=cfg.snapshot,
        openrouter=OpenRouterClient(transport, cfg),
        pollinations=PollinationsClient(transport),
        notifier=notifier,
    )


def conversation_view(conv: Conversation) -> Dict[str, Any]:
    """会话的完整字典视图（含消息）。"""
    return {
        "id": conv.id,
        "title": conv.title,
        "last_updated": conv.last_updated.isoformat(),
        "messages": [message_to_dict(m) for m in conv.messages],
    }


def list_conversations(coordinator: SessionCoordinator) -> List[Dict[str, Any]]:
    """列出所有会话（按最近更新排序），不含消息正文。"""
    active_id = coordinator.store.active_id
    return [
        {
            "id": c.id,
            "title": c.title,
            "last_updated": c.last_updated.isoformat(),
            "message_count": len(c.messages),
            "active": c.id == active_id,
        }
        for c in coordinator.store.list_conversations()
    ]


def get_conversation_messages(coordinator: SessionCoordinator, conversation_id: str) -> List[Dict[str, Any]]:
    conv = coordinator.store.get(conversation_id)
    if conv is None:
        return []
    return [message_to_dict(m) for m in conv.messages]
