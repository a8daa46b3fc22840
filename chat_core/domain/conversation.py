"""内存中的会话与消息存储。

MessageStore 是编排层唯一持有的可变状态：会话列表 + 当前活动会话。
每次变更都会：

1. 更新会话的 last_updated；
2. 同步通知订阅者（渲染层据此重绘）；
3. 把会话交给 ConversationRepository 持久化（失败只记日志，不影响生成）。
"""

import dataclasses
import logging
from typing import Any, Callable, Dict, Iterable, List, Literal, Mapping, Optional, Protocol

from chat_core.domain.exceptions import BusinessError
from chat_core.domain.models import (
    IMAGE_CONVERSATION_TITLE,
    Conversation,
    Message,
    message_from_dict,
    message_to_dict,
    new_conversation,
)
from chat_core.infrastructure.logging.logger import logger


StoreEvent = Literal["created", "appended", "updated", "removed", "deleted", "cleared", "activated"]
StoreListener = Callable[[StoreEvent, Optional[Conversation]], None]


class ConversationRepository(Protocol):
    def save(self, conversation: Conversation) -> None:
        ...

    def load_all(self) -> List[Conversation]:
        ...

    def delete(self, conversation_id: str) -> None:
        ...

    def clear(self) -> None:
        ...


class MessageStore:
    def __init__(self, repository: Optional[ConversationRepository] = None):
        self._repository = repository
        self._conversations: List[Conversation] = []
        self._active_id: Optional[str] = None
        self._listeners: List[StoreListener] = []

    # ---- 订阅 ----

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """注册变更监听器，返回取消订阅函数。"""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ---- 查询 ----

    @property
    def active_id(self) -> Optional[str]:
        return self._active_id

    def find_active(self) -> Optional[Conversation]:
        if self._active_id is None:
            return None
        return self.get(self._active_id)

    def get(self, conversation_id: str) -> Optional[Conversation]:
        for conv in self._conversations:
            if conv.id == conversation_id:
                return conv
        return None

    def list_conversations(self) -> List[Conversation]:
        return sorted(self._conversations, key=lambda c: c.last_updated, reverse=True)

    # ---- 变更 ----

    def load(self, conversations: Iterable[Conversation]) -> None:
        """用持久化层读出的会话初始化存储（不回写）。"""
        self._conversations = sorted(conversations, key=lambda c: c.last_updated, reverse=True)
        if self._active_id is not None and self.get(self._active_id) is None:
            self._active_id = None
        self._emit("cleared", None)

    def start_conversation(self, prompt: str) -> Conversation:
        conv = new_conversation(prompt)
        self._conversations.insert(0, conv)
        self._active_id = conv.id
        logger.info("Started new conversation", extra={"extra": {"conversation_id": conv.id}})
        self._commit("created", conv)
        return conv

    def set_active(self, conversation_id: Optional[str]) -> bool:
        if conversation_id is not None and self.get(conversation_id) is None:
            return False
        self._active_id = conversation_id
        self._emit("activated", self.find_active())
        return True

    def append(self, conversation_id: Optional[str], message: Message) -> bool:
        """追加消息。

        conversation_id 为 None 时写入活动会话，没有活动会话则先新建；
        指定的会话不存在时不写入任何会话，返回 False。
        """
        if conversation_id is not None:
            conv = self.get(conversation_id)
            if conv is None:
                logger.warning(
                    "Append to unknown conversation ignored",
                    extra={"extra": {"conversation_id": conversation_id, "message_id": message.id}},
                )
                return False
        else:
            conv = self.find_active()
        if conv is None:
            seed = message.content if message.kind == "text" else IMAGE_CONVERSATION_TITLE
            conv = self.start_conversation(seed)
        conv.messages.append(message)
        self._commit("appended", conv)
        return True

    def replace_by_id(self, conversation_id: str, message_id: str, patch: Mapping[str, Any]) -> bool:
        """按 id 修改消息；找不到会话或消息时返回 False。

        patch 中若改变了 kind，会重建对应的消息变体并保留原 id。
        """
        conv = self.get(conversation_id)
        if conv is None:
            return False
        idx = conv.index_of(message_id)
        if idx == -1:
            return False
        current = conv.messages[idx]
        changes = {k: v for k, v in patch.items() if k != "id"}
        if changes.get("kind", current.kind) != current.kind:
            data = message_to_dict(current)
            data.update(changes)
            data["timestamp"] = current.timestamp
            updated = message_from_dict(data)
        else:
            changes.pop("kind", None)
            updated = dataclasses.replace(current, **changes)
        conv.messages[idx] = updated
        self._commit("updated", conv)
        return True

    def remove_by_id(self, conversation_id: str, message_id: str) -> bool:
        conv = self.get(conversation_id)
        if conv is None:
            return False
        idx = conv.index_of(message_id)
        if idx == -1:
            return False
        del conv.messages[idx]
        self._commit("removed", conv)
        return True

    def delete(self, conversation_id: str) -> bool:
        conv = self.get(conversation_id)
        if conv is None:
            return False
        self._conversations.remove(conv)
        if self._active_id == conversation_id:
            self._active_id = None
        if self._repository is not None:
            try:
                self._repository.delete(conversation_id)
            except BusinessError as e:
                self._log_store_error("delete", conversation_id, e)
        self._emit("deleted", conv)
        return True

    def clear(self) -> None:
        self._conversations = []
        self._active_id = None
        if self._repository is not None:
            try:
                self._repository.clear()
            except BusinessError as e:
                self._log_store_error("clear", None, e)
        self._emit("cleared", None)

    def save(self, conversation_id: str) -> None:
        """显式请求持久化（会话收尾时调用）。"""
        conv = self.get(conversation_id)
        if conv is not None:
            self._persist(conv)

    # ---- 内部 ----

    def _commit(self, event: StoreEvent, conv: Conversation) -> None:
        conv.touch()
        self._emit(event, conv)
        self._persist(conv)

    def _emit(self, event: StoreEvent, conv: Optional[Conversation]) -> None:
        for listener in list(self._listeners):
            listener(event, conv)

    def _persist(self, conv: Conversation) -> None:
        if self._repository is None:
            return
        try:
            self._repository.save(conv)
        except BusinessError as e:
            self._log_store_error("save", conv.id, e)

    @staticmethod
    def _log_store_error(op: str, conversation_id: Optional[str], err: BusinessError) -> None:
        payload: Dict[str, Any] = {"op": op, "conversation_id": conversation_id, "code": err.code}
        logger.log(logging.ERROR, f"Persistence failed: {err.message}", extra={"extra": payload})
