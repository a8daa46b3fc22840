"""统一的会话与消息数据模型。

本模块定义编排层内部共享的标准数据结构：

- TextMessage / ImageMessage: 会话中的一条消息，按 kind 区分的两种变体。
- Conversation: 一个会话及其有序消息列表。
- ChatMessage / ChatRequest: 发给文本 Provider 的请求结构（与存储中的
  消息是相互独立的两份数据）。

消息变体在构造时校验各自的必填字段，非法数据抛出 ValidationError。
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional, Union
from uuid import uuid4

from chat_core.domain.exceptions import ValidationError


# 会话内消息角色；发给 Provider 时还会出现 system
Role = Literal["user", "assistant"]
ChatRole = Literal["system", "user", "assistant"]
MessageKind = Literal["text", "image"]

ROLES = ("user", "assistant")
CONVERSATION_TITLE_MAX_LENGTH = 40
DEFAULT_CONVERSATION_TITLE = "New Chat"
IMAGE_CONVERSATION_TITLE = "Image Generation"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_message_id() -> str:
    return f"m-{uuid4().hex}"


def new_conversation_id() -> str:
    return f"c-{uuid4().hex}"


def truncate_text(text: str, max_length: int) -> str:
    """超长时截断并以省略号结尾，结果长度不超过 max_length。"""
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def title_from_prompt(prompt: str) -> str:
    text = (prompt or "").strip()
    if not text:
        return DEFAULT_CONVERSATION_TITLE
    return truncate_text(text, CONVERSATION_TITLE_MAX_LENGTH)


@dataclass
class TextMessage:
    """文本消息（用户输入、流式回答或错误说明）。"""

    role: Role
    content: str
    id: str = field(default_factory=new_message_id)
    timestamp: datetime = field(default_factory=_utcnow)
    error: bool = False
    error_detail: Optional[str] = None
    prompt: Optional[str] = None
    kind: Literal["text"] = field(default="text", init=False)

    def __post_init__(self) -> None:
        _check_common(self)


@dataclass
class ImageMessage:
    """图像消息：content 为图片 URL，prompt 为原始提示词。"""

    role: Role
    content: str
    prompt: str
    id: str = field(default_factory=new_message_id)
    timestamp: datetime = field(default_factory=_utcnow)
    error: bool = False
    error_detail: Optional[str] = None
    kind: Literal["image"] = field(default="image", init=False)

    def __post_init__(self) -> None:
        _check_common(self)
        if not self.content:
            raise ValidationError(code="INVALID_MESSAGE", message="Image message requires a URL")
        if not isinstance(self.prompt, str):
            raise ValidationError(code="INVALID_MESSAGE", message="Image message requires a prompt")


Message = Union[TextMessage, ImageMessage]


def _check_common(msg: Message) -> None:
    if msg.role not in ROLES:
        raise ValidationError(code="INVALID_MESSAGE", message=f"Unknown role: {msg.role!r}")
    if not isinstance(msg.content, str):
        raise ValidationError(code="INVALID_MESSAGE", message="Message content must be a string")
    if not msg.id:
        raise ValidationError(code="INVALID_MESSAGE", message="Message id must not be empty")


def message_to_dict(msg: Message) -> Dict[str, Any]:
    payload = {f.name: getattr(msg, f.name) for f in fields(msg)}
    payload["timestamp"] = msg.timestamp.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    return payload


def message_from_dict(data: Mapping[str, Any]) -> Message:
    """按 kind 重建对应的消息变体。"""

    kind = data.get("kind", "text")
    ts = data.get("timestamp")
    if isinstance(ts, str):
        ts = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    common: Dict[str, Any] = {
        "id": data.get("id") or new_message_id(),
        "role": data.get("role"),
        "content": data.get("content") if data.get("content") is not None else "",
        "timestamp": ts or _utcnow(),
        "error": bool(data.get("error", False)),
        "error_detail": data.get("error_detail"),
    }
    if kind == "image":
        return ImageMessage(prompt=data.get("prompt"), **common)
    if kind == "text":
        return TextMessage(prompt=data.get("prompt"), **common)
    raise ValidationError(code="INVALID_MESSAGE", message=f"Unknown message kind: {kind!r}")


@dataclass
class Conversation:
    id: str
    title: str
    messages: List[Message] = field(default_factory=list)
    last_updated: datetime = field(default_factory=_utcnow)

    def touch(self) -> None:
        self.last_updated = _utcnow()

    def index_of(self, message_id: str) -> int:
        for i, msg in enumerate(self.messages):
            if msg.id == message_id:
                return i
        return -1


def new_conversation(prompt: str) -> Conversation:
    return Conversation(id=new_conversation_id(), title=title_from_prompt(prompt))


def conversation_to_dict(conv: Conversation) -> Dict[str, Any]:
    return {
        "id": conv.id,
        "title": conv.title,
        "last_updated": conv.last_updated.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
        "messages": [message_to_dict(m) for m in conv.messages],
    }


def conversation_from_dict(data: Mapping[str, Any]) -> Conversation:
    return Conversation(
        id=data["id"],
        title=data.get("title") or DEFAULT_CONVERSATION_TITLE,
        messages=[message_from_dict(m) for m in data.get("messages") or []],
        last_updated=datetime.fromisoformat(str(data["last_updated"]).replace("Z", "+00:00")),
    )


@dataclass
class ChatMessage:
    """发给 Provider 的一条对话消息。"""

    role: ChatRole
    content: str


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    由 TextGenerationSession 根据会话历史构造，Provider 适配层负责把
    本结构转换成具体 API 的 JSON 请求体。
    """

    model: str
    messages: List[ChatMessage]
    stream: bool = True
