import json
import os
import shutil
from pathlib import Path
from typing import List
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.conversation import ConversationRepository
from chat_core.domain.exceptions import BusinessError, StorageError
from chat_core.domain.models import Conversation, conversation_from_dict, conversation_to_dict
from chat_core.infrastructure.logging.logger import logger


class JsonConversationRepository(ConversationRepository):
    """每个会话一个 JSON 文件，写入采用临时文件 + os.replace 保证原子性。"""

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._conv_root = self._root / "conversations"
        self._conv_root.mkdir(parents=True, exist_ok=True)

    def save(self, conversation: Conversation) -> None:
        path = self._path(conversation.id)
        tmp_path = self._conv_root / f"{conversation.id}.{uuid4().hex}.json.tmp"
        try:
            tmp_path.write_text(json.dumps(conversation_to_dict(conversation), ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(code="STORE_WRITE_ERROR", message=str(e))

    def get(self, conversation_id: str) -> Conversation:
        path = self._path(conversation_id)
        if not path.exists():
            raise StorageError(code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404)
        try:
            return conversation_from_dict(json.loads(path.read_text(encoding="utf-8")))
        except BusinessError:
            raise
        except (OSError, KeyError, ValueError) as e:
            raise StorageError(code="STORE_READ_ERROR", message=str(e))

    def load_all(self) -> List[Conversation]:
        items: List[Conversation] = []
        for path in sorted(self._conv_root.glob("*.json")):
            try:
                items.append(conversation_from_dict(json.loads(path.read_text(encoding="utf-8"))))
            except (BusinessError, OSError, KeyError, ValueError) as e:
                # 损坏的会话文件不影响其余会话加载
                logger.warning("Skipped unreadable conversation file", extra={"extra": {"path": str(path), "error": str(e)}})
                continue
        items.sort(key=lambda c: c.last_updated, reverse=True)
        return items

    def delete(self, conversation_id: str) -> None:
        path = self._path(conversation_id)
        if not path.exists():
            raise StorageError(code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404)
        try:
            path.unlink()
        except OSError as e:
            raise StorageError(code="STORE_DELETE_ERROR", message=str(e))

    def clear(self) -> None:
        try:
            shutil.rmtree(self._conv_root)
            self._conv_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(code="STORE_DELETE_ERROR", message=str(e))

    def _path(self, conversation_id: str) -> Path:
        return self._conv_root / f"{conversation_id}.json"
