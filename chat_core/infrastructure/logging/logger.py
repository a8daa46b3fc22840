"""chat_core 的 JSON 行日志。

每条记录一行 JSON，结构化字段通过 ``extra={"extra": {...}}`` 传入并合并到顶层。
Notifier 发出的提示带 ``notice`` 字段，输出时标记为 ``kind="notice"``，
与普通运行日志（``kind="log"``）区分，便于按类型过滤。
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from chat_core.config.settings import settings

LOGGER_NAME = "chat_core"
LOG_FILE_NAME = "chat.log"
NOTICE_FIELD = "notice"
REDACTED_MSG_LENGTH = 64


class ChatJsonFormatter(logging.Formatter):
    def __init__(self, redact_content: bool = False):
        super().__init__()
        self.redact_content = redact_content

    def format(self, record: logging.LogRecord) -> str:
        extra = getattr(record, "extra", None)
        fields: Dict[str, Any] = dict(extra) if isinstance(extra, dict) else {}
        notice = fields.pop(NOTICE_FIELD, None)

        msg = record.getMessage() or ""
        if self.redact_content:
            msg = msg[:REDACTED_MSG_LENGTH]
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "name": record.name,
            "kind": "notice" if notice else "log",
            "msg": msg,
        }
        if notice:
            payload["notice_level"] = notice
        payload.update(fields)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger() -> logging.Logger:
    log = logging.getLogger(LOGGER_NAME)
    log.setLevel(logging.INFO)
    # 重复导入时不重复挂载 handler
    if log.handlers:
        return log
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_dir / LOG_FILE_NAME, encoding="utf-8")
    handler.setLevel(logging.INFO)
    handler.setFormatter(ChatJsonFormatter(redact_content=settings.log_redact_content))
    log.addHandler(handler)
    return log


logger = setup_logger()
