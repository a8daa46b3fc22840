"""瞬时通知（toast）出口。

编排层通过 Notifier 协议上报 info/warning/error 提示，具体 UI
可以自行实现；默认实现仅写入日志。
"""

import logging
from typing import Literal, Protocol

from chat_core.infrastructure.logging.logger import logger


NoticeLevel = Literal["info", "success", "warning", "error"]

_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class Notifier(Protocol):
    def notify(self, level: NoticeLevel, message: str) -> None:
        ...


class LogNotifier:
    """把通知写到 chat_core 日志中。"""

    def notify(self, level: NoticeLevel, message: str) -> None:
        logger.log(_LEVELS.get(level, logging.INFO), message, extra={"extra": {"notice": level}})
