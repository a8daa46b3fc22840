"""一次性取消令牌。

令牌由 SessionCoordinator 在开始生成时创建、结束时丢弃；
会话在每个挂起点（请求前、读取每个分块前、应用每个增量前）检查它。
stop() 可能来自另一个线程（例如 UI 线程），因此内部使用 threading.Event。

阻塞在网络读取上的请求无法自己检查令牌，Transport 通过 add_callback
注册关闭连接的回调，cancel() 时立即执行，让阻塞的读取以异常返回。
"""

import threading
from typing import Callable, List
from uuid import uuid4

from chat_core.domain.exceptions import GenerationCancelled
from chat_core.infrastructure.logging.logger import logger


class CancellationToken:
    def __init__(self) -> None:
        self.id = f"t-{uuid4().hex}"
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    @classmethod
    def create(cls) -> "CancellationToken":
        return cls()

    def cancel(self) -> None:
        """请求停止；重复调用无副作用。"""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            self._run_callback(callback)

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """注册取消回调，返回注销函数。

        令牌已取消时回调立即在当前线程执行。
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._remove_callback(callback)
        self._run_callback(callback)
        return lambda: None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelled()

    def _remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def _run_callback(self, callback: Callable[[], None]) -> None:
        # stop() 常由 UI 线程调用，关闭连接失败不应传播到调用方
        try:
            callback()
        except Exception as e:
            logger.warning(
                "Cancellation callback failed",
                extra={"extra": {"token_id": self.id, "error": str(e)}},
            )

    def __repr__(self) -> str:
        return f"CancellationToken(id={self.id!r}, cancelled={self.cancelled})"
