"""会话协调器：保证同一时刻至多一个生成在进行。

状态只有两个：Idle（无令牌）与 Generating（持有令牌）。

- start(kind, prompt): Generating 时拒绝（提示 warning，不创建令牌、不改消息）；
  否则创建令牌并分派给文本/图像会话，在调用线程上同步执行。
- stop(): Generating 时取消当前令牌；Idle 时仅提示无可停止的生成。
- 会话的收尾回调与协调器自身的 finally 都会回到 Idle，且只生效一次。
- regenerate(): 仅在 Idle 时可用，删除末尾的助手消息后重新发起文本生成。
"""

import logging
import threading
from typing import Callable, Literal, Optional

from chat_core.config.settings import GenerationConfig
from chat_core.domain.cancellation import CancellationToken
from chat_core.domain.conversation import MessageStore
from chat_core.domain.exceptions import ConfigurationError
from chat_core.domain.models import Conversation
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.logging.notifier import LogNotifier, Notifier
from chat_core.providers.openrouter_client import OpenRouterClient
from chat_core.providers.pollinations_client import PollinationsClient
from chat_core.sessions.image_session import ImageGenerationSession
from chat_core.sessions.text_session import TextGenerationSession

GenerationKind = Literal["text", "image"]
BUSY_WARNING = "Please wait for the current generation to complete or stop it."


class SessionCoordinator:
    def __init__(
        self,
        store: MessageStore,
        config_source: Callable[[], GenerationConfig],
        openrouter: OpenRouterClient,
        pollinations: PollinationsClient,
        notifier: Optional[Notifier] = None,
    ):
        # config_source 每次生成时取一次快照，设置变更在下一轮生效
        self._store = store
        self._config_source = config_source
        self._openrouter = openrouter
        self._pollinations = pollinations
        self._notifier = notifier or LogNotifier()
        self._lock = threading.Lock()
        self._token: Optional[CancellationToken] = None
        self._generation_active = False

    @property
    def store(self) -> MessageStore:
        return self._store

    @property
    def generation_active(self) -> bool:
        return self._generation_active

    @property
    def current_token(self) -> Optional[CancellationToken]:
        return self._token

    def start(self, kind: GenerationKind, prompt: str) -> bool:
        """开始一轮生成；被拒绝时返回 False。"""

        prompt = (prompt or "").strip()
        if not prompt:
            self._notifier.notify("warning", "Please enter a message or prompt.")
            return False
        if kind not in ("text", "image"):
            raise ConfigurationError(code="UNKNOWN_KIND", message=f"Unknown generation kind: {kind!r}")

        with self._lock:
            if self._generation_active:
                busy = True
            else:
                busy = False
                token = CancellationToken.create()
                self._token = token
                self._generation_active = True
        if busy:
            self._notifier.notify("warning", BUSY_WARNING)
            logger.warning("Rejected start while generating", extra={"extra": {"kind": kind}})
            return False

        logger.info("Generation started", extra={"extra": {"kind": kind, "token_id": token.id}})
        try:
            config = self._config_source()
            if kind == "text":
                TextGenerationSession(
                    prompt, self._store, config, self._openrouter, token, self._notifier, self._release
                ).run()
            else:
                ImageGenerationSession(
                    prompt,
                    self._store,
                    config,
                    self._openrouter,
                    self._pollinations,
                    token,
                    self._notifier,
                    self._release,
                ).run()
        except Exception as e:
            logger.log(
                logging.ERROR,
                "Error handling message/image generation",
                exc_info=True,
                extra={"extra": {"kind": kind, "token_id": token.id, "error": str(e)}},
            )
            self._notifier.notify("error", str(e) or "An internal error occurred while processing your request.")
        finally:
            self._release(token)
        return True

    def stop(self) -> bool:
        token = self._token
        if token is None or not self._generation_active:
            logger.warning("No active generation to stop.")
            self._notifier.notify("info", "No active generation to stop.")
            return False
        token.cancel()
        logger.info("AI generation manually aborted.", extra={"extra": {"token_id": token.id}})
        return True

    def regenerate(self) -> bool:
        """删除最后一条助手消息，并以最近一条用户文本消息重新生成。"""

        if self._generation_active:
            self._notifier.notify("warning", BUSY_WARNING)
            return False
        conv = self._store.find_active()
        if conv is None or len(conv.messages) < 2:
            self._notifier.notify("info", "No previous AI response to regenerate.")
            return False
        last_user = next(
            (m for m in reversed(conv.messages) if m.role == "user" and m.kind == "text"),
            None,
        )
        if last_user is None:
            self._notifier.notify("info", "No user message found to regenerate from.")
            return False
        last = conv.messages[-1]
        if last.role == "assistant":
            self._store.remove_by_id(conv.id, last.id)
        logger.info("Regenerating response", extra={"extra": {"conversation_id": conv.id}})
        self._notifier.notify("info", "Regenerating AI response...")
        return self.start("text", last_user.content)

    # ---- 会话管理 ----

    def new_conversation(self, title_prompt: str = "") -> Optional[Conversation]:
        if self._generation_active:
            self._notifier.notify("warning", BUSY_WARNING)
            return None
        return self._store.start_conversation(title_prompt)

    def load_conversation(self, conversation_id: str) -> bool:
        if self._generation_active:
            self._notifier.notify("warning", BUSY_WARNING)
            return False
        if not self._store.set_active(conversation_id):
            self._notifier.notify("error", "Conversation not found.")
            return False
        logger.info("Loaded conversation", extra={"extra": {"conversation_id": conversation_id}})
        return True

    def delete_conversation(self, conversation_id: str) -> bool:
        if self._generation_active:
            self._notifier.notify("warning", BUSY_WARNING)
            return False
        deleted = self._store.delete(conversation_id)
        if deleted:
            logger.info("Deleted conversation", extra={"extra": {"conversation_id": conversation_id}})
        return deleted

    def clear_conversations(self) -> bool:
        if self._generation_active:
            self._notifier.notify("warning", BUSY_WARNING)
            return False
        self._store.clear()
        logger.info("Cleared all conversations.")
        return True

    def _release(self, token: CancellationToken) -> None:
        """回到 Idle 并丢弃令牌；同一令牌重复释放无副作用。"""

        with self._lock:
            if self._token is not token:
                return
            self._token = None
            self._generation_active = False
        logger.info("Generation finished", extra={"extra": {"token_id": token.id}})
