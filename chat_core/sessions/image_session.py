"""图像生成会话：按 Provider 链执行一次图像请求。

- 首选 pollinations 失败时回退到 LoremFlickr（只构造 URL，不会失败）；
- 首选 openrouter 失败时没有兜底，错误直接写入会话；
- 收尾时占位消息变为 image 消息或带 error 标记的 text 消息，
  并且总是持久化、通知、释放令牌。
"""

import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

from chat_core.config.settings import GenerationConfig
from chat_core.domain.cancellation import CancellationToken
from chat_core.domain.conversation import MessageStore
from chat_core.domain.exceptions import BusinessError, ConfigurationError, GenerationCancelled
from chat_core.domain.models import Conversation, Message, TextMessage
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.logging.notifier import Notifier
from chat_core.providers.openrouter_client import OpenRouterClient
from chat_core.providers.pollinations_client import PollinationsClient, loremflickr_url

PLACEHOLDER_CONTENT = "Generating image..."
FAILURE_TEMPLATE = "Image generation failed: {message}"
STOPPED_CONTENT = "Image generation stopped by user."
IMAGE_PROVIDERS = ("pollinations", "openrouter")


class ImageGenerationSession:
    def __init__(
        self,
        prompt: str,
        store: MessageStore,
        config: GenerationConfig,
        openrouter: OpenRouterClient,
        pollinations: PollinationsClient,
        token: CancellationToken,
        notifier: Notifier,
        on_finish: Callable[[CancellationToken], None],
    ):
        self.prompt = prompt
        self.token = token
        self.target_id: Optional[str] = None
        self._store = store
        self._config = config
        self._openrouter = openrouter
        self._pollinations = pollinations
        self._notifier = notifier
        self._on_finish = on_finish

    def run(self) -> Optional[Message]:
        start_time = time.time()
        provider = self._config.image_provider
        log_ctx: Dict[str, Any] = {"token_id": self.token.id, "provider": provider}

        conv = self._store.find_active()
        self._store.append(conv.id if conv else None, TextMessage(role="user", content=self.prompt))
        conv = self._store.find_active()
        placeholder = TextMessage(role="assistant", content=PLACEHOLDER_CONTENT)
        self.target_id = placeholder.id
        self._store.append(conv.id, placeholder)
        log_ctx["conversation_id"] = conv.id

        image_url: Optional[str] = None
        error_message: Optional[str] = None
        stopped = False
        try:
            self._notifier.notify("info", "Generating image...")
            self._log(logging.INFO, "Image generation requested", log_ctx)
            try:
                image_url = self._generate_primary(provider)
            except GenerationCancelled:
                stopped = True
            except BusinessError as e:
                if provider != "pollinations" and self.token.cancelled:
                    # 停止后连接被关闭导致的失败，按停止收尾
                    stopped = True
                else:
                    image_url, error_message = self._handle_failure(provider, e, log_ctx)
        except Exception as e:
            error_message = str(e) or e.__class__.__name__
            self._log(logging.ERROR, "Unexpected image generation failure", log_ctx, error=error_message)
            self._notifier.notify("error", f"Image generation failed: {error_message}")
        finally:
            try:
                self._finalize(conv, image_url, error_message, stopped)
            finally:
                self._on_finish(self.token)
                self._store.save(conv.id)
                self._log(
                    logging.INFO,
                    "Completed image generation",
                    log_ctx,
                    success=image_url is not None,
                    elapsed_seconds=round(time.time() - start_time, 2),
                )
        return self._target(conv)

    def _handle_failure(
        self, provider: str, e: BusinessError, log_ctx: Dict[str, Any]
    ) -> Tuple[Optional[str], Optional[str]]:
        """记录失败；pollinations 失败时返回兜底 URL，否则返回错误信息。"""

        self._log(logging.ERROR, "Image generation failed", log_ctx, code=e.code, error=e.message)
        self._notifier.notify("error", f"Image generation failed: {e.message}")
        if provider == "pollinations":
            return self._fallback(log_ctx), None
        return None, e.message

    def _generate_primary(self, provider: str) -> str:
        if provider not in IMAGE_PROVIDERS:
            raise ConfigurationError(code="UNKNOWN_PROVIDER", message=f"Unknown image provider: {provider}")
        if provider == "pollinations":
            return self._pollinations.generate(self.prompt, token=self.token)
        return self._openrouter.generate_image(
            self.prompt,
            self._config.image_model,
            self._config.credential,
            token=self.token,
        )

    def _fallback(self, log_ctx: Dict[str, Any]) -> str:
        self._log(logging.INFO, "Falling back to LoremFlickr", log_ctx)
        self._notifier.notify("info", "Pollinations.ai failed, falling back to LoremFlickr...")
        return loremflickr_url()

    def _finalize(
        self,
        conv: Conversation,
        image_url: Optional[str],
        error_message: Optional[str],
        stopped: bool,
    ) -> None:
        if image_url:
            patch = {
                "kind": "image",
                "content": image_url,
                "prompt": self.prompt,
                "error": False,
                "error_detail": None,
            }
            self._notifier.notify("success", "Image generated.")
        elif stopped:
            patch = {"kind": "text", "content": STOPPED_CONTENT, "prompt": self.prompt, "error": False, "error_detail": None}
            self._notifier.notify("info", "Image generation stopped.")
        else:
            message = error_message or "Image generation failed or returned no URL."
            patch = {
                "kind": "text",
                "content": FAILURE_TEMPLATE.format(message=message),
                "prompt": self.prompt,
                "error": True,
                "error_detail": message,
            }
        self._store.replace_by_id(conv.id, self.target_id, patch)

    def _target(self, conv: Conversation) -> Optional[Message]:
        idx = conv.index_of(self.target_id)
        return conv.messages[idx] if idx != -1 else None

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
