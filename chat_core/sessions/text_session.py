"""文本生成会话。

一次 run() 驱动一轮流式对话：

1. 确保有活动会话（没有或为空时以提示词为标题新建）。
2. 追加用户消息，按“system + 历史文本消息 + 本轮提示词”构造请求。
3. 追加一条空的助手占位消息，作为本轮唯一的增量修改目标。
4. 每收到一个增量就把累积文本写回占位消息（不合并、不节流）。
5. 正常结束原样收尾；被取消时附加停止提示；其余失败附加错误提示并标记 error。
6. 无论结果如何，最后都释放令牌并请求持久化。
"""

import logging
import time
from contextlib import closing
from typing import Any, Callable, Dict, List, Optional

from chat_core.config.settings import GenerationConfig
from chat_core.domain.cancellation import CancellationToken
from chat_core.domain.conversation import MessageStore
from chat_core.domain.exceptions import BusinessError, GenerationCancelled
from chat_core.domain.models import ChatMessage, ChatRequest, Conversation, TextMessage
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.logging.notifier import Notifier
from chat_core.providers.openrouter_client import OpenRouterClient

CANCELLED_NOTICE = "\n\n*(Generation stopped by user)*"
ERROR_NOTICE_TEMPLATE = "\n\n**Error:** {message}"
MISSING_KEY_CONTENT = "Error: OpenRouter API key is not configured. Please check settings."
MISSING_KEY_DETAIL = "API key not configured."


class TextGenerationSession:
    def __init__(
        self,
        prompt: str,
        store: MessageStore,
        config: GenerationConfig,
        client: OpenRouterClient,
        token: CancellationToken,
        notifier: Notifier,
        on_finish: Callable[[CancellationToken], None],
    ):
        self.prompt = prompt
        self.token = token
        self.target_id: Optional[str] = None
        self._store = store
        self._config = config
        self._client = client
        self._notifier = notifier
        self._on_finish = on_finish
        self._accumulated = ""

    def run(self) -> Optional[TextMessage]:
        """执行一轮生成，返回收尾后的助手消息。"""

        start_time = time.time()
        conv: Optional[Conversation] = None
        log_ctx: Dict[str, Any] = {"token_id": self.token.id, "model": self._config.model_id}
        try:
            if not self._config.credential:
                conv = self._reject_missing_credential()
                return self._target(conv)

            conv = self._store.find_active()
            if conv is None or not conv.messages:
                conv = self._store.start_conversation(self.prompt)
            log_ctx["conversation_id"] = conv.id

            self._store.append(conv.id, TextMessage(role="user", content=self.prompt))
            req = ChatRequest(model=self._config.model_id, messages=self._build_messages(conv))

            placeholder = TextMessage(role="assistant", content="")
            self.target_id = placeholder.id
            self._store.append(conv.id, placeholder)
            self._log(logging.INFO, "Calling provider (stream)", log_ctx, message_count=len(req.messages))

            self._pump(conv, req)
            self._log(logging.INFO, "Stream completed", log_ctx, chars=len(self._accumulated))
        except GenerationCancelled:
            self._stopped(conv, log_ctx)
        except BusinessError as e:
            # 停止后连接被关闭，随之而来的读取失败仍按停止处理
            if self.token.cancelled:
                self._stopped(conv, log_ctx, error=e.message)
            else:
                self._fail(conv, e.message, log_ctx, code=e.code)
        except Exception as e:
            # 渲染层监听器等意外异常同样落到错误消息上
            if self.token.cancelled:
                self._stopped(conv, log_ctx, error=str(e))
            else:
                self._fail(conv, str(e) or e.__class__.__name__, log_ctx, code="INTERNAL_ERROR")
        finally:
            self._on_finish(self.token)
            if conv is not None:
                self._store.save(conv.id)
            self._log(
                logging.INFO,
                "Completed text generation",
                log_ctx,
                elapsed_seconds=round(time.time() - start_time, 2),
            )
        return self._target(conv)

    def _build_messages(self, conv: Conversation) -> List[ChatMessage]:
        # 历史里已包含本轮用户消息，末尾仍再追加一次提示词，与线上会话格式保持一致
        messages = [ChatMessage(role="system", content=self._config.system_prompt)]
        for msg in conv.messages:
            if msg.kind == "text":
                messages.append(ChatMessage(role=msg.role, content=msg.content))
        messages.append(ChatMessage(role="user", content=self.prompt))
        return messages

    def _pump(self, conv: Conversation, req: ChatRequest) -> None:
        stream = self._client.chat_stream(req, self._config.credential, token=self.token)
        with closing(stream):
            for delta in stream:
                self.token.raise_if_cancelled()
                self._accumulated += delta
                self._store.replace_by_id(conv.id, self.target_id, {"content": self._accumulated})
        self.token.raise_if_cancelled()

    def _stopped(self, conv: Optional[Conversation], log_ctx: Dict[str, Any], **fields: Any) -> None:
        self._accumulated += CANCELLED_NOTICE
        self._finalize(conv, error=False)
        self._log(logging.INFO, "Chat stream aborted by user", log_ctx, **fields)
        self._notifier.notify("info", "AI response generation stopped.")

    def _fail(self, conv: Optional[Conversation], message: str, log_ctx: Dict[str, Any], code: str) -> None:
        self._accumulated += ERROR_NOTICE_TEMPLATE.format(message=message)
        self._finalize(conv, error=True, detail=message)
        self._log(logging.ERROR, "Error streaming chat response", log_ctx, code=code, error=message)
        self._notifier.notify("error", f"AI chat error: {message}")

    def _finalize(self, conv: Optional[Conversation], error: bool, detail: Optional[str] = None) -> None:
        if conv is None or self.target_id is None:
            return
        self._store.replace_by_id(
            conv.id,
            self.target_id,
            {"content": self._accumulated, "error": error, "error_detail": detail},
        )

    def _reject_missing_credential(self) -> Conversation:
        """未配置密钥：不发请求，直接写入一条已收尾的错误消息。"""

        self._notifier.notify("error", "OpenRouter API key is not configured in settings.")
        logger.error("API key missing for chat.")
        conv = self._store.find_active()
        self._store.append(conv.id if conv else None, TextMessage(role="user", content=self.prompt))
        conv = self._store.find_active()
        reply = TextMessage(
            role="assistant",
            content=MISSING_KEY_CONTENT,
            error=True,
            error_detail=MISSING_KEY_DETAIL,
        )
        self.target_id = reply.id
        self._store.append(conv.id, reply)
        return conv

    def _target(self, conv: Optional[Conversation]) -> Optional[TextMessage]:
        if conv is None or self.target_id is None:
            return None
        idx = conv.index_of(self.target_id)
        return conv.messages[idx] if idx != -1 else None

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
