"""OpenRouter Provider 适配器。

本模块负责：

1. 接收统一的 ChatRequest，转换为 chat/completions 的流式请求并逐个产出文本增量。
2. 调用 images/generations 接口生成图片（图像 Provider B），返回第一张图片的 URL。
3. 把非 2xx 响应中的结构化错误体（``{"error": {"message": ...}}``）解析为
   ProviderError，没有错误体时使用 HTTP 状态描述。

网络层细节由注入的 Transport 负责，这里只处理请求/响应的格式转换。
"""

from contextlib import closing
from typing import Any, Dict, Iterator, Optional

from chat_core.domain.cancellation import CancellationToken
from chat_core.domain.exceptions import (
    ConfigurationError,
    ImageGenerationError,
    NetworkError,
    ProviderError,
)
from chat_core.domain.models import ChatMessage, ChatRequest
from chat_core.providers.base import Transport, TransportResponse
from chat_core.providers.registry import IMAGE_DEFAULT_SIZE, IMAGE_QUALITY, OPENROUTER_CONFIG
from chat_core.providers.stream_decoder import iter_deltas


class OpenRouterClient:
    """OpenRouter 客户端实现。

    - name: Provider 名称（供日志使用）。
    - chat_stream: 流式文本生成，产出增量字符串。
    - generate_image: 单次图像生成，返回图片 URL。
    """

    name = "openrouter"

    def __init__(self, transport: Transport, settings):
        # settings 提供 app_name / app_referer 请求头
        self._transport = transport
        self._settings = settings

    @property
    def chat_url(self) -> str:
        return f"{OPENROUTER_CONFIG.base_url}/chat/completions"

    @property
    def images_url(self) -> str:
        return f"{OPENROUTER_CONFIG.base_url}/images/generations"

    def chat_stream(
        self,
        req: ChatRequest,
        credential: Optional[str],
        token: Optional[CancellationToken] = None,
    ) -> Iterator[str]:
        """执行一次流式对话调用，逐个 yield 文本增量。"""

        if not credential:
            raise ConfigurationError(code="MISSING_API_KEY", message="API key not configured.")
        payload = self._build_payload(req)
        resp = self._transport.request(
            "POST",
            self.chat_url,
            headers=self._headers(credential),
            json=payload,
            token=token,
            stream=True,
        )
        with closing(resp):
            if not 200 <= resp.status_code < 300:
                raise self._error_from_response(resp)
            yield from iter_deltas(self._read_chunks(resp, token))

    def generate_image(
        self,
        prompt: str,
        model: Optional[str],
        credential: Optional[str],
        token: Optional[CancellationToken] = None,
    ) -> str:
        """调用 images/generations 生成一张图片并返回其 URL。"""

        if not credential:
            raise ConfigurationError(
                code="MISSING_API_KEY",
                message="OpenRouter API key is not configured for image generation.",
            )
        if not model:
            raise ConfigurationError(
                code="MISSING_IMAGE_MODEL",
                message="OpenRouter image model ID is not configured.",
            )
        payload = {
            "prompt": prompt,
            "model": model,
            "size": IMAGE_DEFAULT_SIZE,
            "quality": IMAGE_QUALITY,
            "n": 1,
        }
        resp = self._transport.request(
            "POST",
            self.images_url,
            headers=self._headers(credential),
            json=payload,
            token=token,
        )
        with closing(resp):
            if token is not None:
                token.raise_if_cancelled()
            if not 200 <= resp.status_code < 300:
                raise self._error_from_response(resp)
            try:
                data = resp.json()
            except ValueError as e:
                raise ProviderError(code="MALFORMED_RESPONSE", message=f"Malformed image response: {e}")
        url = self._first_image_url(data)
        if not url:
            raise ImageGenerationError(code="NO_IMAGE", message="OpenRouter did not return an image URL.")
        return url

    def _build_payload(self, req: ChatRequest) -> Dict[str, Any]:
        """将 ChatRequest 转成 chat/completions 所需的请求 JSON。"""

        return {
            "model": req.model,
            "messages": [self._message_to_payload(m) for m in req.messages],
            "stream": req.stream,
        }

    def _headers(self, credential: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {credential}",
            "Content-Type": "application/json",
            "HTTP-Referer": self._settings.app_referer,
            "X-Title": self._settings.app_name,
        }

    @staticmethod
    def _message_to_payload(message: ChatMessage) -> Dict[str, Any]:
        return {"role": message.role, "content": message.content}

    @staticmethod
    def _read_chunks(resp: TransportResponse, token: Optional[CancellationToken]) -> Iterator[str]:
        if token is not None:
            token.raise_if_cancelled()
        for chunk in resp.iter_text():
            if token is not None:
                token.raise_if_cancelled()
            yield chunk

    @staticmethod
    def _first_image_url(data: Any) -> Optional[str]:
        if not isinstance(data, dict):
            return None
        items = data.get("data") or []
        if not items or not isinstance(items[0], dict):
            return None
        url = items[0].get("url")
        return url if isinstance(url, str) and url else None

    @staticmethod
    def _error_from_response(resp: TransportResponse) -> ProviderError:
        """优先使用结构化错误体中的 message，否则使用 HTTP 状态描述。"""

        message = None
        try:
            data = resp.json()
        except (ValueError, NetworkError):
            data = None
        if isinstance(data, dict):
            err = data.get("error")
            if isinstance(err, dict) and err.get("message"):
                message = str(err["message"])
            elif isinstance(err, str) and err:
                message = err
        if not message:
            message = resp.reason_phrase or f"HTTP {resp.status_code}"
        return ProviderError(code="API_ERROR", message=message, http_status=resp.status_code)
