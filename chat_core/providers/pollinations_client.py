"""Pollinations 图像 Provider（A）与 LoremFlickr 兜底。

Pollinations 直接根据 URL 返回图片，因此“生成”就是构造 URL：

1. 把提示词做 URL 编码后拼进模板，附带固定宽高。
2. 对该 URL 发一次校验请求：状态码 2xx 且 Content-Type 以 ``image/`` 开头才算成功。
3. 成功时 URL 本身就是结果，不再单独下载或转存。

任何失败（非 2xx、内容类型不对、网络错误、被取消）都包装为
ImageGenerationError，由会话层决定是否兜底。

LoremFlickr 只做 URL 构造，不发网络请求，因此不会失败。
"""

from contextlib import closing
from typing import Optional
from urllib.parse import quote

from chat_core.domain.cancellation import CancellationToken
from chat_core.domain.exceptions import GenerationCancelled, ImageGenerationError, NetworkError
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.base import Transport
from chat_core.providers.registry import (
    IMAGE_DEFAULT_SIZE,
    LOREMFLICKR_CONFIG,
    LOREMFLICKR_TAGS,
    POLLINATIONS_CONFIG,
    image_dimensions,
)


class PollinationsClient:
    name = "pollinations"

    def __init__(self, transport: Transport, size: str = IMAGE_DEFAULT_SIZE):
        self._transport = transport
        self._width, self._height = image_dimensions(size)

    def build_url(self, prompt: str) -> str:
        encoded = quote(prompt, safe="")
        return f"{POLLINATIONS_CONFIG.base_url}/prompt/{encoded}?width={self._width}&height={self._height}"

    def generate(self, prompt: str, token: Optional[CancellationToken] = None) -> str:
        url = self.build_url(prompt)
        logger.info("Pollinations request", extra={"extra": {"url": url}})
        try:
            resp = self._transport.request("GET", url, token=token, stream=True)
        except NetworkError as e:
            raise ImageGenerationError(code="NETWORK_ERROR", message=e.message)
        except GenerationCancelled as e:
            raise ImageGenerationError(code="CANCELLED", message=e.message)
        with closing(resp):
            if token is not None and token.cancelled:
                raise ImageGenerationError(code="CANCELLED", message="Generation cancelled")
            if not 200 <= resp.status_code < 300:
                raise ImageGenerationError(
                    code="API_ERROR",
                    message=f"Pollinations.ai returned status {resp.status_code}",
                    http_status=resp.status_code,
                )
            content_type = resp.headers.get("content-type") or resp.headers.get("Content-Type") or ""
            if not content_type.startswith("image/"):
                raise ImageGenerationError(
                    code="NOT_AN_IMAGE",
                    message="Pollinations.ai did not return an image. It might be an error page.",
                )
        return url


def loremflickr_url(size: str = IMAGE_DEFAULT_SIZE) -> str:
    """兜底随机图片 URL，只依赖请求尺寸。"""

    width, height = image_dimensions(size)
    return f"{LOREMFLICKR_CONFIG.base_url}/{width}/{height}/{LOREMFLICKR_TAGS}"
