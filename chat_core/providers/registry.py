"""Provider 端点与常量配置。

所有外部服务的 URL、默认尺寸与请求参数集中放在这里，
便于后续切换或升级，会话层只引用这里的名字。"""

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class ProviderConfig:
    """某个 Provider 的端点配置。"""

    name: str
    base_url: str


OPENROUTER_CONFIG = ProviderConfig(
    name="openrouter",
    base_url="https://openrouter.ai/api/v1",
)

# 直接拼接 URL 的图像服务（首选 A）
POLLINATIONS_CONFIG = ProviderConfig(
    name="pollinations",
    base_url="https://image.pollinations.ai",
)

# 兜底随机图片服务，只做 URL 构造，不发网络请求
LOREMFLICKR_CONFIG = ProviderConfig(
    name="loremflickr",
    base_url="https://loremflickr.com",
)

IMAGE_DEFAULT_SIZE = "1024x1024"
IMAGE_QUALITY = "standard"
LOREMFLICKR_TAGS = "abstract,random"
STREAM_DONE_MARKER = "[DONE]"


def image_dimensions(size: str = IMAGE_DEFAULT_SIZE) -> Tuple[int, int]:
    """把 "1024x1024" 形式的尺寸拆成 (width, height)。"""

    width, _, height = size.lower().partition("x")
    return int(width), int(height)
