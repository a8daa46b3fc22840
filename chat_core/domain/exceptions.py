"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于会话层统一捕获并写入带 error 标记的消息。

GenerationCancelled 不属于业务错误：它只用于在用户停止生成时
展开调用栈，会话层会把它按“正常结束”路径收尾。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_WRITE_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ProviderError(BusinessError):
    """第三方 API 返回非 2xx 或响应体无法解析时抛出。"""


class ImageGenerationError(BusinessError):
    """图像 Provider 未能给出可用图片（内容类型错误、缺少 URL 等）。"""


class ConfigurationError(BusinessError):
    """配置缺失或非法（密钥、模型、Provider 名称），在发请求前即失败。"""


class ValidationError(BusinessError):
    """参数或数据结构校验失败。"""


class StorageError(BusinessError):
    """持久化读写失败。"""


class GenerationCancelled(Exception):
    """生成被用户停止。"""

    def __init__(self, message: str = "Generation cancelled"):
        self.message = message
        super().__init__(message)
