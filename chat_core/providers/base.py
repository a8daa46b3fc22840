"""Transport 抽象接口。

会话层与 Provider 适配层不直接依赖 httpx，而是依赖此协议：

- Transport.request 发起一次 HTTP 请求，返回 TransportResponse。
- stream=True 时响应体按分块读取（文本流式生成），否则可以直接 json()。
- 若传入的取消令牌在发请求前已被触发，直接抛出 GenerationCancelled。
- 请求进行中令牌被取消时，实现必须关闭连接与响应，使阻塞的读取尽快返回；
  此后的读取失败一律报告为 GenerationCancelled。

测试中用简单的 Fake 类实现该协议即可替换真实网络。
"""

from typing import Any, Iterator, Mapping, Optional, Protocol

from chat_core.domain.cancellation import CancellationToken


class TransportResponse(Protocol):
    status_code: int
    reason_phrase: str
    headers: Mapping[str, str]

    def iter_text(self) -> Iterator[str]:
        ...

    def json(self) -> Any:
        ...

    def close(self) -> None:
        ...


class Transport(Protocol):
    def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        json: Any = None,
        token: Optional[CancellationToken] = None,
        stream: bool = False,
    ) -> TransportResponse:
        ...
