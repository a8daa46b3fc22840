"""基于 httpx 的 Transport 实现。

每次请求创建一个独立的 httpx.Client（trust_env=False），响应关闭时
一并关闭客户端。网络层异常统一包装为 NetworkError。

传入取消令牌时，令牌被取消会立刻关闭客户端（请求发送中）或响应
（读取响应体中），阻塞的读取随之以异常返回，此时抛出 GenerationCancelled。
"""

from typing import Any, Iterator, Mapping, Optional

import httpx

from chat_core.domain.cancellation import CancellationToken
from chat_core.domain.exceptions import GenerationCancelled, NetworkError


class HttpxResponse:
    """httpx.Response 的薄包装，满足 TransportResponse 协议。"""

    def __init__(
        self,
        client: httpx.Client,
        response: httpx.Response,
        token: Optional[CancellationToken] = None,
    ):
        self._client = client
        self._response = response
        self._token = token
        self.status_code = response.status_code
        self.reason_phrase = response.reason_phrase
        self.headers = response.headers
        self._unregister = token.add_callback(self.close) if token is not None else None

    def iter_text(self) -> Iterator[str]:
        try:
            for chunk in self._response.iter_text():
                if chunk:
                    yield chunk
        except (httpx.RequestError, httpx.StreamError) as e:
            # 取消回调关闭了连接，读取失败是停止的结果而不是网络故障
            if self._was_cancelled():
                raise GenerationCancelled() from e
            if isinstance(e, httpx.StreamError):
                raise
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        if self._was_cancelled():
            raise GenerationCancelled()

    def json(self) -> Any:
        try:
            self._response.read()
        except (httpx.RequestError, httpx.StreamError) as e:
            if self._was_cancelled():
                raise GenerationCancelled() from e
            if isinstance(e, httpx.StreamError):
                raise
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        return self._response.json()

    def close(self) -> None:
        if self._unregister is not None:
            self._unregister()
        self._response.close()
        self._client.close()

    def _was_cancelled(self) -> bool:
        return self._token is not None and self._token.cancelled


class HttpxTransport:
    name = "httpx"

    def __init__(self, settings, transport: Optional[httpx.BaseTransport] = None):
        # transport 仅用于测试注入 httpx.MockTransport
        self._settings = settings
        self._transport = transport

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        json: Any = None,
        token: Optional[CancellationToken] = None,
        stream: bool = False,
    ) -> HttpxResponse:
        if token is not None:
            token.raise_if_cancelled()
        client = httpx.Client(
            timeout=self._settings.http_timeout,
            trust_env=False,
            transport=self._transport,
        )
        unregister = token.add_callback(client.close) if token is not None else None
        try:
            req = client.build_request(method, url, headers=headers, json=json)
            resp = client.send(req, stream=stream)
        except (httpx.RequestError, RuntimeError) as e:
            client.close()
            if token is not None and token.cancelled:
                raise GenerationCancelled() from e
            if not isinstance(e, httpx.RequestError):
                raise
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        finally:
            if unregister is not None:
                unregister()
        return HttpxResponse(client, resp, token)
