import json
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import pytest

from chat_core.config.settings import GenerationConfig


class SettingsStub:
    app_name = "JavaGoat"
    app_referer = "http://localhost"
    http_timeout = 1.0


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        chunks: Iterable[str] = (),
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None,
        reason_phrase: str = "OK",
    ):
        self.status_code = status_code
        self.reason_phrase = reason_phrase
        self.headers = headers or {}
        self._chunks = list(chunks)
        self._json = json_body
        self.closed = False

    def iter_text(self):
        for chunk in self._chunks:
            yield chunk

    def json(self):
        if self._json is None:
            raise ValueError("body is not JSON")
        return self._json

    def close(self):
        self.closed = True


class FakeTransport:
    """按顺序返回预置响应，并记录每次请求。"""

    def __init__(self, *responses: Union[FakeResponse, Exception, Callable[..., FakeResponse]]):
        self._responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def request(self, method, url, *, headers=None, json=None, token=None, stream=False):
        self.calls.append({"method": method, "url": url, "headers": headers, "json": json, "stream": stream})
        if token is not None:
            token.raise_if_cancelled()
        if not self._responses:
            raise AssertionError(f"unexpected request: {method} {url}")
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if callable(item) and not isinstance(item, FakeResponse):
            item = item()
        if token is not None:
            token.add_callback(item.close)
        return item


class RecordingNotifier:
    def __init__(self):
        self.notices: List[tuple] = []

    def notify(self, level, message):
        self.notices.append((level, message))

    def levels(self):
        return [level for level, _ in self.notices]


def sse(*deltas: str, done: bool = True) -> str:
    """把若干增量拼成 OpenRouter 风格的 SSE 文本。"""
    parts = [
        "data: " + json.dumps({"choices": [{"index": 0, "delta": {"content": d}}]}) + "\n\n"
        for d in deltas
    ]
    if done:
        parts.append("data: [DONE]\n\n")
    return "".join(parts)


def make_config(**overrides) -> GenerationConfig:
    values = {
        "credential": "sk-or-test-key-0000",
        "model_id": "openai/gpt-4o-mini",
        "system_prompt": "You are a test assistant.",
        "image_provider": "pollinations",
        "image_model": "stabilityai/stable-diffusion-xl-base-1.0",
    }
    values.update(overrides)
    return GenerationConfig(**values)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def settings_stub():
    return SettingsStub()
