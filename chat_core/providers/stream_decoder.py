"""SSE 流式响应解码。

OpenRouter 以 ``data: {json}\\n\\n`` 的形式推送增量，单个事件可能被
拆到多个网络分块中，因此解码器维护一个跨分块的缓冲区：

- 按空行（``\\n\\n``）切分完整事件，剩余部分留到下一个分块；
- 只处理 ``data:`` 行，``: OPENROUTER PROCESSING`` 之类的注释行忽略；
- 载荷为 ``[DONE]`` 时流结束；
- 其余载荷按 JSON 解析，取 ``choices[0].delta.content``；
  单个事件解析失败只记录警告并跳过，不会中断整个流。
"""

import json
import logging
from typing import Any, Iterable, Iterator, List, Optional

from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.registry import STREAM_DONE_MARKER

EVENT_DELIMITER = "\n\n"


class StreamDecoder:
    def __init__(self) -> None:
        self._buffer = ""
        self.done = False

    def feed(self, chunk: str) -> List[str]:
        """喂入一个原始分块，返回其中完整事件解析出的增量。"""

        if self.done:
            return []
        # 整个缓冲区一起规范化：\r\n 可能恰好被拆在两个分块之间，
        # 末尾孤立的 \r 留在缓冲区里等下一个分块
        self._buffer = (self._buffer + chunk).replace("\r\n", "\n")
        deltas: List[str] = []
        while not self.done and EVENT_DELIMITER in self._buffer:
            event, self._buffer = self._buffer.split(EVENT_DELIMITER, 1)
            delta = self._decode_event(event)
            if delta:
                deltas.append(delta)
        return deltas

    def flush(self) -> List[str]:
        """传输结束时处理缓冲区中残留的最后一个事件（缺少结尾空行的情况）。"""

        if self.done:
            return []
        rest, self._buffer = self._buffer, ""
        if not rest.strip():
            return []
        delta = self._decode_event(rest)
        return [delta] if delta else []

    def _decode_event(self, event: str) -> Optional[str]:
        data_lines = []
        for line in event.split("\n"):
            line = line.rstrip("\r")
            if line.startswith("data:"):
                value = line[5:]
                if value.startswith(" "):
                    value = value[1:]
                data_lines.append(value)
        if not data_lines:
            return None
        payload = "\n".join(data_lines)
        if payload.strip() == STREAM_DONE_MARKER:
            self.done = True
            return None
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            logger.log(
                logging.WARNING,
                "Skipping malformed stream event",
                extra={"extra": {"error": str(e), "payload": payload[:200]}},
            )
            return None
        return _extract_delta(data)


def _extract_delta(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta") or {}
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if isinstance(content, str) and content:
        return content
    return None


def iter_deltas(chunks: Iterable[str]) -> Iterator[str]:
    """把原始文本分块序列转换为惰性的增量序列。

    传输结束或遇到 [DONE] 时序列结束（以先到者为准）。
    """

    decoder = StreamDecoder()
    for chunk in chunks:
        yield from decoder.feed(chunk)
        if decoder.done:
            return
    yield from decoder.flush()
