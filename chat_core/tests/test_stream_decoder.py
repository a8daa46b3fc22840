import json

from chat_core.providers.stream_decoder import StreamDecoder, iter_deltas


def _event(content):
    return "data: " + json.dumps({"choices": [{"delta": {"content": content}}]}) + "\n\n"


def test_deltas_concatenate_in_arrival_order():
    chunks = [_event("Hi"), _event(" there"), "data: [DONE]\n\n"]
    assert "".join(iter_deltas(chunks)) == "Hi there"
    assert list(iter_deltas(chunks)) == ["Hi", " there"]


def test_event_split_across_chunks():
    raw = _event("Hello") + _event(", world")
    chunks = [raw[:7], raw[7:30], raw[30:]]
    assert list(iter_deltas(chunks)) == ["Hello", ", world"]


def test_done_marker_stops_stream():
    chunks = [_event("a"), "data: [DONE]\n\n" + _event("ignored")]
    assert list(iter_deltas(chunks)) == ["a"]


def test_done_stops_reading_further_chunks():
    consumed = []

    def source():
        for c in [_event("a") + "data: [DONE]\n\n", _event("b")]:
            consumed.append(c)
            yield c

    assert list(iter_deltas(source())) == ["a"]
    assert len(consumed) == 1


def test_malformed_event_is_skipped():
    chunks = [_event("a"), "data: {not json}\n\n", _event("b")]
    assert list(iter_deltas(chunks)) == ["a", "b"]


def test_comment_lines_and_empty_deltas_ignored():
    role_only = "data: " + json.dumps({"choices": [{"delta": {"role": "assistant"}}]}) + "\n\n"
    chunks = [": OPENROUTER PROCESSING\n\n", role_only, _event("x")]
    assert list(iter_deltas(chunks)) == ["x"]


def test_crlf_delimiters():
    chunks = [_event("a").replace("\n", "\r\n"), _event("b").replace("\n", "\r\n")]
    assert list(iter_deltas(chunks)) == ["a", "b"]


def test_trailing_event_without_delimiter_is_flushed():
    chunks = [_event("a"), _event("b").rstrip("\n")]
    assert list(iter_deltas(chunks)) == ["a", "b"]


def test_decoder_keeps_partial_buffer():
    decoder = StreamDecoder()
    raw = _event("abc")
    assert decoder.feed(raw[:10]) == []
    assert decoder.feed(raw[10:]) == ["abc"]
    assert decoder.done is False
    assert decoder.feed("data: [DONE]\n\n") == []
    assert decoder.done is True
    assert decoder.feed(_event("late")) == []


def test_crlf_delimiter_split_between_chunks():
    first = _event("A").rstrip("\n")
    second = _event("B").rstrip("\n")
    chunks = [first + "\r\n\r", "\n" + second + "\r\n\r\n", "data: [DONE]\r\n\r\n"]
    assert list(iter_deltas(chunks)) == ["A", "B"]


def test_crlf_split_after_carriage_return():
    raw = _event("A").replace("\n", "\r\n") + _event("B").replace("\n", "\r\n")
    cut = raw.index("\r") + 1
    assert list(iter_deltas([raw[:cut], raw[cut:]])) == ["A", "B"]
