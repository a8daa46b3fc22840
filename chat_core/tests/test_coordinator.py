import pytest

from conftest import FakeResponse, FakeTransport, make_config, sse
from chat_core.domain.conversation import MessageStore
from chat_core.domain.exceptions import ConfigurationError
from chat_core.domain.models import TextMessage
from chat_core.providers.openrouter_client import OpenRouterClient
from chat_core.providers.pollinations_client import PollinationsClient
from chat_core.sessions.coordinator import BUSY_WARNING, SessionCoordinator
from chat_core.sessions.text_session import CANCELLED_NOTICE, TextGenerationSession


def _coordinator(transport, notifier, settings_stub, config=None, store=None):
    cfg = config or make_config()
    return SessionCoordinator(
        store=store or MessageStore(),
        config_source=lambda: cfg,
        openrouter=OpenRouterClient(transport, settings_stub),
        pollinations=PollinationsClient(transport),
        notifier=notifier,
    )


def test_start_text_runs_to_idle(notifier, settings_stub):
    transport = FakeTransport(FakeResponse(chunks=[sse("Hi", " there")]))
    coord = _coordinator(transport, notifier, settings_stub)
    assert coord.start("text", "Hello") is True
    assert coord.generation_active is False
    assert coord.current_token is None
    assert coord.store.find_active().messages[-1].content == "Hi there"


def test_start_while_generating_is_rejected(notifier, settings_stub):
    transport = FakeTransport(FakeResponse(chunks=[sse("a", "b")]))
    coord = _coordinator(transport, notifier, settings_stub)
    observed = {}

    def try_second_start(event, conv):
        if event == "updated" and "rejected" not in observed:
            token = coord.current_token
            count = len(conv.messages)
            observed["rejected"] = coord.start("text", "again")
            observed["same_token"] = coord.current_token is token
            observed["count_unchanged"] = len(conv.messages) == count

    coord.store.subscribe(try_second_start)
    coord.start("text", "Hello")
    assert observed == {"rejected": False, "same_token": True, "count_unchanged": True}
    assert ("warning", BUSY_WARNING) in notifier.notices
    assert len(transport.calls) == 1


def test_stop_cancels_in_flight_generation(notifier, settings_stub):
    transport = FakeTransport(FakeResponse(chunks=[sse("Hi", done=False), sse(" there", "!")]))
    coord = _coordinator(transport, notifier, settings_stub)
    stopped = []

    def stop_after_first(event, conv):
        if event == "updated" and not stopped:
            stopped.append(coord.stop())

    coord.store.subscribe(stop_after_first)
    coord.start("text", "Hello")
    msg = coord.store.find_active().messages[-1]
    assert stopped == [True]
    assert msg.content == "Hi" + CANCELLED_NOTICE
    assert msg.error is False
    assert coord.generation_active is False


def test_stop_when_idle_warns(notifier, settings_stub):
    coord = _coordinator(FakeTransport(), notifier, settings_stub)
    assert coord.stop() is False
    assert ("info", "No active generation to stop.") in notifier.notices


def test_blank_prompt_is_rejected(notifier, settings_stub):
    transport = FakeTransport()
    coord = _coordinator(transport, notifier, settings_stub)
    assert coord.start("text", "   ") is False
    assert coord.store.find_active() is None
    assert transport.calls == []


def test_unknown_kind_raises_before_state_change(notifier, settings_stub):
    coord = _coordinator(FakeTransport(), notifier, settings_stub)
    with pytest.raises(ConfigurationError):
        coord.start("video", "x")
    assert coord.generation_active is False


def test_unexpected_session_failure_still_returns_to_idle(monkeypatch, notifier, settings_stub):
    def boom(self):
        raise RuntimeError("renderer crashed")

    monkeypatch.setattr(TextGenerationSession, "run", boom)
    coord = _coordinator(FakeTransport(), notifier, settings_stub)
    assert coord.start("text", "Hello") is True
    assert coord.generation_active is False
    assert coord.current_token is None
    assert ("error", "renderer crashed") in notifier.notices


def test_image_pollinations_500_scenario(notifier, settings_stub):
    transport = FakeTransport(FakeResponse(status_code=500))
    coord = _coordinator(transport, notifier, settings_stub)
    coord.start("image", "a cat")
    msg = coord.store.find_active().messages[-1]
    assert msg.kind == "image"
    assert msg.error is False
    assert msg.content == "https://loremflickr.com/1024/1024/abstract,random"
    assert coord.generation_active is False


def test_regenerate_replaces_last_assistant_message(notifier, settings_stub):
    transport = FakeTransport(FakeResponse(chunks=[sse("new answer")]))
    coord = _coordinator(transport, notifier, settings_stub)
    conv = coord.store.start_conversation("q")
    user = TextMessage(role="user", content="q")
    old = TextMessage(role="assistant", content="old answer")
    coord.store.append(conv.id, user)
    coord.store.append(conv.id, old)

    assert coord.regenerate() is True
    ids = [m.id for m in conv.messages]
    assert old.id not in ids
    assert user.id in ids
    assert conv.messages[-1].content == "new answer"
    assert transport.calls[0]["json"]["messages"][-1] == {"role": "user", "content": "q"}


def test_regenerate_with_too_few_messages_is_noop(notifier, settings_stub):
    transport = FakeTransport()
    coord = _coordinator(transport, notifier, settings_stub)
    conv = coord.store.start_conversation("q")
    coord.store.append(conv.id, TextMessage(role="user", content="q"))
    assert coord.regenerate() is False
    assert len(conv.messages) == 1
    assert transport.calls == []


def test_regenerate_keeps_last_message_when_it_is_from_user(notifier, settings_stub):
    transport = FakeTransport(FakeResponse(chunks=[sse("ok")]))
    coord = _coordinator(transport, notifier, settings_stub)
    conv = coord.store.start_conversation("q")
    first = TextMessage(role="assistant", content="welcome")
    last = TextMessage(role="user", content="q")
    coord.store.append(conv.id, first)
    coord.store.append(conv.id, last)
    assert coord.regenerate() is True
    assert conv.messages[0].id == first.id
    assert conv.messages[1].id == last.id


def test_conversation_management_blocked_while_generating(notifier, settings_stub):
    transport = FakeTransport(FakeResponse(chunks=[sse("a")]))
    coord = _coordinator(transport, notifier, settings_stub)
    results = {}

    def try_delete(event, conv):
        if event == "updated" and not results:
            results["delete"] = coord.delete_conversation(conv.id)
            results["clear"] = coord.clear_conversations()
            results["regenerate"] = coord.regenerate()

    coord.store.subscribe(try_delete)
    coord.start("text", "Hello")
    assert results == {"delete": False, "clear": False, "regenerate": False}
    assert coord.store.find_active() is not None
    assert coord.clear_conversations() is True
    assert coord.store.list_conversations() == []


def test_load_and_new_conversation(notifier, settings_stub):
    coord = _coordinator(FakeTransport(), notifier, settings_stub)
    first = coord.new_conversation("first")
    second = coord.new_conversation()
    assert second.title == "New Chat"
    assert coord.store.find_active() is second
    assert coord.load_conversation(first.id) is True
    assert coord.store.find_active() is first
    assert coord.load_conversation("c-missing") is False
