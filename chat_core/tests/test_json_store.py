import tempfile
from pathlib import Path

import pytest

from chat_core.domain.exceptions import StorageError
from chat_core.domain.models import ImageMessage, TextMessage, new_conversation
from chat_core.infrastructure.storage.json_store import JsonConversationRepository


def test_json_store_save_and_load():
    with tempfile.TemporaryDirectory() as d:
        repo = JsonConversationRepository(root=Path(d) / ".storage")
        conv = new_conversation("Hello")
        conv.messages.append(TextMessage(role="user", content="Hello"))
        conv.messages.append(ImageMessage(role="assistant", content="https://i", prompt="Hello"))
        repo.save(conv)
        loaded = repo.load_all()
        assert len(loaded) == 1
        assert loaded[0].id == conv.id
        assert loaded[0].title == "Hello"
        assert [m.id for m in loaded[0].messages] == [m.id for m in conv.messages]
        assert repo.get(conv.id).messages[1].kind == "image"


def test_json_store_overwrites_on_save():
    with tempfile.TemporaryDirectory() as d:
        repo = JsonConversationRepository(root=Path(d) / ".storage")
        conv = new_conversation("t")
        repo.save(conv)
        conv.messages.append(TextMessage(role="user", content="x"))
        repo.save(conv)
        assert len(repo.get(conv.id).messages) == 1
        assert not list((Path(d) / ".storage" / "conversations").glob("*.tmp"))


def test_json_store_delete_conversation():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d) / ".storage"
        repo = JsonConversationRepository(root=root)
        conv = new_conversation("temp")
        repo.save(conv)
        assert (root / "conversations" / f"{conv.id}.json").exists()
        repo.delete(conv.id)
        assert conv.id not in {c.id for c in repo.load_all()}
        with pytest.raises(StorageError):
            repo.delete(conv.id)


def test_json_store_skips_corrupt_files_and_clears():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d) / ".storage"
        repo = JsonConversationRepository(root=root)
        repo.save(new_conversation("ok"))
        (root / "conversations" / "c-broken.json").write_text("{not json", encoding="utf-8")
        assert len(repo.load_all()) == 1
        repo.clear()
        assert repo.load_all() == []
