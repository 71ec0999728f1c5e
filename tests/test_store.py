"""Tests for fact set persistence."""

import json
import time
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from tmigen.models import FactKey, FactSet
from tmigen.store import FACTS_KEY, RETENTION_SECONDS, FactStore, JSONSettingsStore


@pytest.fixture
def settings_path(tmp_path: Path) -> Path:
    return tmp_path / "settings.json"


@pytest.fixture
def store(settings_path: Path) -> FactStore:
    return FactStore(JSONSettingsStore(settings_path))


class TestJSONSettingsStore:
    def test_missing_file_is_empty(self, settings_path: Path):
        settings = JSONSettingsStore(settings_path)
        assert settings.get("anything", "default") == "default"

    def test_persist_and_reload(self, settings_path: Path):
        settings = JSONSettingsStore(settings_path)
        settings.set("key", {"nested": [1, 2]})
        settings.persist()

        assert JSONSettingsStore(settings_path).get("key") == {"nested": [1, 2]}

    def test_corrupt_file_starts_empty(self, settings_path: Path):
        settings_path.write_text("{not json")
        assert JSONSettingsStore(settings_path).get("key") is None


class TestFactStore:
    def test_record_and_get(self, store: FactStore):
        key = FactKey("chat", 1, 0)
        store.record(key, FactSet(items=["a fact"], visible=True, created_at=100.0))

        fact_set = store.get(key)
        assert fact_set == FactSet(items=["a fact"], visible=True, created_at=100.0)
        assert store.has(key)

    def test_persisted_after_record(self, store: FactStore, settings_path: Path):
        store.record(FactKey("chat", 1, 2), FactSet(items=["x"]))

        data = json.loads(settings_path.read_text())
        assert "chat:1:2" in data[FACTS_KEY]

    def test_persist_called_on_every_mutation(self):
        settings = MagicMock()
        settings.get.return_value = {}
        store = FactStore(settings)
        key = FactKey("chat", 1)

        store.record(key, FactSet(items=["x"]))
        store.toggle_visible(key)
        store.delete(key)

        assert settings.persist.call_count == 3

    def test_record_overwrites(self, store: FactStore):
        key = FactKey("chat", 1)
        store.record(key, FactSet(items=["old"]))
        store.record(key, FactSet(items=["new"]))
        assert store.get(key).items == ["new"]

    def test_delete(self, store: FactStore):
        key = FactKey("chat", 1)
        store.record(key, FactSet(items=["x"]))

        assert store.delete(key) is True
        assert store.get(key) is None
        assert store.delete(key) is False

    def test_toggle_visible(self, store: FactStore):
        key = FactKey("chat", 1)
        store.record(key, FactSet(items=["x"], visible=False))

        assert store.toggle_visible(key).visible is True
        assert store.get(key).visible is True
        assert store.toggle_visible(FactKey("chat", 99)) is None

    def test_purge_turn_all_variants(self, store: FactStore):
        for variant in range(3):
            store.record(FactKey("chat", 4, variant), FactSet(items=["x"]))
        store.record(FactKey("chat", 5, 0), FactSet(items=["keep"]))
        store.record(FactKey("other", 4, 0), FactSet(items=["keep"]))

        assert store.purge_turn("chat", 4) == 3
        assert sorted(str(k) for k in store.keys()) == ["chat:5:0", "other:4:0"]

    def test_clear_chat_and_clear(self, store: FactStore):
        store.record(FactKey("a", 1), FactSet(items=["x"]))
        store.record(FactKey("b", 1), FactSet(items=["x"]))

        assert store.clear_chat("a") == 1
        assert store.clear() == 1
        assert store.keys() == []

    def test_purge_expired(self, store: FactStore):
        now = time.time()
        store.record(FactKey("c", 1), FactSet(items=["old"], created_at=now - RETENTION_SECONDS - 10))
        store.record(FactKey("c", 2), FactSet(items=["fresh"], created_at=now - 60))
        store.record(FactKey("c", 3), FactSet(items=["untimed"], created_at=0))

        assert store.purge_expired(now=now) == 1
        assert store.get(FactKey("c", 1)) is None
        assert store.get(FactKey("c", 2)) is not None
        assert store.get(FactKey("c", 3)) is not None

    def test_unrecognized_keys_skipped(self, settings_path: Path, caplog):
        now = time.time()
        settings_path.write_text(
            json.dumps(
                {
                    FACTS_KEY: {
                        "5": {"items": ["legacy"], "timestamp": 1_600_000_000_000},
                        "chat:1:0": {"items": ["old"], "created_at": now - RETENTION_SECONDS - 10},
                        "chat:2:0": {"items": ["fresh"], "created_at": now},
                    }
                }
            )
        )
        store = FactStore(JSONSettingsStore(settings_path))

        assert store.keys() == [FactKey("chat", 1), FactKey("chat", 2)]
        assert store.purge_expired(now=now) == 1
        assert store.purge_turn("chat", 2) == 1
        assert store.clear_chat("chat") == 0
        assert "unrecognized key '5'" in caplog.text

        data = json.loads(settings_path.read_text())
        assert list(data[FACTS_KEY]) == ["5"]

    def test_chat_id_with_colons(self, store: FactStore):
        key = FactKey("group:room:7", 2, 1)
        store.record(key, FactSet(items=["x"]))
        assert store.keys() == [key]
