"""Fact set persistence on top of a host settings store."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

from .models import FactKey, FactSet

logger = logging.getLogger(__name__)

FACTS_KEY = "tmi_data"
RETENTION_SECONDS = 30 * 24 * 60 * 60  # 30 days


class SettingsStore(Protocol):
    """Mapping of string keys to JSON-serializable values with explicit persist."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def persist(self) -> None: ...


class JSONSettingsStore:
    """SettingsStore kept in memory and written to a JSON file on persist."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._data: dict[str, Any] = self._load()

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Cannot read settings %s: %s. Starting empty.", self.path, e)
            return {}

        return data if isinstance(data, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def persist(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2, ensure_ascii=False)


class FactStore:
    """Stores FactSets by composite key and persists after every mutation."""

    def __init__(self, settings: SettingsStore) -> None:
        self.settings = settings

    def _entries(self) -> dict[str, Any]:
        entries = self.settings.get(FACTS_KEY)
        if not isinstance(entries, dict):
            entries = {}
            self.settings.set(FACTS_KEY, entries)
        return entries

    def get(self, key: FactKey) -> FactSet | None:
        data = self._entries().get(str(key))
        if data is None:
            return None
        return FactSet.from_dict(data)

    def has(self, key: FactKey) -> bool:
        return str(key) in self._entries()

    def _parsed(self) -> list[tuple[str, FactKey]]:
        """Stored keys with their parsed form. Unparseable keys are skipped."""
        parsed = []
        for raw in self._entries():
            try:
                parsed.append((raw, FactKey.parse(raw)))
            except ValueError:
                logger.warning("Skipping stored fact set with unrecognized key %r", raw)
        return parsed

    def keys(self) -> list[FactKey]:
        return [key for _, key in self._parsed()]

    def record(self, key: FactKey, fact_set: FactSet) -> None:
        """Store a fact set, replacing any previous one for the key."""
        self._entries()[str(key)] = fact_set.to_dict()
        self.settings.persist()

    def delete(self, key: FactKey) -> bool:
        """Delete the fact set for a key. Returns True if one existed."""
        removed = self._entries().pop(str(key), None) is not None
        if removed:
            self.settings.persist()
        return removed

    def set_visible(self, key: FactKey, visible: bool) -> FactSet | None:
        entry = self._entries().get(str(key))
        if entry is None:
            return None
        entry["visible"] = visible
        self.settings.persist()
        return FactSet.from_dict(entry)

    def toggle_visible(self, key: FactKey) -> FactSet | None:
        """Flip the visibility flag. Returns the updated set, if any."""
        current = self.get(key)
        if current is None:
            return None
        return self.set_visible(key, not current.visible)

    def _remove_where(
        self, predicate: Callable[[FactKey, dict[str, Any]], bool]
    ) -> int:
        entries = self._entries()
        doomed = [raw for raw, key in self._parsed() if predicate(key, entries[raw])]
        for k in doomed:
            del entries[k]
        if doomed:
            self.settings.persist()
        return len(doomed)

    def purge_turn(self, chat_id: str, turn_id: int) -> int:
        """Delete every variant's fact set for a turn."""
        return self._remove_where(
            lambda key, _: key.chat_id == chat_id and key.turn_id == turn_id
        )

    def clear_chat(self, chat_id: str) -> int:
        return self._remove_where(lambda key, _: key.chat_id == chat_id)

    def clear(self) -> int:
        return self._remove_where(lambda key, _: True)

    def purge_expired(
        self, retention_seconds: float = RETENTION_SECONDS, now: float | None = None
    ) -> int:
        """Delete fact sets older than the retention window."""
        current = time.time() if now is None else now
        def expired(_: FactKey, data: dict[str, Any]) -> bool:
            fact_set = FactSet.from_dict(data)
            # Entries without a timestamp are kept
            return bool(fact_set.created_at) and fact_set.is_expired(
                retention_seconds, current
            )

        return self._remove_where(expired)
