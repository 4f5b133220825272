"""Append-only audit history embedded in slot and model documents."""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List


HistoryEntry = Dict[str, Any]


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class HistoryLog:
    """Ordered log of audit entries.

    Entries can be read and appended; there is no way to edit or drop one.
    Stored entries of an unexpected shape are carried through untouched.
    Reads hand out copies so callers cannot rewrite stored entries in place.
    """

    def __init__(self, entries: Any = None) -> None:
        self._entries: List[HistoryEntry] = []
        if isinstance(entries, list):
            self._entries = [copy.deepcopy(e) for e in entries]

    def append(self, entry_type: str, user_id: str | None = None, at: str | None = None, **fields: Any) -> HistoryEntry:
        if not isinstance(entry_type, str) or not entry_type:
            raise ValueError("history entry type must be non-empty string")
        entry: HistoryEntry = {"ts": at or _now(), "type": entry_type, "user_id": user_id}
        for key, value in fields.items():
            if key in entry:
                continue
            entry[key] = copy.deepcopy(value)
        self._entries.append(entry)
        return copy.deepcopy(entry)

    def entries(self) -> List[HistoryEntry]:
        return [copy.deepcopy(e) for e in self._entries]

    def of_type(self, entry_type: str) -> List[HistoryEntry]:
        return [copy.deepcopy(e) for e in self._entries if isinstance(e, dict) and e.get("type") == entry_type]

    def latest(self, entry_type: str | None = None) -> HistoryEntry | None:
        for entry in reversed(self._entries):
            if not isinstance(entry, dict):
                continue
            if entry_type is None or entry.get("type") == entry_type:
                return copy.deepcopy(entry)
        return None

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(self.entries())

    def __len__(self) -> int:
        return len(self._entries)


def append_history(record: dict, entry_type: str, user_id: str | None = None, **fields: Any) -> HistoryEntry:
    """Append one entry to ``record["history"]`` and return it."""
    log = HistoryLog(record.get("history"))
    entry = log.append(entry_type, user_id=user_id, **fields)
    record["history"] = log.entries()
    return entry
