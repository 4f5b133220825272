"""In-memory key-value store for local runs and tests."""

from __future__ import annotations

import copy
import threading
from typing import Any, Dict, List


class MemoryKvStore:
    """Whole-document store with last-write-wins semantics.

    Values are deep-copied on the way in and out, so a caller mutating a
    loaded document never touches the stored one until it puts it back.
    """

    def __init__(self) -> None:
        self._items: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            value = self._items.get(key)
        return copy.deepcopy(value) if value is not None else None

    def put(self, key: str, value: Any) -> None:
        if not isinstance(key, str) or not key:
            raise ValueError("key must be non-empty string")
        with self._lock:
            self._items[key] = copy.deepcopy(value)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._items.pop(key, None) is not None

    def list(self, prefix: str = "") -> List[str]:
        with self._lock:
            keys = [k for k in self._items if k.startswith(prefix)]
        return sorted(keys)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
