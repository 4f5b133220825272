"""Slot, model, shift and audit documents over a key-value store."""

from __future__ import annotations

import copy
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List


Document = Dict[str, Any]


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def model_key(model_id: str) -> str:
    return f"model:{model_id}"


def slot_key(slot_date: str, slot_id: str) -> str:
    return f"slot:{slot_date}:{slot_id}"


def shift_key(shift_id: str) -> str:
    return f"shift:{shift_id}"


def audit_key(ts: str, entry_id: str) -> str:
    return f"audit:{ts}:{entry_id}"


def new_id(prefix: str = "") -> str:
    raw = uuid.uuid4().hex[:24]
    return f"{prefix}_{raw}" if prefix else raw


class CrmRecordStore:
    """Typed access to the documents kept in one key-value store.

    The store is the only shared resource and has no transactions: every
    mutation reads a whole document, changes it in memory and writes it back.
    Links between documents are plain ids with no referential integrity.
    """

    def __init__(self, kv) -> None:
        self.kv = kv

    # models

    def get_model(self, model_id: str) -> Document | None:
        if not isinstance(model_id, str) or not model_id:
            return None
        return self.kv.get(model_key(model_id))

    def put_model(self, model: Document) -> Document:
        if not isinstance(model, dict) or not model.get("id"):
            raise ValueError("Invalid model")
        model["updatedAt"] = _now()
        self.kv.put(model_key(model["id"]), model)
        return copy.deepcopy(model)

    def delete_model(self, model_id: str) -> bool:
        return self.kv.delete(model_key(model_id))

    def list_models(self) -> List[Document]:
        items = []
        for key in self.kv.list("model:"):
            item = self.kv.get(key)
            if isinstance(item, dict):
                items.append(item)
        items.sort(key=lambda m: m.get("createdAt") or "", reverse=True)
        return items

    # slots

    def get_slot(self, slot_date: str, slot_id: str) -> Document | None:
        if not slot_date or not slot_id:
            return None
        return self.kv.get(slot_key(slot_date, slot_id))

    def find_slot(self, slot_id: str) -> Document | None:
        """Locate a slot by id alone when its date is not known."""
        if not slot_id:
            return None
        suffix = f":{slot_id}"
        for key in self.kv.list("slot:"):
            if key.endswith(suffix):
                item = self.kv.get(key)
                if isinstance(item, dict):
                    return item
        return None

    def put_slot(self, slot: Document) -> Document:
        if not isinstance(slot, dict) or not slot.get("id") or not slot.get("date"):
            raise ValueError("Invalid slot")
        slot["updatedAt"] = _now()
        self.kv.put(slot_key(slot["date"], slot["id"]), slot)
        return copy.deepcopy(slot)

    def delete_slot(self, slot_date: str, slot_id: str) -> bool:
        return self.kv.delete(slot_key(slot_date, slot_id))

    def list_slots(self, slot_date: str | None = None) -> List[Document]:
        prefix = f"slot:{slot_date}:" if slot_date else "slot:"
        items = []
        for key in self.kv.list(prefix):
            item = self.kv.get(key)
            if isinstance(item, dict):
                items.append(item)
        items.sort(key=lambda s: (s.get("date") or "", s.get("start") or ""))
        return items

    def slots_for_model(self, model_id: str) -> List[Document]:
        return [s for s in self.list_slots() if s.get("modelId") == model_id]

    # shifts

    def get_shift(self, shift_id: str) -> Document | None:
        if not shift_id:
            return None
        return self.kv.get(shift_key(shift_id))

    def put_shift(self, shift: Document) -> Document:
        if not isinstance(shift, dict) or not shift.get("id"):
            raise ValueError("Invalid shift")
        shift["updatedAt"] = _now()
        self.kv.put(shift_key(shift["id"]), shift)
        return copy.deepcopy(shift)

    def delete_shift(self, shift_id: str) -> bool:
        return self.kv.delete(shift_key(shift_id))

    def list_shifts(self, model_id: str | None = None) -> List[Document]:
        items = []
        for key in self.kv.list("shift:"):
            item = self.kv.get(key)
            if not isinstance(item, dict):
                continue
            if model_id is not None and item.get("modelId") != model_id:
                continue
            items.append(item)
        items.sort(key=lambda s: (s.get("date") or "", s.get("start") or ""))
        return items

    # audit

    def add_audit(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        details: dict | None = None,
        user_id: str | None = None,
    ) -> Document:
        ts = _now()
        # ns prefix keeps same-second entries in write order
        entry_id = f"{time.time_ns():016x}{uuid.uuid4().hex[:8]}"
        entry = {
            "id": entry_id,
            "ts": ts,
            "entityType": entity_type,
            "entityId": entity_id,
            "action": action,
            "userId": user_id,
            "details": copy.deepcopy(details or {}),
        }
        self.kv.put(audit_key(ts, entry_id), entry)
        return entry

    def list_audit(self, entity_type: str | None = None, entity_id: str | None = None, limit: int = 200) -> List[Document]:
        items = []
        for key in reversed(self.kv.list("audit:")):
            item = self.kv.get(key)
            if not isinstance(item, dict):
                continue
            if entity_type and item.get("entityType") != entity_type:
                continue
            if entity_id and item.get("entityId") != entity_id:
                continue
            items.append(item)
            if len(items) >= limit:
                break
        return items
