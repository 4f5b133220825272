"""Semi-structured data blocks shared between a slot and its model."""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any, Dict, List

from .canonical_json import canonical_dumps


DataBlock = Dict[str, Any]

# Well-known model_data keys that map onto first-class model attributes.
STANDARD_MODEL_FIELDS = (
    "fullName",
    "phone",
    "telegram",
    "birthDate",
    "docType",
    "docNumber",
    "internshipDate",
)

_MISSING = object()


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _serialize(value: Any) -> str | None:
    if value is _MISSING:
        return None
    return canonical_dumps(value, strict=False)


def normalize_data_block(value: Any) -> DataBlock:
    """Coerce any input into the canonical block shape.

    Missing or malformed parts become empty lists; entries of ``model_data``
    without a ``field`` key are dropped and field names are stringified. A
    field repeated within one block keeps its first position and last value.
    """
    block = value if isinstance(value, dict) else {}
    by_field: Dict[str, Any] = {}
    raw_items = block.get("model_data")
    if isinstance(raw_items, list):
        for item in raw_items:
            if not isinstance(item, dict) or item.get("field") is None:
                continue
            by_field[str(item["field"])] = copy.deepcopy(item.get("value"))
    model_data = [{"field": key, "value": val} for key, val in by_field.items()]
    forms = block.get("forms")
    edit_history = block.get("edit_history")
    return {
        "model_data": model_data,
        "forms": copy.deepcopy(forms) if isinstance(forms, list) else [],
        "user_id": block.get("user_id"),
        "edit_history": copy.deepcopy(edit_history) if isinstance(edit_history, list) else [],
    }


def merge_data_blocks(
    destination: Any,
    source: Any,
    record_edit: bool = True,
    edited_by: str | None = None,
) -> DataBlock:
    """Merge ``source`` into ``destination`` without removing anything.

    Fields present only in the destination are kept; fields in the source
    are added or overwritten when their serialized value differs. Each
    changed field yields one ``edit_history`` entry, all sharing one
    timestamp. Repeating an identical source produces no new history.
    """
    dst = normalize_data_block(destination)
    src = normalize_data_block(source)

    values: Dict[str, Any] = {}
    for item in dst["model_data"]:
        values[item["field"]] = item["value"]

    changes: List[dict] = []
    for item in src["model_data"]:
        key = item["field"]
        prev = values.get(key, _MISSING)
        nxt = item["value"]
        if _serialize(prev) != _serialize(nxt):
            changes.append({
                "field": key,
                "old_value": None if prev is _MISSING else prev,
                "new_value": nxt,
            })
            values[key] = nxt

    # Forms are concatenated without dedup, so re-merging the same source
    # duplicates its submissions. Kept for compatibility with stored blocks;
    # dedup by submission id is the candidate fix.
    forms = dst["forms"] + src["forms"]

    merged = {
        "model_data": [{"field": key, "value": value} for key, value in values.items()],
        "forms": forms,
        "user_id": src["user_id"] if src["user_id"] is not None else dst["user_id"],
        "edit_history": list(dst["edit_history"]),
    }

    if record_edit and changes:
        edited_at = _now()
        user_id = edited_by or src["user_id"] or dst["user_id"] or None
        for change in changes:
            merged["edit_history"].append({"edited_at": edited_at, "user_id": user_id, "changes": change})
    return merged


def extract_model_fields_from_data_block(value: Any) -> Dict[str, Any]:
    """Pick the well-known fields out of ``model_data``.

    Absent fields map to ``None``; callers must skip them instead of
    overwriting existing attributes.
    """
    block = normalize_data_block(value)
    found = {item["field"]: item["value"] for item in block["model_data"]}
    return {name: found.get(name) for name in STANDARD_MODEL_FIELDS}


def present_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in fields.items() if value is not None}


def data_block_changed(before: Any, after: Any) -> bool:
    left = normalize_data_block(before)
    right = normalize_data_block(after)
    return _serialize(left["model_data"]) != _serialize(right["model_data"]) or len(left["forms"]) != len(right["forms"])
