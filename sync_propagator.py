"""Best-effort propagation between a slot and its linked model.

Every function here writes the counterpart straight through the record
store, never through the route-level "detect change and propagate" path, so
a propagation from A to B cannot bounce back from B to A. Failures on the
counterpart are logged and returned as issues; the primary write that
triggered the propagation is never rolled back.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from staffing.data_block import (
    data_block_changed,
    extract_model_fields_from_data_block,
    merge_data_blocks,
    present_fields,
)
from staffing.history import append_history
from staffing.statuses import STATUS_AXES, normalize_statuses, status_diff, status_vector


Issue = Dict[str, Any]

logger = logging.getLogger("crm.sync")

_CONTACT_FIELDS = ("phone", "telegram")
_REGISTRATION_FIELDS = ("birthDate", "docType", "docNumber", "internshipDate")


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


def _result(ok: bool = True, synced: bool = False, changes: Any = None, errors: List[Issue] | None = None) -> dict:
    return {"ok": ok, "synced": synced, "changes": changes, "errors": errors or [], "warnings": []}


def _failed(kind: str, exc: Exception, **ids: Any) -> dict:
    detail = {key: value for key, value in ids.items() if value is not None}
    logger.warning("sync_failed kind=%s ids=%s error=%s", kind, detail, exc)
    return _result(ok=False, errors=[_issue("SYNC_FAILED", str(exc), kind, detail)])


def _missing(kind: str, code: str, message: str, **ids: Any) -> dict:
    detail = {key: value for key, value in ids.items() if value is not None}
    logger.warning("sync_target_missing kind=%s code=%s ids=%s", kind, code, detail)
    return _result(ok=False, errors=[_issue(code, message, kind, detail)])


def slot_ref(slot: dict) -> dict:
    """Denormalized snapshot of a slot stored on the model it produced."""
    return {
        "id": slot.get("id"),
        "date": slot.get("date"),
        "start": slot.get("start"),
        "end": slot.get("end"),
        "title": slot.get("title"),
    }


def linked_slot_ref(model: dict) -> dict | None:
    registration = model.get("registration") if isinstance(model, dict) else None
    ref = registration.get("slotRef") if isinstance(registration, dict) else None
    if isinstance(ref, dict) and ref.get("id"):
        return ref
    return None


def _edited_fields(before: Any, merged: dict) -> List[str]:
    known = len(before.get("edit_history") or []) if isinstance(before, dict) and isinstance(before.get("edit_history"), list) else 0
    return [entry["changes"]["field"] for entry in merged["edit_history"][known:]]


def _load_linked_slot(records, ref: dict) -> dict | None:
    slot = records.get_slot(ref.get("date"), ref.get("id")) if ref.get("date") else None
    if slot is None:
        slot = records.find_slot(ref.get("id"))
    return slot


def assign_statuses(target: dict, vector: Any) -> dict:
    """Overwrite all four axes on ``target``; optional axes absent from the vector are cleared."""
    normalized = normalize_statuses(vector)
    for axis in STATUS_AXES:
        if axis in normalized:
            target[axis] = normalized[axis]
        else:
            target.pop(axis, None)
    return status_vector(normalized)


def apply_extracted_fields(model: dict, fields: dict) -> List[str]:
    """Copy extracted data-block fields onto model attributes, skipping absent ones."""
    updated: List[str] = []
    values = present_fields(fields)
    if "fullName" in values and model.get("fullName") != values["fullName"]:
        model["fullName"] = values["fullName"]
        updated.append("fullName")
    contacts = model.get("contacts") if isinstance(model.get("contacts"), dict) else {}
    for name in _CONTACT_FIELDS:
        if name in values and contacts.get(name) != values[name]:
            contacts[name] = values[name]
            updated.append(name)
    model["contacts"] = contacts
    registration = model.get("registration") if isinstance(model.get("registration"), dict) else {}
    for name in _REGISTRATION_FIELDS:
        if name in values and registration.get(name) != values[name]:
            registration[name] = values[name]
            updated.append(name)
    model["registration"] = registration
    return updated


def sync_slot_model_statuses(records, slot_id: str, slot_date: str, model_id: str, new_vector: Any, user_id: str | None = None) -> dict:
    """Push a slot's status vector onto its linked model."""
    if not model_id:
        return _result()
    try:
        model = records.get_model(model_id)
        if model is None:
            return _missing("status_sync_from_slot", "MODEL_NOT_FOUND", "Linked model not found", slot_id=slot_id, model_id=model_id)
        before = status_vector(model)
        after = assign_statuses(model, new_vector)
        changes = status_diff(before, after)
        if not changes:
            return _result()
        append_history(
            model,
            "status_sync_from_slot",
            user_id=user_id,
            slot={"id": slot_id, "date": slot_date},
            statuses=after,
            changes=changes,
        )
        registration = model.get("registration") if isinstance(model.get("registration"), dict) else {}
        registration["statuses"] = after
        model["registration"] = registration
        records.put_model(model)
        logger.info("status_synced direction=slot_to_model slot_id=%s model_id=%s axes=%s", slot_id, model_id, sorted(changes))
        return _result(synced=True, changes=changes)
    except Exception as exc:
        return _failed("status_sync_from_slot", exc, slot_id=slot_id, model_id=model_id)


def sync_model_slot_statuses(records, model_id: str, slot_id: str, slot_date: str | None, new_vector: Any, user_id: str | None = None) -> dict:
    """Push a model's status vector onto the slot it was registered from."""
    if not slot_id:
        return _result()
    try:
        slot = _load_linked_slot(records, {"id": slot_id, "date": slot_date})
        if slot is None:
            return _missing("status_sync_from_model", "SLOT_NOT_FOUND", "Linked slot not found", slot_id=slot_id, model_id=model_id)
        before = status_vector(slot)
        after = assign_statuses(slot, new_vector)
        changes = status_diff(before, after)
        if not changes:
            return _result()
        append_history(
            slot,
            "status_sync_from_model",
            user_id=user_id,
            model={"id": model_id},
            statuses=after,
            changes=changes,
        )
        records.put_slot(slot)
        logger.info("status_synced direction=model_to_slot slot_id=%s model_id=%s axes=%s", slot_id, model_id, sorted(changes))
        return _result(synced=True, changes=changes)
    except Exception as exc:
        return _failed("status_sync_from_model", exc, slot_id=slot_id, model_id=model_id)


def sync_title_to_slot(records, model: dict, user_id: str | None = None) -> dict:
    """After a model rename, retitle the slot referenced by ``registration.slotRef``."""
    ref = linked_slot_ref(model)
    if ref is None:
        return _result()
    try:
        slot = _load_linked_slot(records, ref)
        if slot is None:
            return _missing("title_sync_from_model", "SLOT_NOT_FOUND", "Linked slot not found", slot_id=ref.get("id"), model_id=model.get("id"))
        new_title = model.get("name")
        old_title = slot.get("title")
        if not new_title or old_title == new_title:
            return _result()
        append_history(
            slot,
            "title_sync_from_model",
            user_id=user_id,
            model={"id": model.get("id")},
            old_title=old_title,
            new_title=new_title,
        )
        slot["title"] = new_title
        records.put_slot(slot)
        logger.info("title_synced direction=model_to_slot slot_id=%s model_id=%s", slot.get("id"), model.get("id"))
        return _result(synced=True, changes={"title": {"from": old_title, "to": new_title}})
    except Exception as exc:
        return _failed("title_sync_from_model", exc, slot_id=ref.get("id"), model_id=model.get("id"))


def sync_title_to_model(records, slot: dict, model_id: str, user_id: str | None = None) -> dict:
    """Linking path: seed a model's name from the slot title."""
    if not model_id:
        return _result()
    try:
        model = records.get_model(model_id)
        if model is None:
            return _missing("name_sync_from_slot", "MODEL_NOT_FOUND", "Linked model not found", slot_id=slot.get("id"), model_id=model_id)
        new_name = (slot.get("title") or "").strip()
        old_name = model.get("name")
        if not new_name or old_name == new_name:
            return _result()
        append_history(
            model,
            "name_sync_from_slot",
            user_id=user_id,
            slot={"id": slot.get("id"), "date": slot.get("date")},
            old_name=old_name,
            new_name=new_name,
        )
        model["name"] = new_name
        records.put_model(model)
        return _result(synced=True, changes={"name": {"from": old_name, "to": new_name}})
    except Exception as exc:
        return _failed("name_sync_from_slot", exc, slot_id=slot.get("id"), model_id=model_id)


def sync_data_block_to_model(records, slot: dict, user_id: str | None = None) -> dict:
    """Merge a slot's data block into its linked model and refresh model attributes."""
    model_id = slot.get("modelId")
    if not model_id:
        return _result()
    try:
        model = records.get_model(model_id)
        if model is None:
            return _missing("data_sync_from_slot", "MODEL_NOT_FOUND", "Linked model not found", slot_id=slot.get("id"), model_id=model_id)
        before = model.get("data_block")
        merged = merge_data_blocks(before, slot.get("data_block"), record_edit=True, edited_by=user_id)
        fields = _edited_fields(before, merged)
        model["data_block"] = merged
        updated_fields = apply_extracted_fields(model, extract_model_fields_from_data_block(merged))
        if not data_block_changed(before, merged) and not updated_fields:
            return _result()
        append_history(
            model,
            "data_sync_from_slot",
            user_id=user_id,
            slot={"id": slot.get("id"), "date": slot.get("date")},
            fields=fields,
            updated_attributes=updated_fields,
        )
        records.put_model(model)
        logger.info("data_synced direction=slot_to_model slot_id=%s model_id=%s fields=%s", slot.get("id"), model_id, len(fields))
        return _result(synced=True, changes={"fields": fields, "attributes": updated_fields})
    except Exception as exc:
        return _failed("data_sync_from_slot", exc, slot_id=slot.get("id"), model_id=model_id)


def sync_data_block_to_slot(records, model: dict, user_id: str | None = None) -> dict:
    """Merge a model's data block back into its slot; only run on explicit request."""
    ref = linked_slot_ref(model)
    if ref is None:
        return _result()
    try:
        slot = _load_linked_slot(records, ref)
        if slot is None:
            return _missing("data_sync_from_model", "SLOT_NOT_FOUND", "Linked slot not found", slot_id=ref.get("id"), model_id=model.get("id"))
        before = slot.get("data_block")
        merged = merge_data_blocks(before, model.get("data_block"), record_edit=True, edited_by=user_id)
        fields = _edited_fields(before, merged)
        if not data_block_changed(before, merged):
            return _result()
        slot["data_block"] = merged
        append_history(
            slot,
            "data_sync_from_model",
            user_id=user_id,
            model={"id": model.get("id")},
            fields=fields,
        )
        records.put_slot(slot)
        logger.info("data_synced direction=model_to_slot slot_id=%s model_id=%s fields=%s", slot.get("id"), model.get("id"), len(fields))
        return _result(synced=True, changes={"fields": fields})
    except Exception as exc:
        return _failed("data_sync_from_model", exc, slot_id=ref.get("id"), model_id=model.get("id"))


def refresh_slot_ref(records, slot: dict, user_id: str | None = None) -> dict:
    """Write the model's ``registration.slotRef`` snapshot after a slot edit or link."""
    model_id = slot.get("modelId")
    if not model_id:
        return _result()
    try:
        model = records.get_model(model_id)
        if model is None:
            return _missing("slot_ref_refresh", "MODEL_NOT_FOUND", "Linked model not found", slot_id=slot.get("id"), model_id=model_id)
        registration = model.get("registration") if isinstance(model.get("registration"), dict) else {}
        old_ref = registration.get("slotRef")
        new_ref = slot_ref(slot)
        if old_ref == new_ref:
            return _result()
        append_history(model, "slot_ref_sync_from_slot", user_id=user_id, old_ref=old_ref, new_ref=new_ref)
        registration["slotRef"] = new_ref
        model["registration"] = registration
        records.put_model(model)
        return _result(synced=True, changes={"slotRef": {"from": old_ref, "to": new_ref}})
    except Exception as exc:
        return _failed("slot_ref_refresh", exc, slot_id=slot.get("id"), model_id=model_id)


def sync_lifecycle_to_slot(records, model: dict, user_id: str | None = None) -> dict:
    """Mirror a model's lifecycle stage onto its slot as ``modelStatus``."""
    ref = linked_slot_ref(model)
    if ref is None:
        return _result()
    try:
        slot = _load_linked_slot(records, ref)
        if slot is None:
            return _missing("lifecycle_sync_from_model", "SLOT_NOT_FOUND", "Linked slot not found", slot_id=ref.get("id"), model_id=model.get("id"))
        old_status = slot.get("modelStatus")
        new_status = model.get("status")
        if old_status == new_status:
            return _result()
        append_history(
            slot,
            "lifecycle_sync_from_model",
            user_id=user_id,
            model={"id": model.get("id")},
            changes={"modelStatus": {"from": old_status, "to": new_status}},
        )
        slot["modelStatus"] = new_status
        records.put_slot(slot)
        return _result(synced=True, changes={"modelStatus": {"from": old_status, "to": new_status}})
    except Exception as exc:
        return _failed("lifecycle_sync_from_model", exc, slot_id=ref.get("id"), model_id=model.get("id"))


def unlink_slot(records, model: dict, user_id: str | None = None) -> dict:
    """On model deletion, clear ``modelId`` on every slot that points at it."""
    model_id = model.get("id")
    try:
        slots = records.slots_for_model(model_id)
        ref = linked_slot_ref(model)
        if ref is not None and not any(s.get("id") == ref.get("id") for s in slots):
            linked = _load_linked_slot(records, ref)
            if linked is not None and linked.get("modelId") == model_id:
                slots.append(linked)
        unlinked = []
        for slot in slots:
            slot["modelId"] = None
            append_history(slot, "model_unlinked", user_id=user_id, model={"id": model_id}, reason="model_deleted")
            records.put_slot(slot)
            unlinked.append(slot.get("id"))
        return _result(synced=bool(unlinked), changes={"slots": unlinked})
    except Exception as exc:
        return _failed("model_unlink", exc, model_id=model_id)


def unlink_model(records, slot: dict, user_id: str | None = None, reason: str = "slot_deleted") -> dict:
    """On slot deletion or relink, drop the model's ``registration.slotRef`` if it points at the slot."""
    model_id = slot.get("modelId")
    if not model_id:
        return _result()
    try:
        model = records.get_model(model_id)
        if model is None:
            return _missing("slot_unlink", "MODEL_NOT_FOUND", "Linked model not found", slot_id=slot.get("id"), model_id=model_id)
        ref = linked_slot_ref(model)
        if ref is None or ref.get("id") != slot.get("id"):
            return _result()
        model["registration"]["slotRef"] = None
        append_history(model, "slot_unlinked", user_id=user_id, slot={"id": slot.get("id"), "date": slot.get("date")}, reason=reason)
        records.put_model(model)
        return _result(synced=True, changes={"slotRef": {"from": ref, "to": None}})
    except Exception as exc:
        return _failed("slot_unlink", exc, slot_id=slot.get("id"), model_id=model_id)


def collect_warnings(*results: dict) -> List[Issue]:
    """Flatten propagation issues into response warnings."""
    warnings: List[Issue] = []
    for res in results:
        if isinstance(res, dict):
            warnings.extend(res.get("errors") or [])
    return warnings
