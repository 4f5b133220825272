"""Advance a model's lifecycle stage when one of its shifts is completed."""

from __future__ import annotations

import logging
from typing import Any, Dict

from staffing.history import append_history
from status_manager import SHIFT_COMPLETED, StatusManager, count_completed_shifts
from sync_propagator import linked_slot_ref, sync_lifecycle_to_slot


logger = logging.getLogger("crm.lifecycle")


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Dict[str, Any]:
    return {"code": code, "message": message, "path": path, "detail": detail}


def apply_shift_completion(records, shift: dict, user_id: str | None = None, manager: StatusManager | None = None) -> dict:
    """Recount completed shifts and move the model to its next stage if a rule fires.

    Counts always come from the full shift set of the model, so completing
    the same shift twice cannot double count. Returns a result dict with
    ``transitioned`` plus the stage before and after.
    """
    manager = manager or StatusManager()
    result: Dict[str, Any] = {
        "ok": True,
        "transitioned": False,
        "from_status": None,
        "to_status": None,
        "stats": None,
        "errors": [],
        "warnings": [],
    }
    if not isinstance(shift, dict) or shift.get("status") != SHIFT_COMPLETED:
        return result
    model_id = shift.get("modelId")
    model = records.get_model(model_id) if model_id else None
    if model is None:
        result["ok"] = False
        result["errors"].append(_issue("MODEL_NOT_FOUND", "Model for shift not found", "modelId", {"shift_id": shift.get("id")}))
        return result

    stats = count_completed_shifts(records.list_shifts(model_id=model_id), model_id=model_id)
    current = model.get("status")
    new_status = manager.calculate_new_status(current, shift.get("type"), stats)
    result.update({"from_status": current, "to_status": new_status, "stats": stats})
    if new_status == current:
        return result

    description = manager.get_status_change_description(current, new_status, shift.get("type"))
    model["status"] = new_status
    model["shiftStats"] = stats
    append_history(
        model,
        "lifecycle_transition",
        user_id=user_id,
        from_status=current,
        to_status=new_status,
        shift_id=shift.get("id"),
        shift_type=shift.get("type"),
        description=description,
        stats=stats,
    )
    records.put_model(model)
    records.add_audit(
        "model",
        model_id,
        "status_change",
        {
            "from": current,
            "to": new_status,
            "shift_id": shift.get("id"),
            "shift_type": shift.get("type"),
            "description": description,
            "stats": stats,
        },
        user_id=user_id,
    )
    logger.info("lifecycle_transition model_id=%s from=%s to=%s shift_id=%s", model_id, current, new_status, shift.get("id"))
    result["transitioned"] = True

    if linked_slot_ref(model) is not None:
        sync = sync_lifecycle_to_slot(records, model, user_id=user_id)
        result["warnings"].extend(sync.get("errors") or [])
    return result
