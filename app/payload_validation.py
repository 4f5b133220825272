"""Request payload checks for slot, model and shift writes."""

from __future__ import annotations

import copy
from datetime import date
from typing import Any

from staffing.statuses import STATUS_AXES, STATUS_DEFINITIONS, validate_status
from status_manager import LIFECYCLE_STATUSES, SHIFT_STATUSES, SHIFT_TYPES


_SLOT_FIELDS = ("date", "start", "end", "title", "employeeId", "modelId", "data_block", "comment")
_MODEL_FIELDS = ("name", "fullName", "contacts", "notes", "tags", "status", "data_block", "registration")
_SHIFT_FIELDS = ("modelId", "type", "status", "date", "start", "end", "notes")


def _err(code: str, message: str, path: str | None = None, detail: dict | None = None) -> dict:
    return {"code": code, "message": message, "path": path, "detail": detail}


def _is_iso_date(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        date.fromisoformat(value)
        return True
    except ValueError:
        return False


def _check_statuses(data: dict, errors: list[dict]) -> None:
    for axis in STATUS_AXES:
        if axis not in data:
            continue
        if not validate_status(axis, data[axis]):
            allowed = list(STATUS_DEFINITIONS[axis]["values"])
            errors.append(_err("STATUS_INVALID", f"{axis} must be one of {allowed}", path=axis, detail={"value": data[axis]}))


def _pick(data: dict, fields: tuple, with_statuses: bool = True) -> dict:
    clean = {key: copy.deepcopy(data[key]) for key in fields if key in data}
    for axis in STATUS_AXES if with_statuses else ():
        if axis in data:
            clean[axis] = data[axis]
    return clean


def validate_slot_payload(data: Any, for_create: bool) -> tuple[list[dict], dict]:
    if not isinstance(data, dict):
        return [_err("VALIDATION_FAILED", "Slot payload must be an object")], {}
    errors: list[dict] = []
    if for_create:
        if not _is_iso_date(data.get("date")):
            errors.append(_err("VALIDATION_FAILED", "date must be YYYY-MM-DD", path="date"))
        if not isinstance(data.get("start"), str) or not data.get("start"):
            errors.append(_err("VALIDATION_FAILED", "start is required", path="start"))
    elif "date" in data and not _is_iso_date(data.get("date")):
        errors.append(_err("VALIDATION_FAILED", "date must be YYYY-MM-DD", path="date"))
    if "data_block" in data and data["data_block"] is not None and not isinstance(data["data_block"], dict):
        errors.append(_err("VALIDATION_FAILED", "data_block must be an object", path="data_block"))
    _check_statuses(data, errors)
    return errors, _pick(data, _SLOT_FIELDS)


def validate_model_payload(data: Any, for_create: bool) -> tuple[list[dict], dict]:
    if not isinstance(data, dict):
        return [_err("VALIDATION_FAILED", "Model payload must be an object")], {}
    errors: list[dict] = []
    if for_create and not (isinstance(data.get("name"), str) and data["name"].strip()):
        errors.append(_err("VALIDATION_FAILED", "name is required", path="name"))
    if not for_create and "name" in data and not (isinstance(data["name"], str) and data["name"].strip()):
        errors.append(_err("VALIDATION_FAILED", "name must be a non-empty string", path="name"))
    if "status" in data and data["status"] not in LIFECYCLE_STATUSES:
        errors.append(_err("VALIDATION_FAILED", f"status must be one of {list(LIFECYCLE_STATUSES)}", path="status"))
    if "contacts" in data and data["contacts"] is not None and not isinstance(data["contacts"], dict):
        errors.append(_err("VALIDATION_FAILED", "contacts must be an object", path="contacts"))
    if "data_block" in data and data["data_block"] is not None and not isinstance(data["data_block"], dict):
        errors.append(_err("VALIDATION_FAILED", "data_block must be an object", path="data_block"))
    _check_statuses(data, errors)
    clean = _pick(data, _MODEL_FIELDS)
    if isinstance(clean.get("name"), str):
        clean["name"] = clean["name"].strip()
    return errors, clean


def validate_shift_payload(data: Any, for_create: bool) -> tuple[list[dict], dict]:
    if not isinstance(data, dict):
        return [_err("VALIDATION_FAILED", "Shift payload must be an object")], {}
    errors: list[dict] = []
    if for_create:
        if not isinstance(data.get("modelId"), str) or not data.get("modelId"):
            errors.append(_err("VALIDATION_FAILED", "modelId is required", path="modelId"))
        if data.get("type") not in SHIFT_TYPES:
            errors.append(_err("VALIDATION_FAILED", f"type must be one of {list(SHIFT_TYPES)}", path="type"))
    elif "type" in data and data["type"] not in SHIFT_TYPES:
        errors.append(_err("VALIDATION_FAILED", f"type must be one of {list(SHIFT_TYPES)}", path="type"))
    if "status" in data and data["status"] not in SHIFT_STATUSES:
        errors.append(_err("VALIDATION_FAILED", f"status must be one of {list(SHIFT_STATUSES)}", path="status"))
    if "date" in data and data["date"] is not None and not _is_iso_date(data["date"]):
        errors.append(_err("VALIDATION_FAILED", "date must be YYYY-MM-DD", path="date"))
    return errors, _pick(data, _SHIFT_FIELDS, with_statuses=False)
