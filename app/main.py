"""FastAPI app for the staffing CRM."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Dict

from fastapi import FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

import time
import logging
import uuid
from datetime import datetime, timezone

from app.auth import SessionAuthMiddleware, auth_disabled
from app.db import get_db_stats, reset_db_stats
from app.payload_validation import validate_model_payload, validate_shift_payload, validate_slot_payload
from app.stores import MemoryKvStore
from app.stores_db import DbKvStore
from record_store import CrmRecordStore, new_id
from shift_completion import apply_shift_completion
from staffing.data_block import data_block_changed, extract_model_fields_from_data_block, merge_data_blocks, normalize_data_block
from staffing.history import append_history
from staffing.statuses import STATUS_AXES, normalize_statuses, status_change_entry, status_vector
from status_manager import REGISTERED, SHIFT_COMPLETED, SHIFT_REGULAR, SHIFT_TRAINING, StatusManager, count_completed_shifts
from sync_propagator import (
    apply_extracted_fields,
    assign_statuses,
    collect_warnings,
    linked_slot_ref,
    refresh_slot_ref,
    slot_ref,
    sync_data_block_to_model,
    sync_data_block_to_slot,
    sync_lifecycle_to_slot,
    sync_model_slot_statuses,
    sync_slot_model_statuses,
    sync_title_to_model,
    sync_title_to_slot,
    unlink_model,
    unlink_slot,
)


app = FastAPI(title="Staffing CRM")
logger = logging.getLogger("crm")
logging.basicConfig(level=logging.INFO)

USE_DB = os.getenv("USE_DB", "").strip() == "1"
DISABLE_AUTH = auth_disabled()
SESSION_HMAC_SECRET = os.getenv("SESSION_HMAC_SECRET", "").strip()
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "mirrorsid").strip() or "mirrorsid"
REQ_SLOW_MS = float(os.getenv("CRM_REQ_SLOW_MS", "250"))

if USE_DB:
    kv = DbKvStore()
else:
    kv = MemoryKvStore()

records = CrmRecordStore(kv)
status_manager = StatusManager()

_REGISTRATION_FIELDS = ("birthDate", "docType", "docNumber", "internshipDate", "comment")
_SLOT_REF_FIELDS = ("date", "start", "end", "title")


@app.on_event("startup")
async def _ensure_kv_schema() -> None:
    if USE_DB:
        kv.ensure_schema()


@app.middleware("http")
async def timing_middleware(request: Request, call_next):
    reset_db_stats()
    start = time.perf_counter()
    response = await call_next(request)
    total_ms = (time.perf_counter() - start) * 1000
    db_stats = get_db_stats()
    route = request.scope.get("route")
    route_name = getattr(route, "name", None) or "unknown"
    logger.info(
        "%s %s %s route=%s total_ms=%.1f db_ms=%.1f db_q=%s",
        request.method,
        request.url.path,
        response.status_code,
        route_name,
        total_ms,
        db_stats.get("total_ms", 0.0),
        db_stats.get("queries", 0),
    )
    if total_ms >= REQ_SLOW_MS:
        logger.warning("slow_request method=%s path=%s route=%s total_ms=%.1f", request.method, request.url.path, route_name, total_ms)
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error path=%s", request.url.path)
    return _error_response("INTERNAL_ERROR", "Unexpected server error", detail={"error": str(exc)}, status=500)


if not DISABLE_AUTH:
    if not SESSION_HMAC_SECRET:
        raise RuntimeError("SESSION_HMAC_SECRET is required for auth")
    app.add_middleware(SessionAuthMiddleware, secret=SESSION_HMAC_SECRET, cookie_name=SESSION_COOKIE_NAME)


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _validation_response(errors: list[dict]) -> JSONResponse:
    body = {"ok": False, "errors": errors, "warnings": []}
    return JSONResponse(jsonable_encoder(body), status_code=400)


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200) -> JSONResponse:
    body = {"ok": True, **payload, "errors": [], "warnings": warnings or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


async def _safe_json(request: Request) -> Any:
    try:
        return await request.json()
    except Exception:
        return {}


def _payload(body: Any) -> Any:
    if isinstance(body, dict) and "dataBlock" in body and "data_block" not in body:
        body = dict(body)
        body["data_block"] = body.pop("dataBlock")
    return body


def _user_id(request: Request) -> str | None:
    user = getattr(request.state, "user", None)
    if isinstance(user, dict):
        return user.get("id")
    return None


def _present(doc: dict) -> dict:
    item = normalize_statuses(doc)
    item["data_block"] = normalize_data_block(item.get("data_block"))
    if not isinstance(item.get("history"), list):
        item["history"] = []
    return item


def _requested_vector(current: dict, clean: dict) -> dict | None:
    if not any(axis in clean for axis in STATUS_AXES):
        return None
    vector = status_vector(current)
    for axis in STATUS_AXES:
        if axis in clean:
            vector[axis] = clean[axis]
    return vector


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


# slots


@app.get("/slots")
async def list_slots(date: str | None = None) -> JSONResponse:
    items = [_present(s) for s in records.list_slots(date)]
    return _ok_response({"slots": items})


@app.get("/slots/{slot_date}/{slot_id}")
async def get_slot(slot_date: str, slot_id: str) -> JSONResponse:
    slot = records.get_slot(slot_date, slot_id)
    if slot is None:
        return _error_response("SLOT_NOT_FOUND", "Slot not found", "slot_id", status=404)
    return _ok_response({"slot": _present(slot)})


@app.post("/slots")
async def create_slot(request: Request) -> JSONResponse:
    user_id = _user_id(request)
    errors, clean = validate_slot_payload(_payload(await _safe_json(request)), for_create=True)
    if errors:
        return _validation_response(errors)
    slot: Dict[str, Any] = {
        "id": new_id("slot"),
        "date": clean["date"],
        "start": clean.get("start"),
        "end": clean.get("end"),
        "title": (clean.get("title") or "").strip(),
        "employeeId": clean.get("employeeId"),
        "modelId": clean.get("modelId"),
        "comment": clean.get("comment"),
        "data_block": normalize_data_block(clean.get("data_block")),
        "history": [],
        "createdAt": _now(),
        "createdBy": user_id,
    }
    assign_statuses(slot, {axis: clean[axis] for axis in STATUS_AXES if axis in clean})
    append_history(slot, "created", user_id=user_id, statuses=status_vector(slot))
    saved = records.put_slot(slot)
    records.add_audit("slot", slot["id"], "create", {"date": slot["date"], "title": slot["title"]}, user_id=user_id)
    return _ok_response({"slot": _present(saved)}, status=201)


@app.put("/slots/{slot_date}/{slot_id}")
async def update_slot(slot_date: str, slot_id: str, request: Request) -> JSONResponse:
    user_id = _user_id(request)
    slot = records.get_slot(slot_date, slot_id)
    if slot is None:
        return _error_response("SLOT_NOT_FOUND", "Slot not found", "slot_id", status=404)
    errors, clean = validate_slot_payload(_payload(await _safe_json(request)), for_create=False)
    if errors:
        return _validation_response(errors)

    ref_before = slot_ref(slot)
    previous_model_id = slot.get("modelId")
    audit: Dict[str, Any] = {}
    for name in ("date", "start", "end", "title", "employeeId", "comment"):
        if name in clean and slot.get(name) != clean[name]:
            audit[name] = {"from": slot.get(name), "to": clean[name]}
            slot[name] = clean[name]
    if "modelId" in clean and slot.get("modelId") != clean["modelId"]:
        audit["modelId"] = {"from": slot.get("modelId"), "to": clean["modelId"]}
        append_history(slot, "model_link_changed", user_id=user_id, old_model_id=slot.get("modelId"), new_model_id=clean["modelId"])
        slot["modelId"] = clean["modelId"]

    status_changes: dict = {}
    requested = _requested_vector(slot, clean)
    if requested is not None:
        before = status_vector(slot)
        entry = status_change_entry(before, assign_statuses(slot, requested))
        status_changes = entry["changes"]
        if status_changes:
            append_history(slot, "status_change", user_id=user_id, **entry)
            audit["statuses"] = status_changes

    data_changed = False
    if "data_block" in clean:
        before_block = slot.get("data_block")
        slot["data_block"] = merge_data_blocks(before_block, clean["data_block"], record_edit=True, edited_by=user_id)
        data_changed = data_block_changed(before_block, slot["data_block"])
        if data_changed:
            audit["data_block"] = True

    if not audit:
        return _ok_response({"slot": _present(slot)})

    if slot["date"] != slot_date:
        records.delete_slot(slot_date, slot_id)
    saved = records.put_slot(slot)
    records.add_audit("slot", slot_id, "update", audit, user_id=user_id)

    results = []
    model_id = slot.get("modelId")
    relinked = model_id != previous_model_id
    if relinked and previous_model_id:
        previous = {**slot, "modelId": previous_model_id}
        results.append(unlink_model(records, previous, user_id=user_id, reason="slot_relinked"))
    if model_id:
        if status_changes:
            results.append(sync_slot_model_statuses(records, slot_id, slot["date"], model_id, status_vector(slot), user_id=user_id))
        if data_changed:
            results.append(sync_data_block_to_model(records, slot, user_id=user_id))
        if relinked or slot_ref(slot) != ref_before:
            results.append(refresh_slot_ref(records, slot, user_id=user_id))
    return _ok_response({"slot": _present(saved)}, warnings=collect_warnings(*results))


@app.delete("/slots/{slot_date}/{slot_id}")
async def delete_slot(slot_date: str, slot_id: str, request: Request) -> JSONResponse:
    user_id = _user_id(request)
    slot = records.get_slot(slot_date, slot_id)
    if slot is None:
        return _error_response("SLOT_NOT_FOUND", "Slot not found", "slot_id", status=404)
    records.delete_slot(slot_date, slot_id)
    records.add_audit("slot", slot_id, "delete", {"date": slot_date, "modelId": slot.get("modelId")}, user_id=user_id)
    result = unlink_model(records, slot, user_id=user_id)
    return _ok_response({"deleted": True}, warnings=collect_warnings(result))


# models


@app.get("/models")
async def list_models() -> JSONResponse:
    return _ok_response({"models": [_present(m) for m in records.list_models()]})


@app.get("/models/{model_id}")
async def get_model(model_id: str) -> JSONResponse:
    model = records.get_model(model_id)
    if model is None:
        return _error_response("MODEL_NOT_FOUND", "Model not found", "model_id", status=404)
    return _ok_response({"model": _present(model)})


def _new_model(user_id: str | None) -> Dict[str, Any]:
    return {
        "id": new_id("model"),
        "name": "",
        "fullName": None,
        "contacts": {},
        "status": REGISTERED,
        "data_block": normalize_data_block(None),
        "registration": {},
        "history": [],
        "comments": [],
        "createdAt": _now(),
        "createdBy": user_id,
    }


def _register_from_slot(body: dict, user_id: str | None) -> JSONResponse:
    slot_id = body.get("slotId")
    slot_date = body.get("date")
    if not isinstance(slot_id, str) or not slot_id or not isinstance(slot_date, str) or not slot_date:
        return _error_response("VALIDATION_FAILED", "slotId and date are required", "slotId", status=400)
    slot = records.get_slot(slot_date, slot_id)
    if slot is None:
        return _error_response("SLOT_NOT_FOUND", "Slot not found", "slotId", status=404)
    if slot.get("modelId") and records.get_model(slot["modelId"]) is not None:
        return _error_response("SLOT_ALREADY_LINKED", "Slot already has a model", "slotId", {"modelId": slot["modelId"]}, status=409)
    errors, clean = validate_model_payload({k: v for k, v in body.items() if k not in ("action", "slotId", "date")}, for_create=False)
    if errors:
        return _validation_response(errors)

    model = _new_model(user_id)
    submitted = clean.get("data_block")
    model["data_block"] = merge_data_blocks(slot.get("data_block"), submitted, record_edit=submitted is not None, edited_by=user_id)
    fields = extract_model_fields_from_data_block(model["data_block"])
    apply_extracted_fields(model, fields)
    model["name"] = clean.get("name") or fields.get("fullName") or ""
    if isinstance(clean.get("contacts"), dict):
        model["contacts"].update(clean["contacts"])
    vector = status_vector(slot)
    vector["status4"] = "registration"
    statuses = assign_statuses(model, vector)
    model["registration"].update({"slotRef": slot_ref(slot), "statuses": statuses})
    append_history(model, "registered_from_slot", user_id=user_id, slot={"id": slot_id, "date": slot_date}, statuses=statuses)
    records.put_model(model)

    results = []
    if not model["name"]:
        results.append(sync_title_to_model(records, slot, model["id"], user_id=user_id))

    slot["modelId"] = model["id"]
    assign_statuses(slot, {**status_vector(slot), "status4": "registration"})
    append_history(slot, "model_linked", user_id=user_id, model={"id": model["id"]}, statuses=status_vector(slot))
    saved_slot = records.put_slot(slot)
    records.add_audit("model", model["id"], "register_from_slot", {"slotId": slot_id, "date": slot_date}, user_id=user_id)
    records.add_audit("slot", slot_id, "link", {"modelId": model["id"]}, user_id=user_id)
    logger.info("model_registered_from_slot model_id=%s slot_id=%s", model["id"], slot_id)
    saved = records.get_model(model["id"]) or model
    return _ok_response({"model": _present(saved), "slot": _present(saved_slot)}, warnings=collect_warnings(*results), status=201)


@app.post("/models")
async def create_model(request: Request) -> JSONResponse:
    user_id = _user_id(request)
    body = _payload(await _safe_json(request))
    if isinstance(body, dict) and body.get("action") == "registerFromSlot":
        return _register_from_slot(body, user_id)
    errors, clean = validate_model_payload(body, for_create=True)
    if errors:
        return _validation_response(errors)
    model = _new_model(user_id)
    model["name"] = clean["name"]
    model["fullName"] = clean.get("fullName")
    model["status"] = clean.get("status") or REGISTERED
    for name in ("notes", "tags"):
        if name in clean:
            model[name] = clean[name]
    if isinstance(clean.get("contacts"), dict):
        model["contacts"] = clean["contacts"]
    if isinstance(clean.get("registration"), dict):
        model["registration"] = {k: v for k, v in clean["registration"].items() if k in _REGISTRATION_FIELDS}
    if clean.get("data_block") is not None:
        model["data_block"] = merge_data_blocks(None, clean["data_block"], record_edit=True, edited_by=user_id)
        apply_extracted_fields(model, extract_model_fields_from_data_block(model["data_block"]))
    assign_statuses(model, {axis: clean[axis] for axis in STATUS_AXES if axis in clean})
    append_history(model, "created", user_id=user_id, statuses=status_vector(model))
    saved = records.put_model(model)
    records.add_audit("model", model["id"], "create", {"name": model["name"]}, user_id=user_id)
    return _ok_response({"model": _present(saved)}, status=201)


@app.put("/models/{model_id}")
async def update_model(model_id: str, request: Request) -> JSONResponse:
    user_id = _user_id(request)
    model = records.get_model(model_id)
    if model is None:
        return _error_response("MODEL_NOT_FOUND", "Model not found", "model_id", status=404)
    errors, clean = validate_model_payload(_payload(await _safe_json(request)), for_create=False)
    if errors:
        return _validation_response(errors)

    audit: Dict[str, Any] = {}
    name_changed = "name" in clean and model.get("name") != clean["name"]
    if name_changed:
        audit["name"] = {"from": model.get("name"), "to": clean["name"]}
        append_history(model, "name_change", user_id=user_id, old_name=model.get("name"), new_name=clean["name"])
        model["name"] = clean["name"]
    for name in ("fullName", "notes", "tags"):
        if name in clean and model.get(name) != clean[name]:
            audit[name] = {"from": model.get(name), "to": clean[name]}
            model[name] = clean[name]
    if isinstance(clean.get("contacts"), dict):
        contacts = dict(model.get("contacts") or {})
        contacts.update(clean["contacts"])
        if contacts != model.get("contacts"):
            audit["contacts"] = True
            model["contacts"] = contacts
    if isinstance(clean.get("registration"), dict):
        registration = model.get("registration") if isinstance(model.get("registration"), dict) else {}
        for name in _REGISTRATION_FIELDS:
            if name in clean["registration"] and registration.get(name) != clean["registration"][name]:
                audit.setdefault("registration", {})[name] = {"from": registration.get(name), "to": clean["registration"][name]}
                registration[name] = clean["registration"][name]
        model["registration"] = registration

    lifecycle_changed = "status" in clean and model.get("status") != clean["status"]
    if lifecycle_changed:
        audit["status"] = {"from": model.get("status"), "to": clean["status"]}
        append_history(model, "lifecycle_manual_change", user_id=user_id, from_status=model.get("status"), to_status=clean["status"])
        model["status"] = clean["status"]

    status_changes: dict = {}
    requested = _requested_vector(model, clean)
    if requested is not None:
        before = status_vector(model)
        entry = status_change_entry(before, assign_statuses(model, requested))
        status_changes = entry["changes"]
        if status_changes:
            append_history(model, "status_change", user_id=user_id, **entry)
            audit["statuses"] = status_changes

    if "data_block" in clean:
        before_block = model.get("data_block")
        model["data_block"] = merge_data_blocks(before_block, clean["data_block"], record_edit=True, edited_by=user_id)
        updated = apply_extracted_fields(model, extract_model_fields_from_data_block(model["data_block"]))
        if data_block_changed(before_block, model["data_block"]) or updated:
            audit["data_block"] = True

    if not audit:
        return _ok_response({"model": _present(model)})

    saved = records.put_model(model)
    records.add_audit("model", model_id, "update", audit, user_id=user_id)

    results = []
    ref = linked_slot_ref(model)
    if ref is not None:
        if status_changes:
            results.append(sync_model_slot_statuses(records, model_id, ref.get("id"), ref.get("date"), status_vector(model), user_id=user_id))
        if name_changed:
            results.append(sync_title_to_slot(records, model, user_id=user_id))
        if lifecycle_changed:
            results.append(sync_lifecycle_to_slot(records, model, user_id=user_id))
    return _ok_response({"model": _present(saved)}, warnings=collect_warnings(*results))


@app.delete("/models/{model_id}")
async def delete_model(model_id: str, request: Request) -> JSONResponse:
    user_id = _user_id(request)
    model = records.get_model(model_id)
    if model is None:
        return _error_response("MODEL_NOT_FOUND", "Model not found", "model_id", status=404)
    records.delete_model(model_id)
    records.add_audit("model", model_id, "delete", {"name": model.get("name")}, user_id=user_id)
    result = unlink_slot(records, model, user_id=user_id)
    return _ok_response({"deleted": True}, warnings=collect_warnings(result))


@app.post("/models/{model_id}/comments")
async def add_model_comment(model_id: str, request: Request) -> JSONResponse:
    user_id = _user_id(request)
    model = records.get_model(model_id)
    if model is None:
        return _error_response("MODEL_NOT_FOUND", "Model not found", "model_id", status=404)
    body = await _safe_json(request)
    text = body.get("text") if isinstance(body, dict) else None
    if not isinstance(text, str) or not text.strip():
        return _error_response("VALIDATION_FAILED", "text is required", "text", status=400)
    comment = {"id": uuid.uuid4().hex, "text": text.strip(), "user_id": user_id, "ts": _now()}
    comments = model.get("comments") if isinstance(model.get("comments"), list) else []
    comments.append(comment)
    model["comments"] = comments
    append_history(model, "comment_added", user_id=user_id, comment_id=comment["id"])
    records.put_model(model)
    records.add_audit("model", model_id, "comment", {"comment_id": comment["id"]}, user_id=user_id)
    return _ok_response({"comment": comment}, status=201)


@app.get("/models/{model_id}/next-status")
async def model_next_status(model_id: str) -> JSONResponse:
    model = records.get_model(model_id)
    if model is None:
        return _error_response("MODEL_NOT_FOUND", "Model not found", "model_id", status=404)
    current = model.get("status") or REGISTERED
    stats = count_completed_shifts(records.list_shifts(model_id=model_id), model_id=model_id)
    return _ok_response(
        {
            "status": current,
            "label": status_manager.get_status_label(current),
            "stats": stats,
            "next": status_manager.get_next_possible_status(current, stats),
            "can_create": {
                SHIFT_TRAINING: status_manager.can_create_shift(current, SHIFT_TRAINING),
                SHIFT_REGULAR: status_manager.can_create_shift(current, SHIFT_REGULAR),
            },
        }
    )


@app.post("/models/{model_id}/sync-slot")
async def sync_model_to_slot(model_id: str, request: Request) -> JSONResponse:
    user_id = _user_id(request)
    model = records.get_model(model_id)
    if model is None:
        return _error_response("MODEL_NOT_FOUND", "Model not found", "model_id", status=404)
    if linked_slot_ref(model) is None:
        return _error_response("VALIDATION_FAILED", "Model is not linked to a slot", "registration.slotRef", status=400)
    result = sync_data_block_to_slot(records, model, user_id=user_id)
    if result.get("synced"):
        records.add_audit("model", model_id, "sync_slot", result.get("changes") or {}, user_id=user_id)
    return _ok_response({"synced": result.get("synced", False), "changes": result.get("changes")}, warnings=collect_warnings(result))


# shifts


@app.get("/shifts")
async def list_shifts(model_id: str | None = Query(None, alias="modelId")) -> JSONResponse:
    return _ok_response({"shifts": records.list_shifts(model_id=model_id)})


@app.get("/shifts/{shift_id}")
async def get_shift(shift_id: str) -> JSONResponse:
    shift = records.get_shift(shift_id)
    if shift is None:
        return _error_response("SHIFT_NOT_FOUND", "Shift not found", "shift_id", status=404)
    return _ok_response({"shift": shift})


@app.post("/shifts")
async def create_shift(request: Request) -> JSONResponse:
    user_id = _user_id(request)
    errors, clean = validate_shift_payload(await _safe_json(request), for_create=True)
    if errors:
        return _validation_response(errors)
    model = records.get_model(clean["modelId"])
    if model is None:
        return _error_response("MODEL_NOT_FOUND", "Model not found", "modelId", status=404)
    guard = status_manager.can_create_shift(model.get("status"), clean["type"])
    if not guard["allowed"]:
        return _error_response("SHIFT_NOT_ALLOWED", guard.get("reason") or "Shift not allowed", "type", {"status": model.get("status")}, status=409)
    shift = {
        "id": new_id("shift"),
        "modelId": clean["modelId"],
        "type": clean["type"],
        "status": clean.get("status") or "pending",
        "date": clean.get("date"),
        "start": clean.get("start"),
        "end": clean.get("end"),
        "notes": clean.get("notes"),
        "history": [],
        "createdAt": _now(),
        "createdBy": user_id,
    }
    append_history(shift, "created", user_id=user_id, status=shift["status"])
    saved = records.put_shift(shift)
    records.add_audit("shift", shift["id"], "create", {"modelId": shift["modelId"], "type": shift["type"]}, user_id=user_id)
    lifecycle = None
    warnings: list = []
    if shift["status"] == SHIFT_COMPLETED:
        lifecycle = apply_shift_completion(records, saved, user_id=user_id, manager=status_manager)
        warnings = lifecycle["errors"] + lifecycle["warnings"]
    return _ok_response({"shift": saved, "lifecycle": lifecycle}, warnings=warnings, status=201)


@app.patch("/shifts/{shift_id}")
async def update_shift(shift_id: str, request: Request) -> JSONResponse:
    user_id = _user_id(request)
    shift = records.get_shift(shift_id)
    if shift is None:
        return _error_response("SHIFT_NOT_FOUND", "Shift not found", "shift_id", status=404)
    errors, clean = validate_shift_payload(await _safe_json(request), for_create=False)
    if errors:
        return _validation_response(errors)
    clean.pop("modelId", None)
    audit: Dict[str, Any] = {}
    for name in ("type", "date", "start", "end", "notes"):
        if name in clean and shift.get(name) != clean[name]:
            audit[name] = {"from": shift.get(name), "to": clean[name]}
            shift[name] = clean[name]
    if "status" in clean and shift.get("status") != clean["status"]:
        audit["status"] = {"from": shift.get("status"), "to": clean["status"]}
        append_history(shift, "status_change", user_id=user_id, from_status=shift.get("status"), to_status=clean["status"])
        shift["status"] = clean["status"]
    saved = records.put_shift(shift) if audit else shift
    if audit:
        records.add_audit("shift", shift_id, "update", audit, user_id=user_id)
    lifecycle = None
    warnings: list = []
    if clean.get("status") == SHIFT_COMPLETED:
        lifecycle = apply_shift_completion(records, saved, user_id=user_id, manager=status_manager)
        warnings = lifecycle["errors"] + lifecycle["warnings"]
    return _ok_response({"shift": saved, "lifecycle": lifecycle}, warnings=warnings)


@app.delete("/shifts/{shift_id}")
async def delete_shift(shift_id: str, request: Request) -> JSONResponse:
    user_id = _user_id(request)
    shift = records.get_shift(shift_id)
    if shift is None:
        return _error_response("SHIFT_NOT_FOUND", "Shift not found", "shift_id", status=404)
    records.delete_shift(shift_id)
    records.add_audit("shift", shift_id, "delete", {"modelId": shift.get("modelId")}, user_id=user_id)
    return _ok_response({"deleted": True})


@app.get("/audit")
async def list_audit(
    entity_type: str | None = Query(None, alias="entityType"),
    entity_id: str | None = Query(None, alias="entityId"),
    limit: int = 200,
) -> JSONResponse:
    limit_cap = limit if 0 < limit <= 1000 else 200
    return _ok_response({"entries": records.list_audit(entity_type, entity_id, limit=limit_cap)})
