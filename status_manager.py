"""Model lifecycle stages advanced by completed shifts."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List


REGISTERED = "registered"
ACCOUNT_REGISTERED = "account_registered"
TRAINING = "training"
CLOSED_TO_TEAM = "closed_to_team"
READY_TO_WORK = "ready_to_work"
MODEL = "model"

LIFECYCLE_STATUSES = (REGISTERED, ACCOUNT_REGISTERED, TRAINING, CLOSED_TO_TEAM, READY_TO_WORK, MODEL)

SHIFT_TRAINING = "training"
SHIFT_REGULAR = "regular"
SHIFT_TYPES = (SHIFT_REGULAR, SHIFT_TRAINING)
SHIFT_COMPLETED = "completed"
SHIFT_STATUSES = ("inactive", "pending", "active", SHIFT_COMPLETED)

STATUS_LABELS = {
    REGISTERED: "Registration",
    ACCOUNT_REGISTERED: "Account registered",
    TRAINING: "Training",
    CLOSED_TO_TEAM: "Closed to team",
    READY_TO_WORK: "Ready to work",
    MODEL: "Model",
}

_SHIFT_TYPE_LABELS = {SHIFT_TRAINING: "training", SHIFT_REGULAR: "regular"}

_TRAINING_SHIFT_STAGES = (REGISTERED, ACCOUNT_REGISTERED, TRAINING)
_REGULAR_SHIFT_STAGES = (CLOSED_TO_TEAM, READY_TO_WORK, MODEL)

logger = logging.getLogger("crm.lifecycle")


def _training_exit_status() -> str:
    value = os.getenv("CRM_TRAINING_EXIT_STATUS", READY_TO_WORK).strip() or READY_TO_WORK
    if value not in (READY_TO_WORK, CLOSED_TO_TEAM):
        logger.warning("lifecycle_config_invalid name=CRM_TRAINING_EXIT_STATUS value=%s fallback=%s", value, READY_TO_WORK)
        return READY_TO_WORK
    return value


def _ready_to_model_shifts() -> int:
    raw = os.getenv("CRM_READY_TO_MODEL_SHIFTS", "2").strip()
    try:
        value = int(raw)
    except ValueError:
        value = 0
    if value < 1:
        logger.warning("lifecycle_config_invalid name=CRM_READY_TO_MODEL_SHIFTS value=%s fallback=2", raw)
        return 2
    return value


# Two code paths disagree on the stage after the second training shift and on
# how many regular shifts promote ready_to_work -> model; both are config.
TRAINING_EXIT_STATUS = _training_exit_status()
READY_TO_MODEL_SHIFTS = _ready_to_model_shifts()


def build_transition_rules(
    training_exit_status: str = TRAINING_EXIT_STATUS,
    ready_to_model_shifts: int = READY_TO_MODEL_SHIFTS,
) -> List[dict]:
    return [
        {"from": REGISTERED, "to": TRAINING, "shift_type": SHIFT_TRAINING, "count": 1},
        {"from": ACCOUNT_REGISTERED, "to": TRAINING, "shift_type": SHIFT_TRAINING, "count": 1},
        {"from": TRAINING, "to": training_exit_status, "shift_type": SHIFT_TRAINING, "count": 2},
        {"from": CLOSED_TO_TEAM, "to": READY_TO_WORK, "shift_type": SHIFT_REGULAR, "count": 1},
        {"from": READY_TO_WORK, "to": MODEL, "shift_type": SHIFT_REGULAR, "count": ready_to_model_shifts},
    ]


TRANSITION_RULES = build_transition_rules()


def empty_shift_stats() -> Dict[str, int]:
    return {"training_shifts_completed": 0, "regular_shifts_completed": 0, "total_shifts_completed": 0}


def count_completed_shifts(shifts: Any, model_id: str | None = None) -> Dict[str, int]:
    """Count completed shifts by type, always from the full shift set."""
    stats = empty_shift_stats()
    if not isinstance(shifts, list):
        return stats
    for shift in shifts:
        if not isinstance(shift, dict):
            continue
        if model_id is not None and shift.get("modelId") != model_id:
            continue
        if shift.get("status") != SHIFT_COMPLETED:
            continue
        if shift.get("type") == SHIFT_TRAINING:
            stats["training_shifts_completed"] += 1
        elif shift.get("type") == SHIFT_REGULAR:
            stats["regular_shifts_completed"] += 1
        else:
            continue
        stats["total_shifts_completed"] += 1
    return stats


def _completed_count(stats: Any, shift_type: str) -> int:
    if not isinstance(stats, dict):
        return 0
    if shift_type == SHIFT_TRAINING:
        value = stats.get("training_shifts_completed", stats.get("trainingShiftsCompleted", 0))
    else:
        value = stats.get("regular_shifts_completed", stats.get("regularShiftsCompleted", 0))
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


class StatusManager:
    """Evaluates the transition table; first matching rule wins."""

    def __init__(self, rules: List[dict] | None = None) -> None:
        self.rules = list(rules) if rules is not None else list(TRANSITION_RULES)

    def calculate_new_status(self, current_status: str, completed_shift_type: str, shift_stats: Any) -> str:
        completed = _completed_count(shift_stats, completed_shift_type)
        for rule in self.rules:
            if rule["from"] != current_status:
                continue
            if rule["shift_type"] != completed_shift_type:
                continue
            if completed >= rule["count"]:
                return rule["to"]
        return current_status

    def should_update_status(self, current_status: str, completed_shift_type: str, shift_stats: Any) -> bool:
        return self.calculate_new_status(current_status, completed_shift_type, shift_stats) != current_status

    def get_status_change_description(self, from_status: str, to_status: str, shift_type: str) -> str:
        shift_label = _SHIFT_TYPE_LABELS.get(shift_type, str(shift_type))
        return (
            f'Status changed from "{self.get_status_label(from_status)}" '
            f'to "{self.get_status_label(to_status)}" after completing a {shift_label} shift'
        )

    def get_next_possible_status(self, current_status: str, shift_stats: Any) -> dict | None:
        rule = next((r for r in self.rules if r["from"] == current_status), None)
        if rule is None:
            return None
        remaining = max(0, rule["count"] - _completed_count(shift_stats, rule["shift_type"]))
        shift_label = _SHIFT_TYPE_LABELS.get(rule["shift_type"], rule["shift_type"])
        if remaining > 0:
            noun = "shift" if remaining == 1 else "shifts"
            requirement = f"{remaining} more {shift_label} {noun} required"
        else:
            requirement = "Ready for status change"
        return {"status": rule["to"], "requirement": requirement, "remaining": remaining, "shift_type": rule["shift_type"]}

    def can_create_shift(self, model_status: str, shift_type: str) -> dict:
        if shift_type == SHIFT_TRAINING:
            if model_status in _TRAINING_SHIFT_STAGES:
                return {"allowed": True}
            return {
                "allowed": False,
                "reason": 'Training shifts are only available for models in "Registration", "Account registered" or "Training"',
            }
        if shift_type == SHIFT_REGULAR:
            if model_status in _REGULAR_SHIFT_STAGES:
                return {"allowed": True}
            return {
                "allowed": False,
                "reason": 'Regular shifts are only available for models in "Closed to team", "Ready to work" or "Model"',
            }
        return {"allowed": False, "reason": "Unknown shift type"}

    @staticmethod
    def get_status_label(status: str) -> str:
        return STATUS_LABELS.get(status, status)
