"""Four-axis status vector shared by slots and models."""

from __future__ import annotations

from typing import Any, Dict


StatusVector = Dict[str, str]


STATUS_DEFINITIONS: Dict[str, dict] = {
    # confirmation
    "status1": {"values": ("confirmed", "not_confirmed", "fail"), "default": "not_confirmed"},
    # visit outcome
    "status2": {"values": ("arrived", "no_show", "other"), "default": None},
    # interview decision
    "status3": {"values": ("thinking", "reject_us", "reject_candidate"), "default": None},
    # registration stage
    "status4": {"values": ("registration",), "default": None},
}

STATUS_AXES = ("status1", "status2", "status3", "status4")
REQUIRED_AXIS = "status1"


def normalize_statuses(obj: Any) -> dict:
    """Return a copy of ``obj`` with every status axis coerced to its enumeration.

    ``status1`` falls back to its default and is always present. The optional
    axes are removed when empty or unknown: they mean "no opinion yet" rather
    than a closed choice. Keys other than the four axes are passed through.
    """
    result = dict(obj) if isinstance(obj, dict) else {}
    required = STATUS_DEFINITIONS[REQUIRED_AXIS]
    value = result.get(REQUIRED_AXIS)
    result[REQUIRED_AXIS] = value if _is_member(REQUIRED_AXIS, value) else required["default"]
    for axis in STATUS_AXES[1:]:
        value = result.get(axis)
        if value and _is_member(axis, value):
            result[axis] = value
        else:
            result.pop(axis, None)
    return result


def validate_status(axis: str, value: Any) -> bool:
    """Write-side check; no permissive fallback for the required axis."""
    if axis not in STATUS_DEFINITIONS:
        return False
    if axis == REQUIRED_AXIS:
        return _is_member(axis, value)
    return not value or _is_member(axis, value)


def status_vector(obj: Any) -> StatusVector:
    """Project the normalized status axes out of a slot or model document."""
    normalized = normalize_statuses(obj)
    return {axis: normalized[axis] for axis in STATUS_AXES if axis in normalized}


def status_diff(old: Any, new: Any) -> Dict[str, dict]:
    """Structural diff ``{axis: {"from", "to"}}`` for the axes that differ."""
    old_vec = old if isinstance(old, dict) else {}
    new_vec = new if isinstance(new, dict) else {}
    changes: Dict[str, dict] = {}
    for axis in STATUS_AXES:
        before = old_vec.get(axis)
        after = new_vec.get(axis)
        if before != after:
            changes[axis] = {"from": before, "to": after}
    return changes


def status_change_entry(old: Any, new: Any) -> dict:
    """Fields of a ``status_change`` history entry: the new vector and the per-axis diff."""
    return {"statuses": status_vector(new), "changes": status_diff(old, new)}


def _is_member(axis: str, value: Any) -> bool:
    return isinstance(value, str) and value in STATUS_DEFINITIONS[axis]["values"]
