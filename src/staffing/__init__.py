"""Staffing pipeline kernel: statuses, data blocks and history logs."""

from .canonical_json import CanonicalJsonTypeError, canonical_dumps
from .data_block import (
    STANDARD_MODEL_FIELDS,
    extract_model_fields_from_data_block,
    merge_data_blocks,
    normalize_data_block,
)
from .history import HistoryLog, append_history
from .statuses import (
    STATUS_AXES,
    STATUS_DEFINITIONS,
    normalize_statuses,
    status_change_entry,
    status_diff,
    status_vector,
    validate_status,
)

__all__ = [
    "CanonicalJsonTypeError",
    "canonical_dumps",
    "STANDARD_MODEL_FIELDS",
    "extract_model_fields_from_data_block",
    "merge_data_blocks",
    "normalize_data_block",
    "HistoryLog",
    "append_history",
    "STATUS_AXES",
    "STATUS_DEFINITIONS",
    "normalize_statuses",
    "status_change_entry",
    "status_diff",
    "status_vector",
    "validate_status",
]
