"""
Turns a RecordTree into plain nested values.

Two targets share one traversal:
  to_plain(tree) -> dict/list/scalar tree handed to the consumer
  to_json(tree)  -> the same shape with every scalar made JSON-safe
"""
from __future__ import annotations

import base64
import json
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Optional

from auditfeed.record_tree import FieldList, FieldValue, Nested, RecordTree, Scalar

LABEL_KEY = "type"


class LabelPolicy(str, Enum):
    OVERWRITE = "overwrite"          # always set "type", even to None
    SET_IF_ABSENT = "set-if-absent"  # pre-populate "type", record fields win
    NONE = "none"


# ----------------------------
# Traversal
# ----------------------------
def _walk(tree: RecordTree, scalar: Callable[[Any], Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, field in tree.fields.items():
        out[key] = _walk_field(field, scalar)
    return out


def _walk_field(field: FieldValue, scalar: Callable[[Any], Any]) -> Any:
    if isinstance(field, Nested):
        return _walk(field.tree, scalar)
    if isinstance(field, FieldList):
        return [_walk_field(item, scalar) for item in field.items]
    if isinstance(field, Scalar):
        return scalar(field.value)
    return field


def _identity(value: Any) -> Any:
    return value


# ----------------------------
# Plain target
# ----------------------------
def to_plain(
    tree: RecordTree,
    label: Optional[str] = None,
    label_policy: LabelPolicy | str = LabelPolicy.NONE,
) -> Dict[str, Any]:
    policy = LabelPolicy(label_policy)

    if policy is LabelPolicy.SET_IF_ABSENT:
        out: Dict[str, Any] = {}
        if label is not None:
            out[LABEL_KEY] = label
        out.update(_walk(tree, _identity))
        return out

    out = _walk(tree, _identity)
    if policy is LabelPolicy.OVERWRITE:
        out[LABEL_KEY] = label
    return out


# ----------------------------
# JSON target
# ----------------------------
def format_datetime(value: datetime) -> str:
    """yyyy-MM-dd'T'HH:mm:ss.SSSZ, e.g. 2024-05-01T12:30:45.123+0000"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    millis = value.microsecond // 1000
    return value.strftime("%Y-%m-%dT%H:%M:%S") + f".{millis:03d}" + value.strftime("%z")


def json_scalar(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, datetime):
        return format_datetime(value)
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return json_scalar(value.value)
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, dict):
        return {str(k): json_scalar(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [json_scalar(v) for v in value]
    if isinstance(value, RecordTree):
        return to_json(value)
    return str(value)


def to_json(tree: RecordTree) -> Dict[str, Any]:
    return _walk(tree, json_scalar)


def to_json_string(tree: RecordTree, indent: Optional[int] = 2) -> str:
    return json.dumps(to_json(tree), indent=indent, ensure_ascii=False)


def dumps_plain(value: Any) -> str:
    """One-line JSON for an already normalized value (CLI output)."""
    return json.dumps(value, default=json_scalar, ensure_ascii=False)


__all__ = [
    "LABEL_KEY",
    "LabelPolicy",
    "dumps_plain",
    "format_datetime",
    "json_scalar",
    "to_json",
    "to_json_string",
    "to_plain",
]
