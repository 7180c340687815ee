from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Union


# ----------------------------
# Field values
# ----------------------------
@dataclass(frozen=True)
class Scalar:
    value: Any


@dataclass(frozen=True)
class FieldList:
    items: tuple


@dataclass(frozen=True)
class Nested:
    tree: "RecordTree"


FieldValue = Union[Scalar, FieldList, Nested]


def as_field(value: Any) -> FieldValue:
    """Wrap a raw Python value into the matching field variant."""
    if isinstance(value, (Scalar, FieldList, Nested)):
        return value
    if isinstance(value, RecordTree):
        return Nested(value)
    if isinstance(value, (list, tuple)):
        return FieldList(tuple(as_field(v) for v in value))
    return Scalar(value)


def raw_value(field: FieldValue) -> Any:
    if isinstance(field, Nested):
        return field.tree
    if isinstance(field, FieldList):
        return [raw_value(f) for f in field.items]
    return field.value


# ----------------------------
# Record tree
# ----------------------------
class RecordTree:
    """
    One decoded audit record (or sub-record): a name, a creation time and an
    ordered bag of fields. Each field holds a scalar, a list or another tree.
    """

    def __init__(self, name: str, timestamp: Optional[datetime] = None):
        self._name = name
        self.timestamp = timestamp or datetime.now(timezone.utc)
        self._fields: Dict[str, FieldValue] = {}

    @property
    def name(self) -> str:
        return self._name

    @property
    def fields(self) -> Mapping[str, FieldValue]:
        return self._fields

    def put(self, key: str, value: Any) -> None:
        self._fields[key] = as_field(value)

    def put_all(self, values: Mapping[str, Any]) -> None:
        for key, value in values.items():
            self.put(key, value)

    def get(self, key: str, default: Any = None) -> Any:
        field = self._fields.get(key)
        if field is None:
            return default
        return raw_value(field)

    def keys(self) -> Iterable[str]:
        return self._fields.keys()

    def __contains__(self, key: object) -> bool:
        return key in self._fields

    def __len__(self) -> int:
        return len(self._fields)

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RecordTree):
            return NotImplemented
        return self._name == other._name and self._fields == other._fields

    def __hash__(self) -> int:
        return hash((self._name, tuple(self._fields)))

    def __repr__(self) -> str:
        return f"RecordTree(name={self._name!r}, fields={list(self._fields)!r})"

    def __str__(self) -> str:
        return self.dump()

    def dump(self) -> str:
        return "".join(_dump_lines(self, 1))


# ----------------------------
# Text dump
# ----------------------------
def _type_name(value: Any) -> str:
    return type(value).__name__


def _dump_lines(tree: RecordTree, level: int) -> List[str]:
    indent = " " * level + f"{level} "
    nl = os.linesep
    out: List[str] = []

    for key, field in tree.fields.items():
        out.append(indent + key)

        if isinstance(field, Nested):
            out.append(nl)
            out.extend(_dump_lines(field.tree, level + 1))
            continue

        if isinstance(field, FieldList):
            if not field.items:
                out.append(nl)
            for index, item in enumerate(field.items):
                if isinstance(item, Nested):
                    if index == 0:
                        out.append(f"[{index}]: {nl}")
                    else:
                        out.append(f"{indent}{key}[{index}]: {nl}")
                    out.extend(_dump_lines(item.tree, level + 1))
                    continue
                if index == 0:
                    out.append(nl)
                value = raw_value(item)
                if value is None:
                    out.append(f"{indent} {key}[{index}] {{null}}: null{nl}")
                else:
                    out.append(f"{indent}  [{index}] {{{_type_name(value)}}}: {value}{nl}")
            continue

        value = field.value
        if value is None:
            out.append(f" {{null}}: null{nl}")
        else:
            out.append(f" {{{_type_name(value)}}}: {value}{nl}")

    return out
