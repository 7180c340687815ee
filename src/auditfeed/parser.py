from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import requests

from auditfeed.exceptions import ParseError
from auditfeed.metadata_service import MetadataClient, MetadataStore
from auditfeed.record_tree import RecordTree

logger = logging.getLogger(__name__)

TIMESTAMP_KEY = "@timestamp"
META_KEY = "@meta"
METADATA_FIELD = "metadata"


@runtime_checkable
class RecordParser(Protocol):
    """Turns the raw bytes of one audit file into zero or more records."""

    def parse(self, data: bytes) -> Sequence[RecordTree]:  # pragma: no cover - interface
        ...


def set_metadata_directory(parser: Any, meta_dir: Path) -> None:
    """Tell the parser where metadata lives, if it cares."""
    hook = getattr(parser, "set_metadata_directory", None)
    if callable(hook):
        hook(meta_dir)


def set_metadata_url(parser: Any, url: str) -> None:
    """Tell the parser where the metadata lookup service is, if it cares."""
    hook = getattr(parser, "set_metadata_url", None)
    if callable(hook):
        hook(url)


class JsonLinesParser:
    """
    Reference parser: one JSON object per line.

      {"@timestamp": "2024-05-01T12:00:00Z", "user": "u1", "fields": [{"f": 1}]}

    Objects become RecordTrees (nested objects nested trees), arrays lists.
    "@timestamp" on a top-level object sets the record time instead of a field.
    "@meta" names a metadata document; it is looked up through the metadata
    service (or read from meta_dir when no service is known) and attached as
    the "metadata" field, null when the document does not exist.
    """

    def __init__(self, record_name: str = "record", metadata: Optional[MetadataClient] = None):
        self.record_name = record_name
        self.metadata = metadata
        self.meta_dir: Optional[Path] = None

    def set_metadata_directory(self, meta_dir: Path) -> None:
        self.meta_dir = Path(meta_dir)

    def set_metadata_url(self, url: str) -> None:
        self.metadata = MetadataClient(url)

    def parse(self, data: bytes) -> List[RecordTree]:
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"not utf-8 text: {e}") from e

        records: List[RecordTree] = []
        for lineno, line in enumerate(text.splitlines(), start=1):
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError as e:
                raise ParseError(f"invalid JSON: {e.msg}", line=lineno) from e
            if not isinstance(obj, dict):
                raise ParseError("record must be a JSON object", line=lineno)
            records.append(self._record(obj, lineno))

        logger.debug("parsed %d record(s)", len(records))
        return records

    def _record(self, obj: Dict[str, Any], lineno: int) -> RecordTree:
        obj = dict(obj)
        ts = None
        if TIMESTAMP_KEY in obj:
            ts = _parse_timestamp(obj.pop(TIMESTAMP_KEY), lineno)
        meta_name = obj.pop(META_KEY, None)
        tree = _tree(self.record_name, obj, ts)
        if meta_name is not None:
            doc = self._lookup(meta_name, lineno)
            tree.put(METADATA_FIELD, _tree(METADATA_FIELD, doc) if doc is not None else None)
        return tree

    def _lookup(self, name: Any, lineno: int) -> Optional[Dict[str, Any]]:
        if not isinstance(name, str):
            raise ParseError(f"{META_KEY} must be a string", line=lineno)
        try:
            if self.metadata is not None:
                doc = self.metadata.get(name)
            elif self.meta_dir is not None:
                doc = MetadataStore(self.meta_dir).get(name)
            else:
                raise ParseError(f"no metadata source for {name!r}", line=lineno)
        except (requests.RequestException, ValueError) as e:
            raise ParseError(f"metadata lookup for {name!r} failed: {e}", line=lineno) from e
        if doc is None:
            logger.warning("no metadata named %s", name)
        elif not isinstance(doc, dict):
            raise ParseError(f"metadata {name!r} is not an object", line=lineno)
        return doc


def _tree(name: str, obj: Dict[str, Any], ts: Optional[datetime] = None) -> RecordTree:
    tree = RecordTree(name, ts)
    for key, value in obj.items():
        tree.put(key, _value(key, value))
    return tree


def _value(key: str, value: Any) -> Any:
    if isinstance(value, dict):
        return _tree(key, value)
    if isinstance(value, list):
        return [_value(key, v) for v in value]
    return value


def _parse_timestamp(raw: Any, lineno: int) -> datetime:
    if not isinstance(raw, str):
        raise ParseError(f"{TIMESTAMP_KEY} must be a string", line=lineno)
    try:
        ts = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as e:
        raise ParseError(f"bad {TIMESTAMP_KEY}: {raw!r}", line=lineno) from e
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts
