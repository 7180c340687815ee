from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests
from fastapi import Body, FastAPI, HTTPException

logger = logging.getLogger(__name__)

METADATA_PREFIX = "/metadata/JSON"
_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


# ----------------------------
# Storage
# ----------------------------
class MetadataStore:
    """One JSON document per name, kept as <name>.json under meta_dir."""

    def __init__(self, meta_dir: Path):
        self.meta_dir = Path(meta_dir)

    def _path(self, name: str) -> Path:
        if not _NAME_RE.match(name) or name.startswith("."):
            raise ValueError(f"invalid metadata name: {name!r}")
        return self.meta_dir / f"{name}.json"

    def names(self) -> List[str]:
        if not self.meta_dir.is_dir():
            return []
        return sorted(p.stem for p in self.meta_dir.glob("*.json") if p.is_file())

    def get(self, name: str) -> Optional[Dict[str, Any]]:
        path = self._path(name)
        if not path.is_file():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def put(self, name: str, doc: Dict[str, Any]) -> None:
        path = self._path(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(doc), encoding="utf-8")
        tmp.replace(path)


# ----------------------------
# App
# ----------------------------
def create_app(meta_dir: Path) -> FastAPI:
    store = MetadataStore(meta_dir)
    app = FastAPI(title="auditfeed metadata")
    app.state.store = store

    def _checked(name: str) -> str:
        if not _NAME_RE.match(name) or name.startswith("."):
            raise HTTPException(400, "invalid metadata name")
        return name

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.get(METADATA_PREFIX)
    def list_metadata():
        return {"names": store.names()}

    @app.get(METADATA_PREFIX + "/{name}")
    def get_metadata(name: str):
        doc = store.get(_checked(name))
        if doc is None:
            raise HTTPException(404, "metadata not found")
        return doc

    @app.put(METADATA_PREFIX + "/{name}")
    def put_metadata(name: str, doc: Dict[str, Any] = Body(...)):
        store.put(_checked(name), doc)
        logger.info("stored metadata %s", name)
        return {"ok": True}

    return app


# ----------------------------
# Client
# ----------------------------
class MetadataClient:
    def __init__(self, url: str, timeout: float = 2.0):
        # url is the metadata base, e.g. http://localhost:8080/metadata/JSON
        self.url = url.rstrip("/")
        self.timeout = timeout

    @property
    def root(self) -> str:
        if self.url.endswith(METADATA_PREFIX):
            return self.url[: -len(METADATA_PREFIX)]
        return self.url

    def names(self) -> List[str]:
        resp = requests.get(self.url, timeout=self.timeout)
        resp.raise_for_status()
        return list(resp.json().get("names", []))

    def get(self, name: str) -> Optional[Dict[str, Any]]:
        resp = requests.get(f"{self.url}/{name}", timeout=self.timeout)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    def put(self, name: str, doc: Dict[str, Any]) -> None:
        resp = requests.put(f"{self.url}/{name}", json=doc, timeout=self.timeout)
        resp.raise_for_status()

    def is_ready(self) -> bool:
        try:
            resp = requests.get(f"{self.root}/health", timeout=self.timeout)
        except requests.RequestException:
            return False
        return resp.status_code == 200
