"""Tests for the metadata lookup app."""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from auditfeed.metadata_service import MetadataClient, MetadataStore, create_app


@pytest.fixture
def client(tmp_path: Path) -> TestClient:
    return TestClient(create_app(tmp_path / "meta"))


class TestMetadataApp:
    def test_health(self, client: TestClient) -> None:
        assert client.get("/health").json() == {"ok": True}

    def test_empty_listing(self, client: TestClient) -> None:
        assert client.get("/metadata/JSON").json() == {"names": []}

    def test_put_then_get(self, client: TestClient) -> None:
        doc = {"dbid": 12, "fnr": 3, "fields": [{"name": "AA", "len": 8}]}
        assert client.put("/metadata/JSON/db12_f3", json=doc).json() == {"ok": True}
        assert client.get("/metadata/JSON/db12_f3").json() == doc
        assert client.get("/metadata/JSON").json() == {"names": ["db12_f3"]}

    def test_missing_is_404(self, client: TestClient) -> None:
        assert client.get("/metadata/JSON/nothing").status_code == 404

    @pytest.mark.parametrize("name", ["bad name", ".hidden", "a$b"])
    def test_invalid_names(self, client: TestClient, name: str) -> None:
        assert client.get(f"/metadata/JSON/{name}").status_code == 400
        assert client.put(f"/metadata/JSON/{name}", json={}).status_code == 400

    def test_put_requires_object(self, client: TestClient) -> None:
        assert client.put("/metadata/JSON/x", json=[1, 2]).status_code == 422


class TestMetadataStore:
    def test_names_sorted(self, tmp_path: Path) -> None:
        store = MetadataStore(tmp_path)
        store.put("b", {})
        store.put("a", {"x": 1})
        (tmp_path / "notes.txt").write_text("ignored")
        assert store.names() == ["a", "b"]
        assert store.get("a") == {"x": 1}

    def test_missing_directory(self, tmp_path: Path) -> None:
        assert MetadataStore(tmp_path / "nope").names() == []

    def test_rejects_traversal(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            MetadataStore(tmp_path).get("../etc")


class TestMetadataClientRoot:
    def test_root_strips_prefix(self) -> None:
        assert MetadataClient("http://localhost:8080/metadata/JSON/").root == "http://localhost:8080"
        assert MetadataClient("http://localhost:8080").root == "http://localhost:8080"
