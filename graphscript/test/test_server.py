"""Tests for the compile HTTP API."""

import pytest
from fastapi.testclient import TestClient

from conftest import make_document, make_edge, make_node, make_trivial_registry

from graphscript.config import CompilerSettings
from graphscript.server.main import create_app


@pytest.fixture
def client():
    settings = CompilerSettings(tool_name="graphscript", tool_version="9.9", load_plugins=False)
    return TestClient(create_app(make_trivial_registry(), settings))


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "descriptors": len(make_trivial_registry())}

    def test_registry_is_frozen(self, client):
        assert client.app.state.registry.frozen


class TestCompileEndpoint:

    def test_compile_full(self, client, linear_document):
        response = client.post("/api/compile", json={"document": linear_document})
        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["dependencies"] == ["pandas"]
        assert data["diagnostics"] == []
        assert "_report_step_failure('C', 'WriteSink', _exc)" in data["script"]

    def test_compile_until_target(self, client, linear_document):
        response = client.post(
            "/api/compile",
            json={"document": linear_document, "target": "B", "mode": "until_target"},
        )
        data = response.json()
        assert data["ok"] is True
        assert data["script"].rstrip().endswith("_display_dataframe(filter_1)")
        assert "WriteSink" not in data["script"]

    def test_compile_errors_are_diagnostics(self, client):
        doc = make_document(
            [make_node("A", "Filter"), make_node("B", "Filter")],
            [make_edge("A", "B"), make_edge("B", "A")],
        )
        response = client.post("/api/compile", json={"document": doc})
        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is False
        assert data["script"] is None
        assert {d["node_id"] for d in data["diagnostics"]} == {"A", "B"}
        assert {d["kind"] for d in data["diagnostics"]} == {"CycleDetected"}
        assert all(d["severity"] == "error" for d in data["diagnostics"])

    def test_bad_mode_is_rejected(self, client, linear_document):
        response = client.post("/api/compile", json={"document": linear_document, "mode": "sideways"})
        assert response.status_code == 422

    def test_missing_document_is_rejected(self, client):
        assert client.post("/api/compile", json={}).status_code == 422


class TestDescriptorsEndpoint:

    def test_lists_registered_types(self, client):
        response = client.get("/api/descriptors")
        assert response.status_code == 200
        by_type = {d["type"]: d for d in response.json()}
        assert set(by_type) == set(make_trivial_registry().types())
        assert by_type["WriteSink"]["is_output"] is True
        assert by_type["WriteSink"]["preview"] == "none"
        assert by_type["Connection"]["category"] == "connection"
        assert by_type["Connection"]["dependencies"] == ["sqlalchemy>=2.0"]
