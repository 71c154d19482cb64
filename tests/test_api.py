"""Tests for the HTTP API."""

import json

import pytest
from fastapi.testclient import TestClient

from autoflow.api import main
from autoflow.store import StateStore
from autoflow.workflow import WorkflowService

from conftest import ORDER_SERVICE, ScriptedLLM


@pytest.fixture
def client() -> TestClient:
    # Not used as a context manager, so the lifespan does not build real collaborators
    return TestClient(main.app)


@pytest.fixture
def service(make_pipeline, tmp_path, monkeypatch) -> WorkflowService:
    llm = ScriptedLLM(
        requirement_analysis=json.dumps(
            {"task_type": "feature", "domain": "order", "confidence": 0.9, "data_sources": ["code"], "modifies_code": True}
        ),
        scope_selection=json.dumps({"files_to_modify": [ORDER_SERVICE]}),
        code_generation=json.dumps({"edits": [{"path": ORDER_SERVICE, "content": "class OrderService {}"}]}),
        review=json.dumps({"approved": True, "quality_score": 0.8}),
        change_description="Retry order submission.",
    )
    workflows = WorkflowService(make_pipeline(llm), store=StateStore(tmp_path / "state"))
    monkeypatch.setattr(main, "service", workflows)
    return workflows


class TestHealth:
    """Tests for GET /health."""

    def test_reports_missing_service(self, client, monkeypatch):
        monkeypatch.setattr(main, "service", None)

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["pipeline_loaded"] is False

    def test_reports_loaded_service(self, client, service):
        assert client.get("/health").json()["pipeline_loaded"] is True


class TestWorkflowEndpoints:
    """Tests for starting, resuming and reading workflows."""

    def test_start_then_resume(self, client, service):
        started = client.post(
            "/workflows",
            json={"requirement": "Retry order submission", "repo_ref": "acme/shop", "conversation_id": "conv-1"},
        ).json()

        assert started["success"] is True
        assert started["workflow"]["status"] == "paused"
        assert started["workflow"]["scope_proposal"]["files_to_modify"][0]["path"] == ORDER_SERVICE

        resumed = client.post("/workflows/conv-1/resume", json={"reply": "yes"}).json()

        assert resumed["success"] is True
        assert resumed["workflow"]["status"] == "completed"
        assert resumed["workflow"]["change_request_url"] == "https://github.com/acme/shop/pull/7"

    def test_get_stored_workflow(self, client, service):
        client.post("/workflows", json={"requirement": "Retry order submission", "repo_ref": "acme/shop", "conversation_id": "conv-1"})

        body = client.get("/workflows/conv-1").json()

        assert body["workflow"]["conversation_id"] == "conv-1"
        assert body["workflow"]["paused_stage"] == "scope_discovery"
        assert body["workflow"]["messages"][0]["content"] == "Retry order submission"

    def test_duplicate_start_is_reported(self, client, service):
        payload = {"requirement": "Retry order submission", "repo_ref": "acme/shop", "conversation_id": "conv-1"}
        client.post("/workflows", json=payload)

        body = client.post("/workflows", json=payload).json()

        assert body["success"] is False
        assert "already exists" in body["error"]

    def test_unknown_conversation_is_404(self, client, service):
        assert client.post("/workflows/missing/resume", json={"reply": "yes"}).status_code == 404
        assert client.get("/workflows/missing").status_code == 404

    def test_invalid_requests_rejected(self, client, service):
        assert client.post("/workflows", json={"requirement": "", "repo_ref": "acme/shop"}).status_code == 422
        assert (
            client.post(
                "/workflows", json={"requirement": "x", "repo_ref": "acme/shop", "conversation_id": "../etc"}
            ).status_code
            == 422
        )

    def test_service_unavailable(self, client, monkeypatch):
        monkeypatch.setattr(main, "service", None)

        response = client.post("/workflows", json={"requirement": "Retry order submission", "repo_ref": "acme/shop"})

        assert response.status_code == 503
