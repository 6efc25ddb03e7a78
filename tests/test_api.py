# tests/test_api.py
import pytest
from fastapi.testclient import TestClient

import app as app_module
from schemas.fragment_schema import BranchPlan, WorkflowPlan
from services.llm_service import LLMConfigurationError

client = TestClient(app_module.app)

FETCH = {
    "nodes": [
        {"name": "Fetch", "type": "n8n-nodes-base.httpRequest", "position": [100, 0]},
        {"name": "Transform", "type": "n8n-nodes-base.set", "position": [300, 0]},
    ],
    "connections": {"Fetch": {"main": [["Transform"]]}},
}


class StubLLM:
    def __init__(self, error=None):
        self.error = error

    async def analyze_workflow_structure(self, prompt):
        if self.error:
            raise self.error
        return WorkflowPlan(branches=[BranchPlan(name="Fetch Data")])

    async def generate_fragment(self, branch, prompt):
        return FETCH


def test_root_and_health():
    assert client.get("/").status_code == 200
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_assemble_workflow():
    payload = {
        "name": "Orders",
        "fragments": [
            {"name": "Fetch Data", "fragment": FETCH},
            {"name": "Broken", "fragment": "not json at all"},
        ],
        "merge_points": [],
    }
    resp = client.post("/assemble-workflow", json=payload)
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["workflow"]["name"] == "Orders"
    assert [n["name"] for n in data["workflow"]["nodes"]] == ["Main Trigger", "Fetch", "Transform"]
    assert "typeVersion" in data["workflow"]["nodes"][0]
    kinds = {d["kind"] for d in data["diagnostics"]}
    assert kinds == {"malformed_fragment", "empty_fragment"}


def test_validate_workflow_reports_dangling_reference():
    workflow = {
        "name": "External",
        "nodes": [
            {"name": "Start", "type": "n8n-nodes-base.manualTrigger", "position": [0, 0]},
            {"name": "Fetch", "type": "n8n-nodes-base.httpRequest", "position": [200, 0]},
        ],
        "connections": {"Start": {"main": [["Fetch", "Ghost"]]}},
    }
    resp = client.post("/validate-workflow", json={"workflow": workflow})
    assert resp.status_code == 200
    report = resp.json()
    assert report["is_valid"] is False
    assert [i["kind"] for i in report["issues"]] == ["invalid_connection"]


def test_normalize_connections():
    resp = client.post("/normalize-connections", json={"connections": {"A": {"main": ["B"]}, "C": {}}})
    assert resp.status_code == 200
    data = resp.json()
    assert data["connections"] == {"A": {"main": [[{"node": "B", "type": "main", "index": 0}]]}}
    assert len(data["rejected"]) == 1


def test_synthesize_workflow(monkeypatch):
    monkeypatch.setattr(app_module.synthesizer, "llm_service", StubLLM())
    resp = client.post("/synthesize-workflow", json={"prompt": "fetch and transform orders"})
    assert resp.status_code == 200
    assert resp.json()["success"] is True


def test_synthesize_workflow_model_error(monkeypatch):
    monkeypatch.setattr(app_module.synthesizer, "llm_service", StubLLM(LLMConfigurationError("OPENAI_API_KEY is not configured")))
    resp = client.post("/synthesize-workflow", json={"prompt": "anything"})
    assert resp.status_code == 502


def test_empty_prompt_is_rejected():
    resp = client.post("/synthesize-workflow", json={"prompt": ""})
    assert resp.status_code == 422


def test_validate_workflow_with_malformed_connections():
    resp = client.post("/validate-workflow", json={"workflow": {"nodes": [], "connections": "oops"}})
    assert resp.status_code == 200
    assert resp.json()["issues"] == []


def test_validate_workflow_reports_duplicate_names():
    workflow = {
        "nodes": [
            {"id": "1", "name": "Hook", "type": "n8n-nodes-base.webhook", "position": [0, 0]},
            {"id": "2", "name": "Dup", "type": "n8n-nodes-base.set", "position": [200, 0]},
            {"id": "3", "name": "Dup", "type": "n8n-nodes-base.set", "position": [200, 200]},
        ],
        "connections": {"Hook": {"main": [["Dup"]]}},
    }
    resp = client.post("/validate-workflow", json={"workflow": workflow})
    report = resp.json()
    assert report["is_valid"] is False
    assert [i["kind"] for i in report["issues"]] == ["duplicate_node"]
