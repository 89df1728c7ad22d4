"""Tests for the HTTP API."""

import pytest
from fastapi.testclient import TestClient

from agentmesh.agents import EchoAgent
from agentmesh.api import create_fastapi_app
from agentmesh.app import Application


@pytest.fixture
def client():
    """TestClient over an in-memory application."""
    application = Application(
        db_path=":memory:",
        agents=[EchoAgent("echo_agent"), EchoAgent("writer", capabilities=("writing",))],
    )
    with TestClient(create_fastapi_app(application)) as test_client:
        yield test_client


class TestWorkflowRoutes:
    """Tests for /api/workflows."""

    def test_submit_and_wait(self, client):
        """Test submitting a workflow and waiting for it."""
        response = client.post(
            "/api/workflows",
            json={
                "definition": {
                    "phases": [
                        {"name": "A", "agent": "echo_agent"},
                        {"name": "B", "agent": "writer"},
                    ],
                    "dependencies": [["A", "B"]],
                },
                "wait": True,
            },
        )

        assert response.status_code == 202
        body = response.json()
        assert body["state"] == "completed"
        assert body["nodes"]["B"]["state"] == "completed"

        fetched = client.get(f"/api/workflows/{body['run_id']}")
        assert fetched.status_code == 200
        assert fetched.json()["run_id"] == body["run_id"]

    def test_cycle_rejected(self, client):
        """Test that a cyclic workflow is refused with the cycle's nodes."""
        response = client.post(
            "/api/workflows",
            json={
                "definition": {
                    "phases": [
                        {"name": "A", "agent": "echo_agent"},
                        {"name": "B", "agent": "echo_agent"},
                    ],
                    "dependencies": [["A", "B"], ["B", "A"]],
                }
            },
        )

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["error"] == "cycle_detected"
        assert detail["nodes"] == ["A", "B", "A"]

    def test_unknown_agent_rejected(self, client):
        """Test that unregistered agents are refused."""
        response = client.post(
            "/api/workflows",
            json={"definition": {"phases": [{"name": "A", "agent": "ghost"}]}},
        )

        assert response.status_code == 422
        assert response.json()["detail"]["agents"] == ["ghost"]

    def test_malformed_definition(self, client):
        """Test that structurally invalid definitions are a bad request."""
        response = client.post("/api/workflows", json={"definition": {"phases": []}})

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "invalid_definition"

    @pytest.mark.parametrize(
        "definition",
        [
            {"timeout_ms": "soon", "phases": [{"name": "A", "agent": "echo_agent"}]},
            {"phases": [{"name": "A", "agent": "echo_agent", "consensus": ["writer"]}]},
            {"phases": [{"name": "A", "agent": "echo_agent", "parameters": [1, 2]}]},
        ],
    )
    def test_bad_field_values_are_bad_requests(self, client, definition):
        """Test that unusable field values are reported as 400, not server errors."""
        response = client.post("/api/workflows", json={"definition": definition})

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "invalid_definition"

    def test_unknown_run(self, client):
        """Test that unknown run ids are not found."""
        assert client.get("/api/workflows/nope").status_code == 404
        assert client.post("/api/workflows/nope/cancel").status_code == 404

    def test_cancel_finished_run(self, client):
        """Test that cancelling a finished run reports it was not cancelled."""
        run = client.post(
            "/api/workflows",
            json={"definition": {"phases": [{"name": "A", "agent": "echo_agent"}]}, "wait": True},
        ).json()

        response = client.post(f"/api/workflows/{run['run_id']}/cancel")

        assert response.status_code == 200
        assert response.json() == {"run_id": run["run_id"], "cancelled": False, "state": "completed"}


class TestContextRoutes:
    """Tests for /api/context."""

    def test_create_and_get(self, client):
        """Test creating a slice and reading it back."""
        response = client.post(
            "/api/context", json={"slice": {"id": "ctx-1", "domain": "docs", "priority": "high"}}
        )

        assert response.status_code == 201
        assert response.json()["slice"]["priority"] == "high"
        assert response.json()["propagation"] is None

        fetched = client.get("/api/context/ctx-1")
        assert fetched.status_code == 200
        assert fetched.json()["domain"] == "docs"

    def test_create_and_propagate_filtered(self, client):
        """Test propagating to agents with the given capabilities."""
        response = client.post(
            "/api/context",
            json={"slice": {"id": "ctx-2"}, "mode": "filtered", "capabilities": ["writing"]},
        )

        assert response.status_code == 201
        assert response.json()["propagation"]["propagated_to"] == ["writer"]

    def test_missing_id(self, client):
        """Test that slices without id are refused."""
        response = client.post("/api/context", json={"slice": {"domain": "docs"}})

        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "MissingContextField"

    @pytest.mark.parametrize(
        "request_body",
        [
            {"mode": "targeted"},
            {"mode": "filtered"},
        ],
    )
    def test_refused_propagation_keeps_id_free(self, client, request_body):
        """Test that a propagation request missing its recipients stores nothing."""
        response = client.post("/api/context", json={"slice": {"id": "ctx-3"}, **request_body})

        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "InvalidContextField"
        assert client.get("/api/context/ctx-3").status_code == 404

        retry = client.post(
            "/api/context",
            json={"slice": {"id": "ctx-3"}, "mode": "targeted", "target_agents": ["writer"]},
        )
        assert retry.status_code == 201
        assert retry.json()["propagation"]["propagated_to"] == ["writer"]

    def test_zero_ttl_not_found(self, client):
        """Test that a slice with ttl 0 is never readable."""
        client.post("/api/context", json={"slice": {"id": "gone", "ttl": 0}})

        assert client.get("/api/context/gone").status_code == 404


class TestObservabilityRoutes:
    """Tests for trace, event, metrics and health routes."""

    def test_events_and_traces(self, client):
        """Test that a workflow leaves events and trace events behind."""
        client.post(
            "/api/workflows",
            json={"definition": {"phases": [{"name": "A", "agent": "echo_agent"}]}, "wait": True},
        )

        events = client.get("/api/events").json()
        assert any(e["event_type"] == "workflow.phase.execute" for e in events)

        traces = client.get("/api/trace-events", params={"event_type": "workflow_finished"}).json()
        assert len(traces) == 1
        assert traces[0]["actor"] == "orchestrator"

    def test_invalid_after(self, client):
        """Test that a malformed after filter is a bad request."""
        response = client.get("/api/trace-events", params={"after": "yesterday"})

        assert response.status_code == 400

    def test_metrics(self, client):
        """Test the counters endpoint."""
        body = client.get("/api/metrics").json()

        assert {a["agent_id"] for a in body["agents"]} == {"echo_agent", "writer"}
        assert body["context_slices"] == 0
        assert "total_validations" in body["validation"]

    def test_health(self, client):
        """Test the integrity report."""
        body = client.get("/api/health").json()

        assert body["status"] == "ok"
        assert body["agent_count"] == 2


class TestControlRoutes:
    """Tests for /api/control."""

    def test_reset(self, client):
        """Test that reset clears recorded events."""
        client.post("/api/context", json={"slice": {"id": "c"}})

        response = client.post("/api/control/reset")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        assert client.get("/api/context/c").status_code == 404
