import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from wp_agent_sync.errors import ConnectionFailedError, ModelUnavailableError
from wp_agent_sync.models import (
    AgentRunResult,
    AgentStep,
    ChangeOutcome,
    SyncOutcome,
    ToolCall,
    ToolDescriptor,
)
from wp_agent_sync.server import create_app
from wp_agent_sync.services import Services
from wp_agent_sync.tools import CREATE_POST, GET_POST, UPDATE_POST
from wp_agent_sync.tracker import ChangeTracker


@pytest.fixture
def services():
    sync = MagicMock()
    sync.target = "production"
    return Services(
        connections=MagicMock(),
        adapter=MagicMock(),
        tracker=ChangeTracker(),
        agent=MagicMock(),
        sync=sync,
    )


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


def track(services, *calls):
    services.tracker.record_run([
        {"tool_calls": [{"call_id": str(i), "name": name, "input": args} for i, (name, args) in enumerate(calls)]}
    ])


class ScriptedEvents:
    """Iterator over fixed agent events that records close()."""

    def __init__(self, events):
        self._events = iter(events)
        self.closed = False

    def __iter__(self):
        return self

    def __next__(self):
        return next(self._events)

    def close(self):
        self.closed = True


def outcome_for(changes, pattern):
    return SyncOutcome.from_results([
        ChangeOutcome(change=c, success=ok, error=None if ok else "Post not found")
        for c, ok in zip(changes, pattern)
    ])


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------

def test_agent_route_returns_text_tool_calls_and_tracker_state(client, services):
    def run(prompt, environment):
        track(services, (CREATE_POST, {"title": "T", "content": "C"}))
        return AgentRunResult(
            environment=environment,
            text="Created.",
            finish_reason="stop",
            steps=[AgentStep(index=0, tool_calls=[ToolCall(call_id="1", name=CREATE_POST, input={"title": "T", "content": "C"})])],
        )
    services.agent.run.side_effect = run

    response = client.post("/api/agents/wordpress", json={"prompt": "Create a post"})

    assert response.status_code == 200
    body = response.json()
    assert body["text"] == "Created."
    assert body["environment"] == "sandbox"
    assert body["tool_calls"] == [{"name": CREATE_POST, "args": {"title": "T", "content": "C"}}]
    assert body["tracked_changes"] == {"count": 1, "has_changes": True}

def test_agent_route_passes_environment(client, services):
    services.agent.run.return_value = AgentRunResult(environment="real-site", text="", finish_reason="stop")

    client.post("/api/agents/wordpress", json={"prompt": "hi", "environment": "real-site"})

    services.agent.run.assert_called_once_with("hi", "real-site")

def test_agent_route_reports_failures_with_details(client, services):
    services.agent.run.side_effect = ModelUnavailableError("Anthropic request failed: overloaded")

    response = client.post("/api/agents/wordpress", json={"prompt": "hi"})

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Anthropic request failed: overloaded"
    assert "ModelUnavailableError" in body["details"]

def test_agent_route_rejects_empty_prompt(client):
    response = client.post("/api/agents/wordpress", json={"prompt": ""})
    assert response.status_code == 422

def test_stream_route_emits_ndjson_events(client, services):
    result = AgentRunResult(environment="sandbox", text="Done", finish_reason="stop")
    events = ScriptedEvents([
        ("tool-call", {"step": 0, "name": GET_POST, "input": {"id": 1}}),
        ("text", {"step": 1, "text": "Done"}),
        ("finish", result),
    ])
    services.agent.stream.return_value = events

    response = client.post("/api/agents/wordpress/stream", json={"prompt": "get 1"})

    assert response.status_code == 200
    lines = [json.loads(line) for line in response.text.splitlines() if line]
    assert [line["type"] for line in lines] == ["tool-call", "text", "finish"]
    assert lines[-1]["data"]["text"] == "Done"

def test_stream_route_closes_the_event_generator(client, services):
    events = ScriptedEvents([("text", {"step": 0, "text": "Working"}), ("text", {"step": 1, "text": "More"})])
    services.agent.stream.return_value = events

    client.post("/api/agents/wordpress/stream", json={"prompt": "x"})

    assert events.closed

def test_stream_route_reports_mid_stream_failure_as_event(client, services):
    def events():
        yield "text", {"step": 0, "text": "Working"}
        raise ModelUnavailableError("gone")
    services.agent.stream.return_value = events()

    response = client.post("/api/agents/wordpress/stream", json={"prompt": "x"})

    lines = [json.loads(line) for line in response.text.splitlines() if line]
    assert lines[-1] == {"type": "error", "data": {"message": "gone"}}

# ---------------------------------------------------------------------------
# Change tracking
# ---------------------------------------------------------------------------

def test_list_and_clear_changes(client, services):
    track(services, (CREATE_POST, {"title": "T", "content": "C"}), (UPDATE_POST, {"id": 1, "title": "U"}))

    listed = client.get("/api/sync/changes").json()
    assert listed["count"] == 2
    assert [c["operation"] for c in listed["changes"]] == [CREATE_POST, UPDATE_POST]

    cleared = client.delete("/api/sync/changes").json()
    assert cleared == {"message": "Cleared 2 tracked changes", "remaining_changes": 0}
    assert services.tracker.count() == 0

def test_preview_does_not_apply(client, services):
    track(services, (GET_POST, {"id": 1}))

    body = client.get("/api/sync/apply").json()

    assert body["change_count"] == 1
    assert body["changes"][0]["args"] == {"id": 1}
    assert "production" in body["message"]
    services.sync.apply.assert_not_called()

# ---------------------------------------------------------------------------
# Sync apply
# ---------------------------------------------------------------------------

def test_apply_with_nothing_tracked(client, services):
    response = client.post("/api/sync/apply")

    assert response.status_code == 200
    assert response.json()["success"] is False
    assert response.json()["total"] == 0
    services.sync.apply.assert_not_called()

def test_apply_full_success_clears_tracker(client, services):
    track(services, (CREATE_POST, {"title": "T", "content": "C"}), (UPDATE_POST, {"id": 1, "title": "U"}))
    services.sync.apply.side_effect = lambda changes: outcome_for(changes, [True, True])

    response = client.post("/api/sync/apply")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Successfully synced 2 changes to production"
    assert services.tracker.count() == 0

def test_apply_partial_failure_is_multi_status_and_keeps_changes(client, services):
    track(services, (CREATE_POST, {"title": "T", "content": "C"}), (UPDATE_POST, {"id": 9, "title": "U"}))
    services.sync.apply.side_effect = lambda changes: outcome_for(changes, [True, False])

    response = client.post("/api/sync/apply")

    assert response.status_code == 207
    body = response.json()
    assert (body["total"], body["applied"], body["failed"]) == (2, 1, 1)
    assert body["errors"] == [f"{UPDATE_POST}: Post not found"]
    assert body["details"][1] == {"operation": UPDATE_POST, "success": False, "error": "Post not found"}
    assert services.tracker.count() == 2

def test_apply_total_failure_is_bad_gateway(client, services):
    track(services, (GET_POST, {"id": 1}))
    services.sync.apply.side_effect = lambda changes: outcome_for(changes, [False])

    response = client.post("/api/sync/apply")

    assert response.status_code == 502
    assert response.json()["message"] == "Sync completed with 1 failures"

def test_apply_exception_is_server_error(client, services):
    track(services, (GET_POST, {"id": 1}))
    services.sync.apply.side_effect = RuntimeError("boom")

    response = client.post("/api/sync/apply")

    assert response.status_code == 500
    assert response.json()["error"] == "boom"
    assert services.tracker.count() == 1

# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

def test_health_lists_tools_per_environment(client, services):
    services.connections.get.return_value.discover.return_value = [
        ToolDescriptor(name=GET_POST),
        ToolDescriptor(name=CREATE_POST),
    ]

    response = client.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["sandbox"] == {"status": "connected", "tools_available": 2, "tool_names": [GET_POST, CREATE_POST]}
    assert body["production"]["tools_available"] == 2

def test_health_reports_unhealthy_on_connection_failure(client, services):
    services.connections.get.side_effect = ConnectionFailedError("Failed to connect", "production")

    response = client.get("/api/health")

    assert response.status_code == 500
    assert response.json()["status"] == "unhealthy"
    assert "[production]" in response.json()["error"]

def test_shutdown_invalidates_connections(services):
    with TestClient(create_app(services)):
        pass
    services.connections.invalidate.assert_called_once_with()
