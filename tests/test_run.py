from unittest.mock import MagicMock, patch

import pytest

from wp_agent_sync import run
from wp_agent_sync.errors import ConfigurationError
from wp_agent_sync.models import AgentRunResult, SyncOutcome


@pytest.fixture
def services():
    services = MagicMock()
    services.sync.target = "production"
    services.agent.stream.return_value = iter([
        ("tool-call", {"step": 0, "name": "wordpress-list-posts", "input": {}}),
        ("tool-result", {"step": 0, "name": "wordpress-list-posts", "output": {"posts": [], "total": 0}}),
        ("finish", AgentRunResult(environment="sandbox", text="No posts.", finish_reason="stop")),
    ])
    with patch.object(run, "default_services", return_value=services), patch.object(run, "display") as display:
        services.display = display
        yield services


def test_agent_command_streams_to_display(services):
    code = run.main(["agent", "list posts"])

    assert code == 0
    services.agent.stream.assert_called_once_with("list posts", "sandbox")
    services.display.tool_call.assert_called_once_with("wordpress-list-posts", {})
    services.display.final_result.assert_called_once()
    services.sync_tracked_changes.assert_not_called()
    services.shutdown.assert_called_once()

def test_agent_sync_failure_exit_code(services):
    services.tracker.has_changes.return_value = True
    services.sync_tracked_changes.return_value = SyncOutcome(success=False, total=1, applied=0, failed=1)

    code = run.main(["agent", "create a post", "--env", "real-site", "--sync"])

    assert code == 2
    services.agent.stream.assert_called_once_with("create a post", "real-site")
    services.display.sync_outcome.assert_called_once()

def test_configuration_error_halts(services):
    services.health.side_effect = ConfigurationError("Missing production WordPress MCP credentials")

    code = run.main(["health"])

    assert code == 1
    services.display.halt.assert_called_once_with("Missing production WordPress MCP credentials")
    services.shutdown.assert_called_once()
