# services.py
# Composition root. Config and wiring only, plus the clear-on-success policy.
#
# Every component gets its collaborators by reference; nothing here is a
# module-level singleton except the optional default_services() instance.

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from wp_agent_sync.agent import AgentOrchestrator, ChatModel, default_chat_model
from wp_agent_sync.config import PRODUCTION, SANDBOX
from wp_agent_sync.connections import ConnectionManager
from wp_agent_sync.models import SyncOutcome
from wp_agent_sync.sync import SyncService
from wp_agent_sync.tools import ToolAdapter
from wp_agent_sync.tracker import ChangeTracker

logger = logging.getLogger(__name__)


@dataclass
class Services:
    connections: ConnectionManager
    adapter: ToolAdapter
    tracker: ChangeTracker
    agent: AgentOrchestrator
    sync: SyncService
    health_environments: tuple[str, ...] = field(default=(SANDBOX, PRODUCTION))

    def sync_tracked_changes(self) -> SyncOutcome:
        """Replay the tracker's snapshot; clear the tracker only if every change applied."""
        outcome = self.sync.apply(self.tracker.snapshot())
        if outcome.success:
            self.tracker.clear()
            logger.info("Sync successful, cleared tracked changes")
        else:
            logger.warning("Sync had failures, keeping tracked changes")
        return outcome

    def health(self) -> dict[str, Any]:
        """Connect to each environment and list its remote tools. Errors propagate."""
        report = {}
        for environment in self.health_environments:
            tools = self.connections.get(environment).discover()
            report[environment] = {
                "status": "connected",
                "tools_available": len(tools),
                "tool_names": [t.name for t in tools],
            }
        return report

    def shutdown(self) -> None:
        self.connections.invalidate()


def build_services(
    connections: ConnectionManager | None = None,
    model_factory: Callable[[], ChatModel] = default_chat_model,
    target: str = PRODUCTION,
) -> Services:
    connections = connections or ConnectionManager()
    adapter = ToolAdapter(connections)
    tracker = ChangeTracker()
    return Services(
        connections=connections,
        adapter=adapter,
        tracker=tracker,
        agent=AgentOrchestrator(adapter, tracker, model_factory),
        sync=SyncService(adapter, target),
    )


_default: Services | None = None


def default_services() -> Services:
    """Process-wide wiring used by the CLI and the HTTP server."""
    global _default
    if _default is None:
        _default = build_services()
    return _default
