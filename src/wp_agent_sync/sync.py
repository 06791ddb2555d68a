# sync.py
# Replays tracked changes against a second environment.
#
# Replay is strictly sequential and in recorded order: an update-post may
# depend on a create-post that ran just before it. A failed change is
# recorded and replay moves on; one failure never aborts the batch.
#
# Replay is not idempotent. Applying the same create-post twice creates two
# posts; there is no natural key to match an already-synced create.

import logging
from collections.abc import Iterable

from wp_agent_sync.config import PRODUCTION
from wp_agent_sync.models import ChangeOutcome, SyncOutcome, TrackedChange
from wp_agent_sync.tools import ToolAdapter

logger = logging.getLogger(__name__)


class SyncService:
    """Applies a list of TrackedChange records to the target environment."""

    def __init__(self, adapter: ToolAdapter, target: str = PRODUCTION) -> None:
        self._adapter = adapter
        self.target = target

    def apply(self, changes: Iterable[TrackedChange]) -> SyncOutcome:
        changes = list(changes)
        logger.info("Starting sync of %d changes to %s", len(changes), self.target)

        results = [self._apply_one(change) for change in changes]
        outcome = SyncOutcome.from_results(results)

        logger.info("Sync complete: %d applied, %d failed", outcome.applied, outcome.failed)
        return outcome

    def _apply_one(self, change: TrackedChange) -> ChangeOutcome:
        logger.info("Applying %s to %s", change.operation, self.target)
        try:
            result = self._adapter.execute(self.target, change.operation, change.args)
        except Exception as exc:
            # Validation, remote and connection failures all land here.
            logger.error("Failed to apply %s: %s", change.operation, exc)
            return ChangeOutcome(change=change, success=False, error=str(exc) or type(exc).__name__)

        logger.info("Successfully applied %s", change.operation)
        return ChangeOutcome(change=change, success=True, result=result)
