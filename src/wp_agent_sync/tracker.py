# tracker.py
# Records the tool calls an agent run made so they can be replayed elsewhere.
#
# The step trace is treated as untrusted input: every call is checked against
# the declared operation shapes before it is stored. This is the only gate in
# front of the production sync.
#
# Single session: one ChangeTracker accumulates across every run it is handed.
# Concurrent runs sharing an instance interleave their changes; there is no
# per-request isolation and no lock.

import logging
from collections.abc import Iterable, Mapping
from typing import Any

import pydantic

from wp_agent_sync.errors import ValidationError
from wp_agent_sync.models import ToolCall, ToolResult, TrackedChange
from wp_agent_sync.tools import to_payload, validate_input, validate_result

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Trace extraction
# ---------------------------------------------------------------------------


def _as_mapping(value: Any) -> Mapping[str, Any] | None:
    if isinstance(value, pydantic.BaseModel):
        return value.model_dump()
    if isinstance(value, Mapping):
        return value
    return None


def _extract_calls(step: Mapping[str, Any]) -> tuple[list[ToolCall], int]:
    """Parse a step's tool calls. Returns the calls and the number of malformed entries."""
    calls = []
    malformed = 0
    for raw in step.get("tool_calls") or []:
        try:
            calls.append(ToolCall.model_validate(_as_mapping(raw)))
        except pydantic.ValidationError:
            logger.warning("Ignoring malformed tool call entry: %r", raw)
            malformed += 1
    return calls, malformed


def _extract_results(step: Mapping[str, Any]) -> dict[str, ToolResult]:
    results = {}
    for raw in step.get("tool_results") or []:
        try:
            result = ToolResult.model_validate(_as_mapping(raw))
        except pydantic.ValidationError:
            logger.warning("Ignoring malformed tool result entry: %r", raw)
            continue
        results[result.call_id] = result
    return results


# ---------------------------------------------------------------------------
# ChangeTracker
# ---------------------------------------------------------------------------


class ChangeTracker:
    """In-memory, append-only log of validated changes from agent runs."""

    def __init__(self) -> None:
        self._changes: list[TrackedChange] = []
        self.skipped = 0

    def record_run(self, steps: Iterable[Any]) -> int:
        """
        Extract and store every valid tool call in an agent step trace.

        A call entry that cannot be parsed, or whose arguments do not fit its
        operation (or names no known operation), is skipped and counted. A result that does not fit the
        operation's output shape is dropped; the change itself is kept.

        Returns the number of changes recorded.
        """
        steps = list(steps or [])
        if not steps:
            logger.info("No tool calls to track")
            return 0

        tracked = 0
        skipped = 0

        for index, raw_step in enumerate(steps):
            step = _as_mapping(raw_step)
            if step is None:
                logger.warning("Invalid step data at index %d", index)
                skipped += 1
                continue

            results = _extract_results(step)
            calls, malformed = _extract_calls(step)
            skipped += malformed

            for call in calls:
                try:
                    args = to_payload(validate_input(call.name, call.input))
                except ValidationError as exc:
                    logger.warning("Skipping %s (step %d): %s", call.name, index, exc)
                    skipped += 1
                    continue

                result = None
                tool_result = results.get(call.call_id)
                if tool_result is not None and not tool_result.is_error:
                    result = validate_result(call.name, tool_result.output)
                    if result is None:
                        logger.warning(
                            "Invalid result for %s (step %d): %r",
                            call.name,
                            index,
                            tool_result.output,
                        )

                self._track(TrackedChange(
                    operation=call.name, args=args, result=result, step_index=index
                ))
                tracked += 1

        self.skipped += skipped
        logger.info("Tracked %d changes, skipped %d invalid entries", tracked, skipped)
        logger.info("Total changes: %d", len(self._changes))
        return tracked

    def _track(self, change: TrackedChange) -> None:
        self._changes.append(change)
        logger.info("Tracked %s (step %d)", change.operation, change.step_index)

    def snapshot(self) -> list[TrackedChange]:
        """Deep copy of the tracked changes in recorded order."""
        return [change.model_copy(deep=True) for change in self._changes]

    def clear(self) -> int:
        count = len(self._changes)
        self._changes = []
        logger.info("Cleared %d changes", count)
        return count

    def reset(self) -> None:
        """clear() plus the skip counter. Meant for test isolation."""
        self._changes = []
        self.skipped = 0

    def count(self) -> int:
        return len(self._changes)

    def has_changes(self) -> bool:
        return bool(self._changes)
