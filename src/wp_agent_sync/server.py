# server.py
# FastAPI surface over the agent, the change tracker and the production sync.
#
#   uvicorn wp_agent_sync.server:app --host 127.0.0.1 --port 8000
#
# POST   /api/agents/wordpress          run the agent; body {"prompt": ..., "environment": "sandbox"}
# POST   /api/agents/wordpress/stream   same, streamed as NDJSON events
# GET    /api/sync/changes              tracked changes in the current session
# DELETE /api/sync/changes              clear tracked changes
# GET    /api/sync/apply                preview what would be synced
# POST   /api/sync/apply                apply tracked changes to production
# GET    /api/health                    connect to sandbox and production, list remote tools
#
# POST /api/sync/apply answers 200 when every change applied, 207 when some
# applied and some failed, 502 when every change failed and 500 on an
# unexpected exception.

import json
import logging
import traceback
from collections.abc import Iterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from wp_agent_sync.config import SANDBOX
from wp_agent_sync.services import Services, default_services

logger = logging.getLogger(__name__)


class AgentRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    environment: str = SANDBOX


def _now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def _error_response(exc: Exception, status_code: int = 500, **extra: Any) -> JSONResponse:
    return JSONResponse(
        {
            "error": str(exc) or type(exc).__name__,
            "details": "".join(traceback.format_exception(exc)),
            **extra,
        },
        status_code=status_code,
    )


def _ndjson(kind: str, payload: Any) -> str:
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    return json.dumps({"type": kind, "data": payload}, default=str) + "\n"


def create_app(services: Services | None = None) -> FastAPI:
    services = services or default_services()

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        services.shutdown()

    app = FastAPI(title="WordPress Agent Sync", version="0.1.0", lifespan=lifespan)

    # ── Agent ────────────────────────────────────────────────────────────────

    @app.post("/api/agents/wordpress")
    def run_agent(body: AgentRequest):
        logger.info("Processing prompt: %s", body.prompt)
        try:
            result = services.agent.run(body.prompt, body.environment)
        except Exception as exc:
            logger.exception("Agent run failed")
            return _error_response(exc)

        return {
            "text": result.text,
            "environment": result.environment,
            "tool_calls": [
                {"name": call.name, "args": call.input}
                for step in result.steps
                for call in step.tool_calls
            ],
            "finish_reason": result.finish_reason,
            "tracked_changes": {
                "count": services.tracker.count(),
                "has_changes": services.tracker.has_changes(),
            },
        }

    @app.post("/api/agents/wordpress/stream")
    def stream_agent(body: AgentRequest):
        logger.info("Streaming prompt: %s", body.prompt)
        events = services.agent.stream(body.prompt, body.environment)
        try:
            # Pull the first event eagerly so setup errors still get a 500.
            first = next(events)
        except Exception as exc:
            logger.exception("Agent stream failed to start")
            return _error_response(exc)

        def body_iter() -> Iterator[str]:
            try:
                yield _ndjson(*first)
                for kind, payload in events:
                    yield _ndjson(kind, payload)
            except Exception as exc:
                logger.exception("Agent stream failed")
                yield _ndjson("error", {"message": str(exc)})
            finally:
                # Runs the tracker hand-off now if the client went away mid-stream.
                events.close()

        return StreamingResponse(body_iter(), media_type="application/x-ndjson")

    # ── Change tracking ──────────────────────────────────────────────────────

    @app.get("/api/sync/changes")
    def list_changes():
        return {
            "changes": [c.model_dump(mode="json") for c in services.tracker.snapshot()],
            "count": services.tracker.count(),
            "has_changes": services.tracker.has_changes(),
        }

    @app.delete("/api/sync/changes")
    def clear_changes():
        count = services.tracker.clear()
        return {"message": f"Cleared {count} tracked changes", "remaining_changes": 0}

    # ── Sync ─────────────────────────────────────────────────────────────────

    @app.get("/api/sync/apply")
    def preview_sync():
        changes = services.tracker.snapshot()
        return {
            "message": f"Preview of changes that would be synced to {services.sync.target}",
            "change_count": len(changes),
            "changes": [
                c.model_dump(mode="json", include={"operation", "args", "timestamp", "step_index"})
                for c in changes
            ],
        }

    @app.post("/api/sync/apply")
    def apply_sync():
        if not services.tracker.has_changes():
            return {
                "success": False,
                "message": "No changes to sync. Make changes in sandbox first.",
                "total": 0,
                "applied": 0,
            }

        logger.info("Syncing %d changes to %s", services.tracker.count(), services.sync.target)
        try:
            outcome = services.sync_tracked_changes()
        except Exception as exc:
            logger.exception("Sync failed with exception")
            return _error_response(exc, success=False, total=0, applied=0, failed=0)

        if outcome.success:
            status_code = 200
            message = f"Successfully synced {outcome.applied} changes to {services.sync.target}"
        else:
            status_code = 207 if outcome.applied else 502
            message = f"Sync completed with {outcome.failed} failures"

        return JSONResponse(
            {
                "success": outcome.success,
                "message": message,
                "total": outcome.total,
                "applied": outcome.applied,
                "failed": outcome.failed,
                "errors": outcome.errors,
                "details": [
                    {"operation": r.change.operation, "success": r.success, "error": r.error}
                    for r in outcome.results
                ],
            },
            status_code=status_code,
        )

    # ── Health ───────────────────────────────────────────────────────────────

    @app.get("/api/health")
    def health():
        try:
            report = services.health()
        except Exception as exc:
            return JSONResponse(
                {"status": "unhealthy", "error": str(exc), "timestamp": _now()}, status_code=500
            )
        return {"status": "healthy", **report, "timestamp": _now()}

    return app


app = create_app()
