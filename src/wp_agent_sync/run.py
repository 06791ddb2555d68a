# run.py
# Entry point. Argument parsing and wiring only: no logic lives here.
#
#   wp-agent-sync agent "Create a draft post titled Hello" --sync
#   wp-agent-sync health
#   wp-agent-sync serve --port 8000
#
# Tracked changes live in memory, so `agent --sync` is the only way to carry
# a run's changes to production from the command line. The HTTP server keeps
# them across requests.

import argparse
import logging
import sys

from wp_agent_sync import display
from wp_agent_sync.config import SANDBOX
from wp_agent_sync.errors import AgentSyncError
from wp_agent_sync.services import Services, default_services


def _run_agent(services: Services, args: argparse.Namespace) -> int:
    display.banner(args.env, services.sync.target)
    display.prompt_received(args.prompt)

    result = None
    for kind, payload in services.agent.stream(args.prompt, args.env):
        if kind == "text":
            display.agent_text(payload["step"], payload["text"])
        elif kind == "tool-call":
            display.tool_call(payload["name"], payload["input"])
        elif kind == "tool-result":
            display.tool_result(payload["output"])
        elif kind == "tool-error":
            display.tool_error(payload["output"])
        elif kind == "finish":
            result = payload

    display.final_result(result, services.tracker.count())
    display.changes_table(services.tracker.snapshot())

    if not args.sync or not services.tracker.has_changes():
        return 0

    outcome = services.sync_tracked_changes()
    display.sync_outcome(outcome, services.sync.target)
    return 0 if outcome.success else 2


def _health(services: Services) -> int:
    display.health_report(services.health())
    return 0


def _serve(services: Services, args: argparse.Namespace) -> int:
    import uvicorn

    from wp_agent_sync.server import create_app

    uvicorn.run(create_app(services), host=args.host, port=args.port)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="wp-agent-sync",
        description="Manage WordPress posts in natural language and replay the changes to production.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log connection and sync detail.")
    commands = parser.add_subparsers(dest="command", required=True)

    agent = commands.add_parser("agent", help="Run the agent against one environment.")
    agent.add_argument("prompt", help="Natural-language request.")
    agent.add_argument("--env", default=SANDBOX, help=f"Environment to work in (default: {SANDBOX}).")
    agent.add_argument(
        "--sync", action="store_true", help="Replay the tracked changes to production afterwards."
    )

    commands.add_parser("health", help="Connect to sandbox and production and list their tools.")

    serve = commands.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="[%(name)s] %(levelname)s %(message)s",
    )

    services = default_services()
    try:
        if args.command == "agent":
            return _run_agent(services, args)
        if args.command == "health":
            return _health(services)
        return _serve(services, args)
    except AgentSyncError as exc:
        display.halt(str(exc))
        return 1
    finally:
        services.shutdown()


if __name__ == "__main__":
    sys.exit(main())
