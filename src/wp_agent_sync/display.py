# display.py
# All terminal output for the wp-agent-sync CLI.
#
# This module owns presentation entirely. The CLI never formats strings;
# it calls named functions here.
#
# Colour language:
#   cyan   : routing / environment events
#   blue   : model output
#   magenta: tool calls and results
#   yellow : pending changes
#   green  : success
#   red    : failures, halts

import json
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from wp_agent_sync.models import AgentRunResult, SyncOutcome, TrackedChange

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: Any, max_len: int = 120) -> str:
    if not isinstance(value, str):
        value = json.dumps(value, default=str)
    if len(value) > max_len:
        return value[:max_len] + "…"
    return value


# ---------------------------------------------------------------------------
# Agent run
# ---------------------------------------------------------------------------


def banner(environment: str, target: str) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]WordPress Agent Sync[/bold cyan]\n"
            "[dim]Natural-language post management with sandbox → production replay[/dim]\n\n"
            f"[dim]Agent environment :[/dim] [white]{environment}[/white]\n"
            f"[dim]Sync target       :[/dim] [white]{target}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def prompt_received(prompt: str) -> None:
    console.print()
    console.print(Rule("[cyan]NEW REQUEST[/cyan]", style="cyan"))
    console.print(
        Panel(
            f"[white]{prompt}[/white]",
            title=_label("USER PROMPT", "cyan"),
            border_style="cyan",
            padding=(0, 2),
        )
    )


def agent_text(step: int, text: str) -> None:
    console.print(f"  [blue]Step {step + 1}[/blue]  [white]{_mono(text, 300)}[/white]")


def tool_call(name: str, args: Any) -> None:
    console.print(f"  [magenta]Call[/magenta]     [bold white]{name}[/bold white]  [dim]{_mono(args)}[/dim]")


def tool_result(output: Any) -> None:
    console.print(f"  [magenta]Result[/magenta]   [white]{_mono(output, 140)}[/white]")


def tool_error(output: Any) -> None:
    console.print(f"  [bold red]Error[/bold red]    [white]{_mono(output, 200)}[/white]")


def final_result(result: AgentRunResult, tracked: int) -> None:
    console.print()
    console.print(
        Panel(
            f"[white]{result.text or '(no text)'}[/white]",
            title=_label("RESULT", "green"),
            subtitle=f"[dim]finish={result.finish_reason}  steps={len(result.steps)}  "
            f"tracked changes={tracked}[/dim]",
            border_style="green",
            padding=(1, 2),
        )
    )


# ---------------------------------------------------------------------------
# Changes and sync
# ---------------------------------------------------------------------------


def changes_table(changes: list[TrackedChange]) -> None:
    console.print()
    if not changes:
        console.print(_label("TRACKER", "yellow"), "[yellow] No changes to sync.[/yellow]")
        return

    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="yellow",
        show_header=True,
        header_style="bold yellow",
        padding=(0, 1),
    )
    table.add_column("#", justify="center", width=4)
    table.add_column("Operation", style="bold white")
    table.add_column("Args", style="dim white")
    table.add_column("Step", justify="center", width=6)

    for i, change in enumerate(changes, start=1):
        table.add_row(str(i), change.operation, _mono(change.args, 60), str(change.step_index))

    console.print(
        Panel(
            table,
            title=_label("PENDING CHANGES", "yellow"),
            border_style="yellow",
            padding=(0, 1),
        )
    )


def sync_outcome(outcome: SyncOutcome, target: str) -> None:
    console.print()
    table = Table(box=box.SIMPLE, show_header=True, header_style="bold dim", padding=(0, 1))
    table.add_column("Operation", width=24)
    table.add_column("Applied", justify="center", width=9)
    table.add_column("Error", style="dim white")

    for r in outcome.results:
        applied = "[bold green]✓[/bold green]" if r.success else "[bold red]✗[/bold red]"
        table.add_row(r.change.operation, applied, _mono(r.error or "", 80))

    color = "green" if outcome.success else "red"
    console.print(
        Panel(
            table,
            title=_label(f"SYNC → {target.upper()}", color),
            subtitle=f"[dim]{outcome.applied}/{outcome.total} applied, {outcome.failed} failed[/dim]",
            border_style=color,
            padding=(0, 1),
        )
    )
    if not outcome.success:
        console.print("[dim red]  Failed changes stay in the tracker for another attempt.[/dim red]")


def health_report(report: dict[str, Any]) -> None:
    console.print()
    for environment, info in report.items():
        console.print(
            _label(environment.upper(), "green"),
            f"[green] {info['status']}[/green]  [dim]{info['tools_available']} tools:[/dim] "
            f"[white]{', '.join(info['tool_names'])}[/white]",
        )


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{reason}[/bold white]",
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()
