"""Rich formatting helpers for the chatmux CLI.

Rich auto-detects TTY and degrades gracefully when piped (no ANSI codes).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.table import Table

if TYPE_CHECKING:
    from chatmux.backends.profiles import BackendProfile
    from chatmux.loop import RoundtripResult
    from chatmux.models.content import Turn


def get_console() -> Console:
    """Create a Rich Console that auto-detects TTY for graceful pipe degradation."""
    return Console(stderr=False)


def format_error(message: str, console: Console) -> None:
    """Display an error message."""
    console.print(f"[red]Error:[/red] {escape(message)}", highlight=False)


WIDE_TABLE_WIDTH = 110


def format_models(rows: list[tuple[str, str, BackendProfile]], console: Console) -> None:
    """Display model aliases and the capabilities of the backends they resolve to.

    Specs are never wrapped. On consoles narrower than ``WIDE_TABLE_WIDTH``
    the reasoning and max-token columns are left out.
    """
    wide = console.width >= WIDE_TABLE_WIDTH
    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("Alias", style="yellow", no_wrap=True)
    table.add_column("Spec", no_wrap=True)
    table.add_column("Protocol", style="cyan", no_wrap=True)
    if wide:
        table.add_column("Reasoning", style="dim")
    table.add_column("Editor", justify="center")
    if wide:
        table.add_column("Max tokens", justify="right", style="green")

    for alias, spec, profile in rows:
        cells = [alias, escape(spec), profile.family.value]
        if wide:
            reasoning = profile.reasoning_style.value
            if profile.default_reasoning is not None:
                level = profile.default_reasoning.effort or profile.default_reasoning.budget_tokens
                reasoning = f"{reasoning} ({level})"
            cells.append(reasoning)
        cells.append("yes" if profile.supports_native_editor else "")
        if wide:
            cells.append(str(profile.default_max_tokens))
        table.add_row(*cells)
    console.print(table)


def format_token_count(count: int, console: Console) -> None:
    console.print(f"[dim]Prompt: ~{count} tokens[/dim]", highlight=False)


def format_tool_result(result: RoundtripResult, console: Console) -> None:
    """Display the tool calls (and outcome) of a tool-mode call."""
    for call in result.tool_calls:
        console.print(f"[cyan]{escape(call.name)}[/cyan] {escape(str(call.input))}", highlight=False)
    if result.inconclusive:
        console.print(f"[yellow]No result after {result.rounds} rounds.[/yellow]")
    elif result.truncated:
        console.print("[yellow]Response truncated at the output-token limit.[/yellow]")


def format_history(turns: tuple[Turn, ...], console: Console) -> None:
    if not turns:
        console.print("[dim]No turns yet.[/dim]")
        return
    for i, turn in enumerate(turns):
        text = turn.text.replace("\n", " ")
        if len(text) > 70:
            text = text[:67] + "..."
        console.print(f"  [dim]{i:>3}[/dim] [bold]{turn.role:<9}[/bold] {escape(text)}", highlight=False)
