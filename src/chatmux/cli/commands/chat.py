"""chatmux chat -- interactive conversation."""

from __future__ import annotations

import click

_HELP = "/system TEXT  set the system instruction\n/history      list turns\n/exit         quit"


@click.command()
@click.argument("model")
@click.option("--system", default=None, help="Initial system instruction.")
@click.pass_context
def chat(ctx: click.Context, model: str, system: str | None) -> None:
    """Chat with MODEL, keeping one session until /exit or EOF."""
    from chatmux.cli import _chat_session
    from chatmux.cli.formatting import format_history

    with _chat_session(ctx, model, system=system) as (session, console):
        console.print(f"[dim]{session.label} -- /help for commands[/dim]")
        while True:
            try:
                line = click.prompt("", prompt_suffix="> ", default="", show_default=False)
            except click.exceptions.Abort:
                break
            line = line.strip()
            if not line:
                continue
            if line in ("/exit", "/quit"):
                break
            if line == "/help":
                console.print(_HELP, highlight=False)
            elif line == "/history":
                format_history(session.history(), console)
            elif line.startswith("/system "):
                session.set_system(line[len("/system "):])
                console.print("[dim]System instruction set.[/dim]")
            else:
                session.ask(line)
