"""chatmux ask -- one-shot question."""

from __future__ import annotations

import json

import click


@click.command()
@click.argument("model")
@click.argument("prompt", required=False)
@click.option("--system", default=None, help="System instruction.")
@click.option("--cache", "cacheable", is_flag=True, help="Mark the system instruction cacheable.")
@click.option("--temperature", type=float, default=None, help="Sampling temperature.")
@click.option("--max-tokens", type=int, default=None, help="Output-token budget.")
@click.option("--no-stream", is_flag=True, help="Wait for the complete response.")
@click.option(
    "--tools",
    "tools_file",
    type=click.File("r"),
    default=None,
    help="JSON file with a list of tool definitions (runs in tool mode).",
)
@click.option("--count", is_flag=True, help="Print the estimated prompt size first.")
@click.pass_context
def ask(
    ctx: click.Context,
    model: str,
    prompt: str | None,
    system: str | None,
    cacheable: bool,
    temperature: float | None,
    max_tokens: int | None,
    no_stream: bool,
    tools_file,
    count: bool,
) -> None:
    """Ask MODEL a single question. PROMPT defaults to stdin.

    MODEL is an alias (see ``chatmux models``) or vendor:model[:thinking].
    """
    from chatmux.cli import _chat_session
    from chatmux.cli.formatting import format_token_count, format_tool_result

    if prompt is None:
        prompt = click.get_text_stream("stdin").read()
    if not prompt.strip():
        raise click.UsageError("Empty prompt.")

    tools = json.load(tools_file) if tools_file is not None else None

    with _chat_session(ctx, model, system=system) as (session, console):
        if count:
            from chatmux.models.content import Turn
            from chatmux.tokens import count_turns

            turns = session.history() + (Turn(role="user", content=prompt),)
            format_token_count(count_turns(turns, session.system, session.profile.model), console)

        options: dict = {}
        if cacheable:
            options["system_cacheable"] = True
        if temperature is not None:
            options["temperature"] = temperature
        if max_tokens is not None:
            options["max_tokens"] = max_tokens
        if no_stream:
            options["stream"] = False

        if tools is not None:
            result = session.ask_tools(prompt, tools, **options)
            format_tool_result(result, console)
        else:
            session.ask(prompt, **options)
