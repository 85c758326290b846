"""Chatmux CLI -- talk to any supported backend from the terminal.

This module is NEVER imported from chatmux/__init__.py.
It is only loaded via the ``chatmux`` entry point defined in pyproject.toml.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

try:
    import click
except ImportError:
    raise ImportError(
        "CLI dependencies not installed. Install with: pip install chatmux[cli]"
    ) from None

from chatmux.cli.formatting import format_error, get_console

if TYPE_CHECKING:
    from collections.abc import Iterator

    from rich.console import Console

    from chatmux.session.chat import ChatSession


@click.group()
@click.option(
    "--api-key",
    default=None,
    envvar="CHATMUX_API_KEY",
    help="API key (defaults to the vendor's environment variable).",
)
@click.option("-v", "--verbose", is_flag=True, help="Log requests and rounds to stderr.")
@click.pass_context
def cli(ctx: click.Context, api_key: str | None, verbose: bool) -> None:
    """Chatmux: one chat interface for many LLM backends."""
    ctx.ensure_object(dict)
    ctx.obj["api_key"] = api_key
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")


def _open_session(spec: str, console: Console, **kwargs: Any) -> ChatSession:
    """Open a rendering session for ``spec`` on ``console``."""
    from chatmux.session.chat import open_session

    return open_session(spec, console=console, **kwargs)


@contextmanager
def _chat_session(
    ctx: click.Context, spec: str, **kwargs: Any
) -> Iterator[tuple[ChatSession, Console]]:
    """Open a session, yield (session, console), and handle cleanup.

    Exceptions are formatted as CLI errors and exit with status 1.
    """
    console = get_console()
    try:
        session = _open_session(spec, console, api_key=ctx.obj.get("api_key"), **kwargs)
        try:
            yield session, console
        finally:
            session.close()
    except SystemExit:
        raise
    except Exception as e:
        format_error(str(e), console)
        raise SystemExit(1) from None


# Register subcommands after cli group is defined
from chatmux.cli.commands.ask import ask  # noqa: E402
from chatmux.cli.commands.chat import chat  # noqa: E402
from chatmux.cli.commands.models import models  # noqa: E402

cli.add_command(ask)
cli.add_command(chat)
cli.add_command(models)
