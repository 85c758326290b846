"""chatmux models -- list model aliases."""

from __future__ import annotations

import click


@click.command()
def models() -> None:
    """List model aliases and the backends they resolve to."""
    from chatmux.backends.resolver import MODEL_ALIASES, resolve_backend
    from chatmux.cli.formatting import format_models, get_console

    console = get_console()
    rows = [(alias, spec, resolve_backend(spec)) for alias, spec in MODEL_ALIASES.items()]
    format_models(rows, console)
