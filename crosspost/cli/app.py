"""Main CLI application: registers all subcommands and global options."""

from __future__ import annotations

from pathlib import Path

import typer

from crosspost.logging import setup_logging

app = typer.Typer(
    name="crosspost",
    help="crosspost - Write microblog posts in chat, publish them everywhere.",
    no_args_is_help=True,
    pretty_exceptions_enable=False,
)


class _GlobalState:
    """Shared state set by the top-level callback, consumed by subcommands."""

    config_path: Path | None = None
    verbose: bool = False
    quiet: bool = False


state = _GlobalState()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show DEBUG-level logs."),  # noqa: B008
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress logs below WARNING."),  # noqa: B008
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to config.json."),  # noqa: B008
) -> None:
    """crosspost - Write microblog posts in chat, publish them everywhere."""
    state.verbose = verbose
    state.quiet = quiet
    state.config_path = config
    setup_logging(verbose=verbose, quiet=quiet)


# Register subcommands; imported here to avoid circular imports
from crosspost.cli.credentials_cmd import credentials_app  # noqa: E402
from crosspost.cli.gateway_cmd import gateway_command  # noqa: E402

app.command(name="gateway", help="Run the chat bot until interrupted.")(gateway_command)
app.add_typer(
    credentials_app, name="credentials", help="Inspect and revoke stored credentials."
)
