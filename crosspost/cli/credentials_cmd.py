"""crosspost credentials - inspect and revoke stored platform credentials.

Subcommands:
  crosspost credentials list                       Show who is linked to which platform
  crosspost credentials revoke PLATFORM USER_ID    Forget a user's credentials
"""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from crosspost.config.loader import load_config
from crosspost.errors import CredentialStoreError
from crosspost.gateway import open_credential_store
from crosspost.security.credential_store import CredentialStore

console = Console()
credentials_app = typer.Typer(no_args_is_help=True)


def _get_store() -> CredentialStore:
    from crosspost.cli.app import state

    return open_credential_store(load_config(state.config_path))


def _read_users(store: CredentialStore, platform: str | None) -> dict[str, list[str]]:
    try:
        return store.list_users(platform)
    except CredentialStoreError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc


@credentials_app.command(name="list")
def credentials_list(
    platform: str | None = typer.Option(None, "--platform", "-p", help="Only this platform."),  # noqa: B008
) -> None:
    """Show users with stored credentials."""
    store = _get_store()
    users = _read_users(store, platform)

    if not any(users.values()):
        console.print("[dim]No stored credentials.[/dim]")
        return

    table = Table(title="Stored Credentials")
    table.add_column("Platform", style="cyan")
    table.add_column("User ID", style="green")
    for name, user_ids in users.items():
        for user_id in user_ids:
            table.add_row(name, user_id)

    console.print(table)
    console.print(f"[dim]{store.path}[/dim]")


@credentials_app.command(name="revoke")
def credentials_revoke(
    platform: str = typer.Argument(help="Platform name (e.g. mastodon, bluesky)."),  # noqa: B008
    user_id: str = typer.Argument(help="Chat user ID."),  # noqa: B008
) -> None:
    """Forget a user's credentials for a platform."""
    store = _get_store()
    try:
        deleted = store.delete(platform, user_id)
    except CredentialStoreError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc
    if deleted:
        console.print(f"[green]Revoked {platform} credentials for user {user_id}.[/green]")
    else:
        console.print(f"[red]No {platform} credentials stored for user {user_id}.[/red]")
        raise typer.Exit(1)
