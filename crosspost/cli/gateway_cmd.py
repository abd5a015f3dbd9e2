"""crosspost gateway -- run the chat bot.

The gateway is the long-running process that connects:
  - the Telegram transport, pushing inbound messages onto the bus
  - the dispatcher, routing each user's messages to their flow scheduler
  - the blogging platforms the posting flow publishes to

Start: crosspost gateway
Stop:  Ctrl+C (SIGINT) or SIGTERM for graceful shutdown
"""

from __future__ import annotations

import asyncio
import contextlib
import signal

import typer
from loguru import logger
from rich.console import Console

from crosspost import __version__
from crosspost.blogging.posting import DraftStore
from crosspost.bus import MessageBus
from crosspost.config.loader import load_config
from crosspost.config.schema import CrosspostConfig
from crosspost.dispatcher import Dispatcher, run_consumer
from crosspost.errors import CredentialStoreError
from crosspost.gateway import (
    bot_commands,
    build_platforms,
    build_scheduler_factory,
    open_credential_store,
)
from crosspost.im.telegram import TelegramChannel

console = Console()


def gateway_command() -> None:
    """Start the crosspost gateway: Telegram + dispatcher."""
    from crosspost.cli.app import state

    config = load_config(state.config_path)
    if not config.channels.telegram.enabled:
        console.print(
            "[red]Telegram is not enabled.[/red] "
            "Set channels.telegram.enabled and channels.telegram.token in config.json."
        )
        raise typer.Exit(1)
    try:
        asyncio.run(_run_gateway(config))
    except KeyboardInterrupt:
        console.print("\n[dim]Gateway shutdown by user.[/dim]")
    except CredentialStoreError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc


async def _run_gateway(config: CrosspostConfig) -> None:
    """Main async entry point for the gateway process."""
    store = open_credential_store(config)
    # Fails here on a wrong passphrase rather than on the first post.
    store.list_users()
    platforms = build_platforms(config, store)
    factory = build_scheduler_factory(config, platforms, DraftStore())
    # Registration problems are configuration errors: fail before going online.
    factory("")

    bus = MessageBus()
    dispatcher = Dispatcher(factory, turn_timeout=config.flows.turn_timeout_seconds)
    telegram = TelegramChannel(config.channels.telegram, commands=bot_commands(platforms))
    await telegram.start(bus)

    console.print(
        f"[bold cyan]crosspost {__version__} gateway running.[/bold cyan] "
        f"Platforms: {', '.join(platforms) or 'none'}. Press Ctrl+C to stop."
    )

    shutdown_event = asyncio.Event()
    _install_signal_handlers(shutdown_event)

    consumer_task = asyncio.create_task(
        run_consumer(bus, dispatcher, telegram), name="inbound-consumer"
    )

    await shutdown_event.wait()

    console.print("\n[dim]Shutting down gateway...[/dim]")
    consumer_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await consumer_task
    await telegram.stop()

    logger.info("Gateway shutdown complete")
    console.print("[green]Gateway stopped.[/green]")


def _install_signal_handlers(shutdown_event: asyncio.Event) -> None:
    """Install SIGINT/SIGTERM handlers that trigger graceful shutdown."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown_event.set)
