"""CLI commands for wabridge."""

import asyncio
import shutil
import signal
import sys
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel

from wabridge import __logo__, __version__
from wabridge.config.loader import ConfigError, get_config_path, load_config, load_skill, save_config
from wabridge.config.schema import Config

app = typer.Typer(
    name="wabridge",
    help=f"{__logo__} wabridge - WhatsApp bridge to a local reasoning engine",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} wabridge v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-V", callback=version_callback, is_eager=True
    ),
):
    """wabridge - WhatsApp bridge to a local reasoning engine."""
    pass


def _setup_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


def _load_or_exit(config_path: Path | None, require_phone: bool = True) -> Config:
    try:
        return load_config(config_path, require_phone=require_phone)
    except ConfigError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(1)


def _print_banner(config: Config) -> None:
    body = "\n".join(
        [
            f"Phone: {config.phone}",
            f"CWD:   {config.cwd or '~'}",
            f"Skill: {config.skill or 'none'}",
        ]
    )
    console.print(Panel(body, title=f"{__logo__} wabridge", expand=False))


def _show_pairing_token(qr: str) -> None:
    console.print("\n📱 Link this device with WhatsApp using the pairing code below:\n")
    console.print(qr, soft_wrap=True)
    console.print("\nOpen WhatsApp → Settings → Linked Devices → Link a Device\n")


# ============================================================================
# Run
# ============================================================================


@app.command()
def run(
    config_path: Path | None = typer.Option(None, "--config", "-c", help="Path to config.json"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Connect to WhatsApp and relay messages to the engine."""
    config = _load_or_exit(config_path)
    _setup_logging(verbose)
    skill = load_skill(config, config_path)
    _print_banner(config)
    asyncio.run(_run_bridge(config, skill))


async def _run_bridge(config: Config, skill: str | None) -> None:
    from wabridge.agent.loop import BridgeLoop
    from wabridge.bus.queue import MessageBus
    from wabridge.channels.filter import InboundFilter, SentMessageRegistry
    from wabridge.channels.manager import ConnectionManager
    from wabridge.engine.runner import EngineRunner
    from wabridge.session.credentials import CredentialStore
    from wabridge.transport.websocket import WebSocketTransport

    bus = MessageBus()
    registry = SentMessageRegistry(
        ttl_seconds=config.sent_registry_ttl_s,
        max_entries=config.sent_registry_max_entries,
    )
    manager = ConnectionManager(
        transport_factory=lambda: WebSocketTransport(
            config.transport.bridge_url,
            token=config.transport.bridge_token,
            command_timeout_s=config.transport.send_timeout_ms / 1000,
        ),
        credentials=CredentialStore(config.transport.auth_path),
        bus=bus,
        inbound_filter=InboundFilter(config.phone, registry),
        reconnect_delay_s=config.transport.reconnect_delay_ms / 1000,
        on_pairing=_show_pairing_token,
    )
    bridge = BridgeLoop(
        bus=bus,
        engine=EngineRunner(config.engine.command, output_format=config.engine.output_format),
        cwd=config.cwd,
        allowed_tools=config.allowed_tools,
        skill=skill,
        max_turns=config.max_turns,
        timeout_ms=config.timeout,
        max_chunk_chars=config.max_chunk_chars,
    )

    shutdown_started = False

    async def _graceful_shutdown() -> None:
        nonlocal shutdown_started
        if shutdown_started:
            return
        shutdown_started = True
        console.print("\nShutting down...")
        await bridge.shutdown()
        await manager.stop()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda: asyncio.ensure_future(_graceful_shutdown()))

    bridge_task = asyncio.create_task(bridge.run())
    try:
        await manager.run()
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        await _graceful_shutdown()
        bridge_task.cancel()
        await asyncio.gather(bridge_task, return_exceptions=True)


# ============================================================================
# Setup / Status
# ============================================================================


@app.command()
def onboard(
    config_path: Path | None = typer.Option(None, "--config", "-c", help="Path to config.json"),
):
    """Create a default configuration file."""
    path = config_path or get_config_path()
    if path.exists():
        console.print(f"[yellow]Config already exists at {path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    save_config(Config(), path)
    console.print(f"[green]✓[/green] Created config at {path}")
    console.print(f"\n{__logo__} wabridge is almost ready!")
    console.print("\nNext steps:")
    console.print(f"  1. Set [cyan]phone[/cyan] (without +) in [cyan]{path}[/cyan]")
    console.print("  2. Start the WhatsApp sidecar")
    console.print("  3. Run: [cyan]wabridge run[/cyan]")


@app.command()
def status(
    config_path: Path | None = typer.Option(None, "--config", "-c", help="Path to config.json"),
):
    """Show wabridge status."""
    path = config_path or get_config_path()
    console.print(f"{__logo__} wabridge Status\n")
    console.print(f"Config: {path} {'[green]✓[/green]' if path.exists() else '[red]✗[/red]'}")
    if not path.exists():
        return

    config = _load_or_exit(config_path, require_phone=False)
    from wabridge.session.credentials import CredentialStore

    store = CredentialStore(config.transport.auth_path)
    engine_found = shutil.which(config.engine.command) is not None
    console.print(f"Phone: {config.phone or '[dim]not set[/dim]'}")
    console.print(f"CWD: {config.workspace_path}")
    console.print(f"Bridge: {config.transport.bridge_url}")
    console.print(
        f"Credentials: {store.path} {'[green]✓[/green]' if store.exists() else '[dim]not paired[/dim]'}"
    )
    console.print(
        f"Engine: {config.engine.command} {'[green]✓[/green]' if engine_found else '[red]not on PATH[/red]'}"
    )


@app.command()
def logout(
    config_path: Path | None = typer.Option(None, "--config", "-c", help="Path to config.json"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Delete stored WhatsApp credentials so the device can be re-linked."""
    config = _load_or_exit(config_path, require_phone=False)
    from wabridge.session.credentials import CredentialStore

    store = CredentialStore(config.transport.auth_path)
    if not store.auth_dir.exists():
        console.print("No stored credentials.")
        return
    if not yes and not typer.confirm(f"Delete {store.auth_dir}?"):
        raise typer.Exit()
    store.clear()
    console.print(f"[green]✓[/green] Removed {store.auth_dir}. Restart `wabridge run` to pair again.")
