"""Command-line interface for the NSX resource synchronizer."""

import asyncio
import os
from collections.abc import Awaitable, Callable
from pathlib import Path

import structlog
import typer
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import SyncerConfig, load_config
from .core.gc import run_garbage_collector
from .nsx.client import NSXClient
from .observability import configure_logging
from .services.childsubnet import ChildSubnetService
from .services.subnetbinding import BindingService

app = typer.Typer(
    name="nsxsync",
    help="NSX resource synchronizer - inspect the cached NSX state",
    add_completion=False,
)

console = Console()
logger = structlog.get_logger(__name__)


def _load(config_file: Path | None, log_level: str | None) -> SyncerConfig:
    try:
        config = load_config(config_file)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"\n[bold red]ERROR:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    configure_logging(
        level=log_level or os.environ.get("LOG_LEVEL", config.logging.level),
        json_logs=config.logging.format == "json",
        log_file=config.logging.file,
    )
    if config.nsx is None:
        console.print("\n[bold red]ERROR:[/bold red] NSX configuration required")
        console.print("(Set NSX_URL/NSX_USERNAME/NSX_PASSWORD env vars or provide --config)")
        raise typer.Exit(code=1)
    return config


@app.command()
def inventory(
    config_file: Path | None = typer.Option(None, "--config", "-c", help="Configuration file"),
    log_level: str | None = typer.Option(None, "--log-level", help="Log level (TRACE..CRITICAL)"),
) -> None:
    """
    Initialize every store from NSX and print the cached counts.

    Examples:
        nsxsync inventory
        nsxsync inventory --config prod.yaml
    """
    config = _load(config_file, log_level)

    async def run_inventory() -> dict[str, int]:
        async with NSXClient(config.nsx) as client:
            service = ChildSubnetService(client, config.cluster, config.sync)
            await service.initialize()
            sizes = service.store_sizes()
            if config.sync.vpc_enabled:
                bindings = BindingService(client, config.cluster)
                await bindings.initialize()
                sizes[bindings.store.name] = len(bindings.store)
            return sizes

    console.print(f"[cyan]Connecting to NSX at {config.nsx.base_url}...[/cyan]")
    try:
        sizes = asyncio.run(run_inventory())
    except Exception as e:
        console.print(f"\n[bold red]ERROR: Initialization failed:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    table = Table(title=f"Cached NSX resources (cluster {config.cluster or '-'})")
    table.add_column("Store", style="cyan")
    table.add_column("Count", justify="right", style="green")
    for name, count in sizes.items():
        table.add_row(name, str(count))
    console.print(table)


@app.command("show-config")
def show_config(
    config_file: Path | None = typer.Option(None, "--config", "-c", help="Configuration file"),
) -> None:
    """Print the effective configuration (password masked)."""
    try:
        config = load_config(config_file)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"\n[bold red]ERROR:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    table = Table(title="Effective configuration", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    if config.nsx is None:
        table.add_row("nsx", "[yellow]not configured[/yellow]")
    else:
        table.add_row("nsx.base_url", config.nsx.base_url)
        table.add_row("nsx.username", config.nsx.username)
        table.add_row("nsx.password", "********" if config.nsx.password else "")
        table.add_row("nsx.cluster", config.nsx.cluster)
        table.add_row("nsx.verify_ssl", str(config.nsx.verify_ssl))
        table.add_row("nsx.timeout", str(config.nsx.timeout))
    for key, value in config.sync.__dict__.items():
        table.add_row(f"sync.{key}", str(value))
    for key, value in config.logging.__dict__.items():
        table.add_row(f"logging.{key}", str(value))
    console.print(table)


@app.command("vlan-usage")
def vlan_usage(
    segment_paths: list[str] = typer.Argument(..., help="Parent segment policy paths"),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="Configuration file"),
    log_level: str | None = typer.Option(None, "--log-level", help="Log level (TRACE..CRITICAL)"),
) -> None:
    """
    Show VLANs used on parent segments and the next free one.

    Examples:
        nsxsync vlan-usage /infra/segments/vnet-seg-1 /infra/segments/vnet-seg-2
    """
    config = _load(config_file, log_level)

    async def run_usage() -> tuple[set[int], int | None]:
        async with NSXClient(config.nsx) as client:
            service = ChildSubnetService(client, config.cluster, config.sync)
            await service.initialize()
            return service.vlan_usage(segment_paths)

    try:
        used, next_free = asyncio.run(run_usage())
    except Exception as e:
        console.print(f"\n[bold red]ERROR: Initialization failed:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    console.print(f"\n[bold]Segments:[/bold] {', '.join(segment_paths)}")
    console.print(f"  Used VLANs: {', '.join(str(v) for v in sorted(used)) or 'none'}")
    if next_free is None:
        console.print("  [red]No free VLAN left[/red]")
    else:
        console.print(f"  Next free VLAN: [green]{next_free}[/green]")


LIVE_UID_KEYS = {"ChildSubnet": "childSubnets", "SubnetBinding": "subnetBindings"}


def _read_live_uids(live_file: Path) -> dict[str, set[str]]:
    """Read the live CR UIDs per kind; missing keys mean no live CRs of that kind."""
    with open(live_file) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid live UID file {live_file}: expected dictionary, got {type(data).__name__}")
    return {kind: {str(uid) for uid in data.get(key) or []} for kind, key in LIVE_UID_KEYS.items()}


@app.command()
def gc(
    live_file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, help="YAML file with childSubnets/subnetBindings UID lists"
    ),
    sweeps: int = typer.Option(0, "--sweeps", help="Stop after this many sweeps (0 runs until interrupted)"),
    interval: float | None = typer.Option(
        None, "--interval", help="Seconds between sweeps (default sync.gc_interval)"
    ),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="Configuration file"),
    log_level: str | None = typer.Option(None, "--log-level", help="Log level (TRACE..CRITICAL)"),
) -> None:
    """
    Periodically delete NSX resources whose owning CR is no longer live.

    The live UID file is re-read on every sweep. Each kind is swept on its
    own timer.

    Examples:
        nsxsync gc live.yaml
        nsxsync gc live.yaml --sweeps 1
    """
    config = _load(config_file, log_level)
    gc_interval = config.sync.gc_interval if interval is None else interval
    cleaned = dict.fromkeys(LIVE_UID_KEYS, 0)

    async def sweep_loop(kind: str, collect_garbage: Callable[[set[str]], Awaitable[int]]) -> int:
        stop_event = asyncio.Event()
        runs = 0

        async def collect() -> None:
            nonlocal runs
            runs += 1
            try:
                cleaned[kind] += await collect_garbage(_read_live_uids(live_file)[kind])
            finally:
                if sweeps and runs >= sweeps:
                    stop_event.set()

        return await run_garbage_collector(gc_interval, collect, stop_event)

    async def run_gc() -> None:
        async with NSXClient(config.nsx) as client:
            service = ChildSubnetService(client, config.cluster, config.sync)
            await service.initialize()
            loops = [sweep_loop("ChildSubnet", service.collect_garbage)]
            if config.sync.vpc_enabled:
                bindings = BindingService(client, config.cluster)
                await bindings.initialize()
                loops.append(sweep_loop("SubnetBinding", bindings.collect_garbage))
            await asyncio.gather(*loops)

    console.print(f"[cyan]Sweeping every {gc_interval:g}s (Ctrl+C to stop)...[/cyan]")
    try:
        asyncio.run(run_gc())
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
    except Exception as e:
        console.print(f"\n[bold red]ERROR: Garbage collection failed:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    table = Table(title="Garbage collection")
    table.add_column("Kind", style="cyan")
    table.add_column("Cleaned", justify="right", style="green")
    for kind, count in cleaned.items():
        table.add_row(kind, str(count))
    console.print(table)


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__

    console.print(
        Panel.fit(
            "[bold]NSX Resource Synchronizer[/bold]\n\n"
            f"Version: [cyan]{__version__}[/cyan]\n\n"
            "[bold]Core:[/bold]\n"
            "- Indexed resource stores\n"
            "- Key/value diff engine\n"
            "- Hierarchical Infra / OrgRoot writes\n"
            "- VLAN allocation and IP block exhaustion tracking\n"
            "- Create rollback and garbage collection",
            title="About",
            border_style="blue",
        )
    )


if __name__ == "__main__":
    app()
