"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
import os
import time
from pathlib import Path

import aiohttp
import typer
from aiohttp import web
from rich.console import Console
from rich.logging import RichHandler

from tilevault import __version__
from tilevault.core.connection import close_connection_pool
from tilevault.core.context import OfflineContext
from tilevault.exceptions import TileVaultError
from tilevault.models.config import TileVaultConfig
from tilevault.storage.config_manager import ConfigManager
from tilevault.storage.regions import find_region, region_from_pm
from tilevault.utils.path import region_code_from_pm

from .formatters import (
    badge_text,
    format_error_with_suggestions,
    print_config,
    print_regions_table,
    print_transfer_summary,
)
from .progress_manager import ProgressManager

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("tilevault")

app = typer.Typer(
    name="tilevault",
    help=(
        "Keeps PMTiles map regions available offline and serves them to map"
        " clients through a local range-aware proxy. Use 'tilevault <command>"
        " --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)

ONLINE_PROBE_TIMEOUT = 5


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "tilevault"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"


def _load_config(cli_options: dict | None = None) -> TileVaultConfig:
    try:
        return ConfigManager(CONFIG_FILE).load_config(cli_options)
    except TileVaultError as e:
        console.print(format_error_with_suggestions(e))
        raise typer.Exit(code=1) from e


async def _open_context(config: TileVaultConfig) -> OfflineContext:
    ctx = OfflineContext.from_config(config)
    try:
        await ctx.load_regions()
    except TileVaultError:
        await ctx.close()
        raise
    return ctx


def _run(coro) -> None:
    """Runs a command coroutine, rendering library errors as a panel."""

    async def _wrapped():
        try:
            await coro
        finally:
            await close_connection_pool()

    try:
        asyncio.run(_wrapped())
    except TileVaultError as e:
        console.print(format_error_with_suggestions(e))
        raise typer.Exit(code=1) from e


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
):
    """TileVault offline map cache"""
    if version:
        console.print(f"[bold]tilevault[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "INFO"
    if verbose >= 2:
        log_level = "DEBUG"
    logging.getLogger("tilevault").setLevel(log_level)

    if show_config:
        if not CONFIG_FILE.is_file():
            console.print(
                "[red]✗ Config file not found.[/] Run [cyan]tilevault init[/cyan]"
                " first."
            )
            raise typer.Exit(code=1)
        config_manager = ConfigManager(CONFIG_FILE)
        print_config(CONFIG_FILE, config_manager.get_config_as_dict())
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    data_dir: str | None = typer.Option(
        None, "--data-dir", help="Where cached archives and metadata are kept."
    ),
    regions_source: str | None = typer.Option(
        None,
        "--regions-source",
        help="Path or URL of the regions.json catalogue.",
    ),
    base_url: str | None = typer.Option(
        None, "--base-url", help="Base URL that bare archive names resolve against."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration."
    ),
):
    """Create the configuration file."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings = {
        key: value
        for key, value in {
            "data_dir": data_dir,
            "regions_source": regions_source,
            "tiles_base_url": base_url,
        }.items()
        if value is not None
    }
    try:
        ConfigManager(CONFIG_FILE).save_new_config(settings)
    except TileVaultError as e:
        console.print(format_error_with_suggestions(e))
        raise typer.Exit(code=1) from e
    console.print(
        f"\n[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]"
    )
    console.print("List the available regions with: [cyan]tilevault regions[/cyan]")


@app.command()
def regions(
    current: str | None = typer.Option(
        None, "--current", "-c", help="Region code to highlight as the current one."
    ),
):
    """List known regions and their offline availability."""
    config = _load_config()

    async def _regions_async():
        ctx = await _open_context(config)
        try:
            pruned = await ctx.manager.sweep()
            if pruned:
                log.info(f"Pruned {len(pruned)} stale metadata rows.")
            availability = {
                r.source_url: await ctx.manager.availability(r.source_url)
                for r in ctx.regions
            }
        finally:
            await ctx.close()
        print_regions_table(ctx.regions, availability, current_code=current)

    _run(_regions_async())


@app.command(name="download")
def download_command(
    codes: list[str] = typer.Argument(  # noqa: B008
        ..., help="One or more region codes (see 'tilevault regions')."
    ),
    streaming: bool | None = typer.Option(
        None,
        "--streaming/--no-streaming",
        help="Stream bodies chunk by chunk (with progress) or read them whole.",
    ),
):
    """Download regions for offline use."""
    cli_options = {"streaming": streaming} if streaming is not None else None
    config = _load_config(cli_options)

    async def _download_async():
        ctx = await _open_context(config)
        try:
            wanted = [find_region(ctx.regions, code) for code in codes]
            console.print("[bold cyan]🗺️  Starting download session...[/bold cyan]")
            start_time = time.monotonic()

            async with ProgressManager(console=console) as progress:

                async def _one(region):
                    task_id = progress.add_region_task(
                        region.display_label, region.approximate_size_mib
                    )
                    try:
                        metadata = await ctx.manager.download(
                            region, progress.callback_for(task_id)
                        )
                    except (TileVaultError, OSError) as e:
                        progress.finish_task(task_id, success=False)
                        log.debug(f"Download of {region.id} failed: {e}")
                        return
                    progress.finish_task(
                        task_id, success=True, size=metadata.byte_size
                    )

                await asyncio.gather(*(_one(region) for region in wanted))
                stats = progress.get_statistics()
        finally:
            await ctx.close()

        print_transfer_summary(stats, time.monotonic() - start_time)
        if stats["failed"]:
            raise typer.Exit(code=1)

    _run(_download_async())


@app.command()
def evict(
    codes: list[str] = typer.Argument(  # noqa: B008
        ..., help="One or more region codes to remove from the offline cache."
    ),
):
    """Remove regions from the offline cache."""
    config = _load_config()

    async def _evict_async():
        ctx = await _open_context(config)
        try:
            for code in codes:
                region = find_region(ctx.regions, code)
                if await ctx.manager.evict(region.source_url):
                    console.print(f"[green]✓ Removed {region.display_label}.[/green]")
                else:
                    console.print(
                        f"[dim]{region.display_label} was not cached.[/dim]"
                    )
        finally:
            await ctx.close()

    _run(_evict_async())


async def _probe_online(url: str) -> bool:
    timeout = aiohttp.ClientTimeout(total=ONLINE_PROBE_TIMEOUT)
    try:
        async with (
            aiohttp.ClientSession(timeout=timeout) as session,
            session.head(url, allow_redirects=True) as resp,
        ):
            return resp.status < 500
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        log.debug(f"Online probe of '{url}' failed: {e}")
        return False


@app.command()
def status(
    pm: str | None = typer.Argument(
        None, help="Archive parameter, e.g. CVL.pmtiles or a full archive URL."
    ),
):
    """Show the network/offline badge for a region."""
    config = _load_config()

    async def _status_async():
        ctx = await _open_context(config)
        try:
            online = await _probe_online(config.tiles_base_url)
            region = region_from_pm(ctx.regions, pm)
            available = False
            if region is not None:
                available = await ctx.manager.is_available(region.source_url)
            elif pm:
                log.warning(
                    f"[yellow]No region matches '{region_code_from_pm(pm)}'."
                    "[/yellow]"
                )
        finally:
            await ctx.close()
        console.print(badge_text(online, region, available))

    _run(_status_async())


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host", help="Interface to listen on."),
    port: int | None = typer.Option(None, "--port", "-p", help="Port to listen on."),
):
    """Run the local caching proxy."""
    from tilevault.server import create_app

    cli_options = {
        key: value
        for key, value in {"listen_host": host, "listen_port": port}.items()
        if value is not None
    }
    config = _load_config(cli_options)

    async def _make_app() -> web.Application:
        ctx = await _open_context(config)
        log.info(
            f"Serving {len(ctx.regions)} regions on "
            f"[cyan]http://{config.listen_host}:{config.listen_port}[/cyan]"
        )
        return create_app(ctx)

    try:
        web.run_app(
            _make_app(),
            host=config.listen_host,
            port=config.listen_port,
            print=None,
        )
    except TileVaultError as e:
        console.print(format_error_with_suggestions(e))
        raise typer.Exit(code=1) from e
