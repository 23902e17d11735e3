"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from tilevault.models.region import Availability, RegionDescriptor
from tilevault.utils.formatting import (
    format_approx_size,
    format_duration,
    format_size,
    format_timestamp,
)


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Run `tilevault init` to create a configuration file.",
            "• Check `regions_source` points at a readable regions.json.",
            "• Use `tilevault --show-config` to inspect current values.",
        ],
        "RegionNotFoundError": [
            "• Run `tilevault regions` to list the known region codes.",
        ],
        "NetworkError": [
            "• Check your internet connection.",
            "• The tile server may be temporarily unavailable.",
            "• Nothing was written; you can safely retry the download.",
        ],
        "StorageQuotaExceeded": [
            "• Free disk space or raise `store_quota_mb` in the config.",
            "• Evict regions you no longer need with `tilevault evict`.",
        ],
        "StorageError": [
            "• Check that the data directory is writable.",
            "• Nothing was changed; you can safely retry the download.",
        ],
        "TransferCancelledError": [
            "• The download was cancelled; nothing was written.",
        ],
        "ClientResponseError": [
            "• A network connection issue occurred.",
            "• Please try again in a few minutes.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    suggestion_text = Text("\n".join(suggestions))

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(suggestion_text)

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]):
    """Displays the current configuration."""
    console = Console()
    content = ""
    for key, value in sorted(config_data.items()):
        content += f"{key} = {value}\n"

    console.print(
        Panel(
            content.strip(),
            title=f"[bold cyan]Configuration[/bold cyan] [dim]{config_path}[/dim]",
            border_style="cyan",
            expand=False,
        )
    )


def print_regions_table(
    regions: list[RegionDescriptor],
    availability: dict[str, Availability],
    current_code: str | None = None,
):
    """Displays the region catalogue with offline availability per region."""
    console = Console()
    table = Table(title="Offline Regions", box=box.ROUNDED)
    table.add_column("Code", style="cyan")
    table.add_column("Region")
    table.add_column("Estimate", justify="right", style="dim")
    table.add_column("Status")
    table.add_column("Stored", justify="right")
    table.add_column("Fetched", style="dim")

    for region in regions:
        info = availability.get(region.source_url)
        if info and info.available:
            status = "[green]Téléchargé[/green]"
            stored = format_size(info.byte_size or 0)
            fetched = format_timestamp(
                info.metadata.fetched_at if info.metadata else None
            )
        else:
            status = "[dim]Non téléchargé[/dim]"
            stored = "-"
            fetched = "-"
        code = region.id
        if current_code and region.id == current_code:
            code = f"[bold]▶ {region.id}[/bold]"
        table.add_row(
            code,
            region.label,
            format_approx_size(region.approximate_size_mib),
            status,
            stored,
            fetched,
        )

    console.print(table)

    current = next((r for r in regions if r.id == current_code), None)
    if current is None:
        return
    info = availability.get(current.source_url)
    if info is None or not info.available:
        console.print(
            f"[yellow]⚠️ La région courante ({current.id}) n’est pas encore "
            "disponible hors-ligne.[/yellow]"
        )


def badge_text(
    online: bool, region: RegionDescriptor | None, available: bool = False
) -> str:
    """The network/offline badge shown for the current region."""
    network = "En ligne" if online else "Hors-ligne"
    if region is None:
        return f"{network} · Région ?"
    return f"{network} · {'✅' if available else '⛔'} Offline {region.id}"


def print_transfer_summary(stats: dict[str, Any], duration_s: float):
    """Displays a final summary of a download session."""
    console = Console()

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=16)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row(
        "✓ Downloaded:", f"[bold green]{stats['completed']}[/bold green]"
    )
    if stats["failed"] > 0:
        stats_table.add_row("✗ Failed:", f"[bold red]{stats['failed']}[/bold red]")
    stats_table.add_row(
        "Total Size:", f"[cyan]{format_size(stats['bytes'])}[/cyan]"
    )
    avg_speed = stats["bytes"] / duration_s if duration_s > 0 else 0
    stats_table.add_row(
        "Avg. Speed:", f"[magenta]{format_size(int(avg_speed))}/s[/magenta]"
    )
    stats_table.add_row(
        "Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]"
    )

    border_color = "green" if stats["failed"] == 0 else "yellow"
    console.print()
    console.print(
        Panel(
            stats_table,
            title="🗺️  [bold]Transfers Finished[/bold]",
            border_style=border_color,
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
