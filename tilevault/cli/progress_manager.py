"""
Manages a Rich Live display for concurrent region transfers.
Shows one bar per transfer plus a small session header.
"""

import asyncio
from datetime import datetime

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.text import Text

from tilevault.utils.formatting import format_approx_size, format_size


class ProgressManager:
    """
    Renders transfer progress. Transfers with an unknown size show a byte
    counter and a pulsing bar instead of a percentage.
    """

    def __init__(self, console: Console):
        self.console = console
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}", justify="left"),
            BarColumn(bar_width=24),
            TextColumn("{task.fields[percent]}"),
            "•",
            DownloadColumn(),
            "•",
            TransferSpeedColumn(),
            "•",
            TimeRemainingColumn(),
            console=console,
            transient=False,
        )
        self._live: Live | None = None
        self._stats = {
            "started": 0,
            "completed": 0,
            "failed": 0,
            "bytes": 0,
            "start_time": None,
        }

    def _header(self) -> Panel:
        text = Text()
        text.append("Offline regions  ", style="bold cyan")
        text.append(f"✓ {self._stats['completed']}  ", style="green")
        text.append(f"✗ {self._stats['failed']}  ", style="red")
        text.append(format_size(self._stats["bytes"]), style="dim")
        return Panel(text, border_style="cyan", expand=False)

    def _renderable(self) -> Group:
        return Group(self._header(), self.progress)

    def _refresh(self) -> None:
        if self._live:
            self._live.update(self._renderable())

    def add_region_task(
        self, label: str, approximate_size_mib: float | None
    ) -> TaskID:
        if len(label) > 40:
            label = label[:38] + "…"
        description = f"{label} [dim]{format_approx_size(approximate_size_mib)}[/dim]"
        task_id = self.progress.add_task(description, total=None, percent="")
        self._stats["started"] += 1
        if self._stats["start_time"] is None:
            self._stats["start_time"] = datetime.now()
        self._refresh()
        return task_id

    def update(self, task_id: TaskID, received: int, total: int) -> None:
        """Applies a progress report; ``total`` 0 means the size is unknown."""
        if total > 0:
            percent = f"{min(100, received * 100 // total):>3d}%"
            self.progress.update(
                task_id, completed=received, total=total, percent=percent
            )
        else:
            self.progress.update(task_id, completed=received)

    def callback_for(self, task_id: TaskID):
        """Builds a transfer progress callback bound to one task."""

        def on_progress(received: int, total: int, is_final: bool) -> None:
            self.update(task_id, received, total)
            if is_final:
                self.progress.update(task_id, total=received, completed=received)

        return on_progress

    def finish_task(self, task_id: TaskID, success: bool, size: int = 0) -> None:
        if success:
            self._stats["completed"] += 1
            self._stats["bytes"] += size
        else:
            self._stats["failed"] += 1
            self.progress.update(
                task_id, description="[red]✗ failed[/red]", percent=""
            )
        self.progress.stop_task(task_id)
        self._refresh()

    def get_statistics(self) -> dict:
        return self._stats.copy()

    async def __aenter__(self):
        self._live = Live(
            self._renderable(),
            console=self.console,
            refresh_per_second=8,
            vertical_overflow="visible",
        )
        self._live.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._live:
            await asyncio.sleep(0.2)
            self._live.stop()
            self._live = None
