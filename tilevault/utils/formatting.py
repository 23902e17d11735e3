"""
Helper functions for formatting data into human-readable strings.
"""

from datetime import datetime


def format_size(bytes_size: int) -> str:
    """Formats bytes into a human-readable size string (e.g., '145.3 MB')."""
    if bytes_size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    while bytes_size >= 1024 and i < len(units) - 1:
        bytes_size /= 1024
        i += 1
    return f"{bytes_size:.1f} {units[i]}"


def format_duration(seconds: float) -> str:
    """
    Formats a duration in seconds into a human-readable string (e.g., '2h 34m 12s').
    """
    s = int(seconds)
    hours, remainder = divmod(s, 3600)
    minutes, secs = divmod(remainder, 60)
    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def format_approx_size(size_mib: float | None) -> str:
    """Formats a catalogue size estimate, which may be missing."""
    if size_mib is None:
        return "≈ ? MiB"
    return f"≈ {size_mib:g} MiB"


def format_progress(received: int, total: int) -> str:
    """
    Describes transfer progress. An unknown total (0) yields a byte counter
    rather than a percentage.
    """
    if total <= 0:
        return format_size(received)
    percent = min(100.0, received * 100 / total)
    return f"{percent:.0f}% ({format_size(received)} / {format_size(total)})"


def format_timestamp(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.astimezone().strftime("%Y-%m-%d %H:%M")
