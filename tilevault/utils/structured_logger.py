"""
Structured logging system for better log analysis and debugging.
Provides JSON-formatted logs with context and metadata.
"""

import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any


class StructuredLogger:
    """
    Enhanced logger that outputs both human-readable and machine-parseable logs.

    Usage:
        logger = StructuredLogger("tilevault")
        logger.info("transfer_completed",
                    url="https://tiles.example/CVL.pmtiles",
                    size_mb=412.7,
                    duration_s=93.1)
    """

    def __init__(
        self,
        name: str,
        log_dir: Path | None = None,
        enable_json: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize structured logger.

        Args:
            name: Logger name
            log_dir: Directory for JSON log files (None = disabled)
            enable_json: Enable JSON file logging
            enable_console: Enable console output
        """
        self.name = name
        self.log_dir = log_dir
        self.enable_json = enable_json and log_dir is not None
        self.enable_console = enable_console

        self._logger = logging.getLogger(name)

        self._json_file = None
        if self.enable_json:
            log_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            json_log_path = log_dir / f"tilevault_{timestamp}.jsonl"
            self._json_file = open(json_log_path, "a", encoding="utf-8")  # noqa: SIM115

        # Session context (added to all log entries)
        self._session_context: dict[str, Any] = {
            "session_id": f"{int(time.time())}_{id(self)}",
            "start_time": datetime.now().isoformat(),
        }

    def set_session_context(self, **kwargs) -> None:
        """Set session-level context that appears in all logs."""
        self._session_context.update(kwargs)

    def _format_message(self, event: str, **context) -> str:
        """Format message for console output."""
        parts = [f"[{event}]"]
        for key, value in context.items():
            if key not in ("level", "timestamp"):
                parts.append(f"{key}={value}")
        return " ".join(parts)

    def _write_json(self, level: str, event: str, **context) -> None:
        """Write structured log entry to JSON file."""
        if not self._json_file or self._json_file.closed:
            return

        entry = {
            "timestamp": datetime.now().isoformat(),
            "level": level,
            "event": event,
            **self._session_context,
            **context,
        }

        try:
            self._json_file.write(json.dumps(entry, default=str) + "\n")
            self._json_file.flush()
        except (OSError, TypeError) as e:
            print(f"JSON logging failed: {e}", file=sys.stderr)

    def _log(self, level: int, event: str, **context) -> None:
        if self.enable_console:
            self._logger.log(level, self._format_message(event, **context))
        if self.enable_json:
            self._write_json(logging.getLevelName(level), event, **context)

    def debug(self, event: str, **context) -> None:
        """Log debug event."""
        self._log(logging.DEBUG, event, **context)

    def info(self, event: str, **context) -> None:
        """Log info event."""
        self._log(logging.INFO, event, **context)

    def warning(self, event: str, **context) -> None:
        """Log warning event."""
        self._log(logging.WARNING, event, **context)

    def error(self, event: str, **context) -> None:
        """Log error event."""
        self._log(logging.ERROR, event, **context)

    def close(self) -> None:
        """Close JSON log file."""
        if self._json_file and not self._json_file.closed:
            self._json_file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class TransferLogger:
    """Specialized logger for region transfer and store events."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def transfer_started(self, url: str, code: str, approximate_size_mib: float | None):
        self.logger.info(
            "transfer_started",
            url=url,
            code=code,
            approximate_size_mib=approximate_size_mib,
        )

    def transfer_coalesced(self, url: str):
        """Log a start request folded into an in-flight transfer."""
        self.logger.debug("transfer_coalesced", url=url)

    def transfer_completed(self, url: str, size_bytes: int, duration_s: float):
        speed = size_bytes / duration_s / (1024 * 1024) if duration_s > 0 else 0.0
        self.logger.info(
            "transfer_completed",
            url=url,
            size_bytes=size_bytes,
            size_mb=round(size_bytes / (1024 * 1024), 2),
            duration_s=round(duration_s, 2),
            avg_speed_mbps=round(speed, 2),
        )

    def transfer_failed(self, url: str, error: str, received: int):
        self.logger.error("transfer_failed", url=url, error=error, received=received)

    def transfer_cancelled(self, url: str, received: int):
        self.logger.warning("transfer_cancelled", url=url, received=received)

    def resource_evicted(self, url: str):
        self.logger.info("resource_evicted", url=url)

    def metadata_pruned(self, url: str):
        """Log removal of a metadata row whose blob vanished from the store."""
        self.logger.warning("metadata_pruned", url=url)


def create_structured_logger(
    log_dir: Path | None = None, enable_json: bool = False
) -> tuple[StructuredLogger, TransferLogger]:
    """
    Create the structured loggers. Events go to the JSON log only; the console
    already carries the human-readable messages.

    Returns:
        Tuple of (base_logger, transfer_logger)
    """
    base = StructuredLogger(
        "tilevault.events",
        log_dir=log_dir,
        enable_json=enable_json,
        enable_console=False,
    )
    return base, TransferLogger(base)
