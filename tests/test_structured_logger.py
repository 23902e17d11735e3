"""Tests for structured_logger module."""

import json

from tilevault.utils.structured_logger import create_structured_logger


class TestStructuredLogger:
    """Tests for the JSON event log."""

    def test_events_written_as_json_lines(self, tmp_path):
        """Transfer events are appended to a .jsonl file with session context."""
        base, transfer = create_structured_logger(tmp_path, enable_json=True)
        base.set_session_context(data_dir="/srv/tiles")
        transfer.transfer_started("https://t.example/CVL.pmtiles", "CVL", 412.0)
        transfer.transfer_completed("https://t.example/CVL.pmtiles", 2048, 2.0)
        base.close()

        (log_file,) = tmp_path.glob("tilevault_*.jsonl")
        entries = [json.loads(line) for line in log_file.read_text().splitlines()]
        assert [e["event"] for e in entries] == [
            "transfer_started",
            "transfer_completed",
        ]
        assert entries[0]["code"] == "CVL"
        assert entries[0]["data_dir"] == "/srv/tiles"
        assert entries[1]["size_bytes"] == 2048

    def test_disabled_json_writes_nothing(self, tmp_path):
        """Without JSON logging no file is created."""
        base, transfer = create_structured_logger(tmp_path, enable_json=False)
        transfer.resource_evicted("https://t.example/CVL.pmtiles")
        base.close()
        assert list(tmp_path.iterdir()) == []
