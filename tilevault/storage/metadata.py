"""
Manages the metadata table: a single JSON document mapping resource URLs to the
records of completed region transfers, kept separately from blob bytes.
"""

import asyncio
import json
import logging
import os
from pathlib import Path

from pydantic import ValidationError

from tilevault.models.region import RegionMetadata
from tilevault.utils.path import create_dir

log = logging.getLogger(__name__)


class MetadataTable:
    """
    An async-safe URL -> RegionMetadata mapping persisted as one JSON file.

    Every mutation rewrites the whole document through a temporary file and
    ``os.replace``, so readers see either the old or the new table.
    """

    FILE_NAME = "regions_meta.json"

    def __init__(self, data_dir: Path):
        create_dir(data_dir)
        self.path = data_dir / self.FILE_NAME
        self._lock = asyncio.Lock()

    def _load_sync(self) -> dict[str, dict]:
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, OSError) as e:
            log.warning(f"Metadata table at '{self.path}' is unreadable, ignoring: {e}")
            return {}
        if not isinstance(data, dict):
            log.warning(f"Metadata table at '{self.path}' is malformed, ignoring.")
            return {}
        return data

    def _save_sync(self, data: dict[str, dict]) -> None:
        tmp_path = self.path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        os.replace(tmp_path, self.path)

    @staticmethod
    def _parse(url: str, record: dict) -> RegionMetadata | None:
        try:
            return RegionMetadata(url=url, **record)
        except (TypeError, ValidationError) as e:
            log.debug(f"Skipping invalid metadata record for '{url}': {e}")
            return None

    async def all(self) -> dict[str, RegionMetadata]:
        """Returns every valid record, keyed by URL."""
        async with self._lock:
            raw = await asyncio.to_thread(self._load_sync)
        records = {}
        for url, record in raw.items():
            if (parsed := self._parse(url, record)) is not None:
                records[url] = parsed
        return records

    async def get(self, url: str) -> RegionMetadata | None:
        async with self._lock:
            raw = await asyncio.to_thread(self._load_sync)
        record = raw.get(url)
        return self._parse(url, record) if isinstance(record, dict) else None

    async def upsert(self, metadata: RegionMetadata) -> None:
        """Inserts or replaces the record for ``metadata.url``."""
        async with self._lock:
            raw = await asyncio.to_thread(self._load_sync)
            raw[metadata.url] = metadata.to_record()
            await asyncio.to_thread(self._save_sync, raw)
        log.debug(f"Recorded metadata for '{metadata.url}'.")

    async def delete(self, url: str) -> bool:
        """Removes the record for ``url``. Returns False if none existed."""
        async with self._lock:
            raw = await asyncio.to_thread(self._load_sync)
            if url not in raw:
                return False
            del raw[url]
            await asyncio.to_thread(self._save_sync, raw)
        log.debug(f"Removed metadata for '{url}'.")
        return True
