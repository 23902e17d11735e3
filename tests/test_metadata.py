"""Tests for metadata module."""

import json
from datetime import datetime, timezone

import pytest

from conftest import CVL_URL
from tilevault.models.region import RegionMetadata
from tilevault.storage.metadata import MetadataTable


def _record(url=CVL_URL, size=42):
    return RegionMetadata(
        url=url,
        code="CVL",
        label="Centre-Val de Loire",
        byte_size=size,
        fetched_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )


class TestMetadataTable:
    """Tests for MetadataTable."""

    @pytest.mark.asyncio
    async def test_upsert_and_get(self, metadata):
        """A record can be read back after upsert."""
        await metadata.upsert(_record())
        got = await metadata.get(CVL_URL)
        assert got is not None
        assert got.byte_size == 42
        assert got.code == "CVL"

    @pytest.mark.asyncio
    async def test_upsert_replaces(self, metadata):
        """Upserting the same URL replaces the record."""
        await metadata.upsert(_record(size=1))
        await metadata.upsert(_record(size=2))
        assert (await metadata.get(CVL_URL)).byte_size == 2
        assert list(await metadata.all()) == [CVL_URL]

    @pytest.mark.asyncio
    async def test_on_disk_shape(self, metadata):
        """Records are persisted with camelCase keys, keyed by URL."""
        await metadata.upsert(_record())
        data = json.loads(metadata.path.read_text(encoding="utf-8"))
        assert set(data[CVL_URL]) == {"code", "label", "byteSize", "fetchedAt"}

    @pytest.mark.asyncio
    async def test_delete(self, metadata):
        """Delete reports whether a record existed."""
        await metadata.upsert(_record())
        assert await metadata.delete(CVL_URL) is True
        assert await metadata.get(CVL_URL) is None
        assert await metadata.delete(CVL_URL) is False

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path):
        """A new table over the same directory sees earlier writes."""
        await MetadataTable(tmp_path).upsert(_record())
        assert await MetadataTable(tmp_path).get(CVL_URL) is not None

    @pytest.mark.asyncio
    async def test_corrupt_file_reads_as_empty(self, metadata):
        """An unreadable table is treated as empty."""
        metadata.path.write_text("{not json", encoding="utf-8")
        assert await metadata.all() == {}

    @pytest.mark.asyncio
    async def test_invalid_record_is_skipped(self, metadata):
        """Records that fail validation are ignored, valid ones are kept."""
        await metadata.upsert(_record())
        data = json.loads(metadata.path.read_text(encoding="utf-8"))
        data["https://broken.example/x.pmtiles"] = {"code": "X", "byteSize": -1}
        metadata.path.write_text(json.dumps(data), encoding="utf-8")
        assert list(await metadata.all()) == [CVL_URL]
