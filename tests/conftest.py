"""Shared fixtures for tilevault tests."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from tilevault.models.region import RegionDescriptor
from tilevault.storage.blob_store import BlobStore
from tilevault.storage.metadata import MetadataTable

CVL_URL = "https://tiles.example.org/tiles/CVL.pmtiles"


@pytest.fixture
def store(tmp_path):
    return BlobStore(tmp_path / "blobs")


@pytest.fixture
def metadata(tmp_path):
    return MetadataTable(tmp_path)


@pytest.fixture
def descriptor():
    return RegionDescriptor(
        id="CVL",
        label="Centre-Val de Loire",
        source_url=CVL_URL,
        approximate_size_mib=12.5,
    )


def make_response(
    body: bytes = b"",
    status: int = 200,
    headers: dict | None = None,
    chunk_size: int = 4,
    gate: asyncio.Event | None = None,
    declared_length: int | None = None,
):
    """
    Builds a mock aiohttp response usable as ``async with session.get(...)``.

    The body is streamed in ``chunk_size`` pieces; when ``gate`` is given the
    stream pauses after the first chunk until the event is set.
    """
    response = MagicMock()
    response.status = status
    response.headers = {"Content-Type": "application/vnd.pmtiles"}
    length = len(body) if declared_length is None else declared_length
    if length >= 0:
        response.headers["Content-Length"] = str(length)
    response.headers.update(headers or {})

    async def iter_chunked(n):
        for i, offset in enumerate(range(0, len(body), chunk_size)):
            if gate is not None and i == 1:
                await gate.wait()
            yield body[offset : offset + chunk_size]

    response.content.iter_chunked = iter_chunked
    response.read = AsyncMock(return_value=body)
    response.__aenter__ = AsyncMock(return_value=response)
    response.__aexit__ = AsyncMock(return_value=None)
    return response


def make_session(*responses):
    """A mock ClientSession whose ``get`` hands out ``responses`` in order."""
    session = MagicMock()
    session.get = MagicMock(side_effect=list(responses))
    return session
