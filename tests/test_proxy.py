"""Tests for the local proxy application."""

import asyncio

import pytest
import pytest_asyncio
from aiohttp import web

from tilevault.core.context import OfflineContext
from tilevault.models.config import TileVaultConfig
from tilevault.models.region import RegionMetadata
from tilevault.server import create_app
from tilevault.storage.regions import parse_catalogue

ARCHIVE = b"PMTiles\x03" + bytes(range(200))


@pytest_asyncio.fixture
async def origin(aiohttp_server):
    async def archive(request: web.Request) -> web.Response:
        return web.Response(
            body=ARCHIVE, headers={"Content-Type": "application/vnd.pmtiles"}
        )

    app = web.Application()
    app.router.add_get("/tiles/CVL.pmtiles", archive)
    return await aiohttp_server(app)


@pytest_asyncio.fixture
async def context(tmp_path, origin):
    config = TileVaultConfig(
        data_dir=str(tmp_path / "data"),
        config_path=str(tmp_path),
        tiles_base_url=str(origin.make_url("/tiles/")),
    )
    ctx = OfflineContext.from_config(config)
    ctx.regions = parse_catalogue(
        {
            "regions": [
                {
                    "id": "CVL",
                    "label": "Centre-Val de Loire",
                    "sourceUrl": "CVL.pmtiles",
                },
                {"id": "BRE", "label": "Bretagne", "sourceUrl": "BRE.pmtiles"},
            ]
        },
        config.tiles_base_url,
    )
    return ctx


@pytest_asyncio.fixture
async def client(aiohttp_client, context):
    return await aiohttp_client(create_app(context))


async def _poll_available(client, code: str, attempts: int = 100) -> bool:
    for _ in range(attempts):
        resp = await client.get(f"/regions/{code}")
        if (await resp.json())["available"]:
            return True
        await asyncio.sleep(0.02)
    return False


class TestRegionEndpoints:
    """Tests for the region management endpoints."""

    @pytest.mark.asyncio
    async def test_healthz(self, client):
        """The health endpoint answers ok."""
        resp = await client.get("/healthz")
        assert resp.status == 200
        assert await resp.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_list_regions(self, client, origin):
        """The listing reports every region as not yet available."""
        resp = await client.get("/regions")
        body = await resp.json()
        codes = [r["code"] for r in body["regions"]]
        assert codes == ["CVL", "BRE"]
        cvl = body["regions"][0]
        assert cvl["url"] == str(origin.make_url("/tiles/CVL.pmtiles"))
        assert cvl["available"] is False
        assert cvl["downloading"] is False

    @pytest.mark.asyncio
    async def test_unknown_region(self, client):
        """Unknown codes are 404."""
        resp = await client.get("/regions/XYZ")
        assert resp.status == 404
        resp = await client.post("/regions/XYZ")
        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_cache_serve_and_evict(self, client, origin):
        """A cached region is served from disk and can be evicted again."""
        resp = await client.post("/regions/CVL")
        assert resp.status == 202
        assert await _poll_available(client, "CVL")

        url = str(origin.make_url("/tiles/CVL.pmtiles"))
        resp = await client.get(
            "/fetch", params={"url": url}, headers={"Range": "bytes=0-6"}
        )
        assert resp.status == 206
        assert await resp.read() == b"PMTiles"

        resp = await client.delete("/regions/cvl")
        assert resp.status == 202
        for _ in range(100):
            resp = await client.get("/regions/CVL")
            if not (await resp.json())["available"]:
                break
            await asyncio.sleep(0.02)
        else:
            pytest.fail("region still available after eviction")


class TestStartupSweep:
    """The proxy prunes stale metadata before serving."""

    @pytest.mark.asyncio
    async def test_stale_rows_pruned_on_startup(self, aiohttp_client, context):
        """Metadata rows without blobs are gone once the app has started."""
        url = context.regions[0].source_url
        await context.metadata.upsert(
            RegionMetadata(
                url=url, code="CVL", byte_size=3, fetched_at="2024-01-01T00:00:00Z"
            )
        )
        await aiohttp_client(create_app(context))
        assert await context.metadata.get(url) is None
