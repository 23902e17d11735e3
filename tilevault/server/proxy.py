"""
The local HTTP proxy: map clients fetch archives through ``/fetch`` and manage
offline regions through ``/regions``.
"""

import logging

from aiohttp import web

from tilevault.core.connection import close_connection_pool
from tilevault.core.context import OfflineContext
from tilevault.core.interceptor import FetchInterceptor
from tilevault.core.worker import CacheResource, EvictResource, OfflineWorker
from tilevault.exceptions import RegionNotFoundError
from tilevault.storage.regions import find_region

log = logging.getLogger(__name__)

CONTEXT_KEY = web.AppKey("context", OfflineContext)
WORKER_KEY = web.AppKey("worker", OfflineWorker)


def _region_or_404(request: web.Request):
    ctx = request.app[CONTEXT_KEY]
    try:
        return find_region(ctx.regions, request.match_info["code"])
    except RegionNotFoundError as e:
        raise web.HTTPNotFound(text=str(e)) from e


async def healthz(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


async def list_regions(request: web.Request) -> web.Response:
    """Lists the catalogue with per-region offline availability."""
    ctx = request.app[CONTEXT_KEY]
    payload = []
    for region in ctx.regions:
        availability = await ctx.manager.availability(region.source_url)
        transfer = ctx.manager.get_transfer(region.source_url)
        payload.append(
            {
                "code": region.id,
                "label": region.label,
                "url": region.source_url,
                "approximateSizeMiB": region.approximate_size_mib,
                "available": availability.available,
                "byteSize": availability.byte_size,
                "downloading": transfer is not None,
                "received": transfer.received if transfer else None,
                "total": transfer.total if transfer else None,
            }
        )
    return web.json_response({"regions": payload})


async def region_status(request: web.Request) -> web.Response:
    region = _region_or_404(request)
    worker = request.app[WORKER_KEY]
    available = await worker.query(region.source_url)
    return web.json_response({"code": region.id, "available": available})


async def cache_region(request: web.Request) -> web.Response:
    region = _region_or_404(request)
    request.app[WORKER_KEY].send(CacheResource(region))
    return web.json_response({"code": region.id, "status": "queued"}, status=202)


async def evict_region(request: web.Request) -> web.Response:
    region = _region_or_404(request)
    request.app[WORKER_KEY].send(EvictResource(region.source_url))
    return web.json_response({"code": region.id, "status": "queued"}, status=202)


async def _on_startup(app: web.Application) -> None:
    ctx = app[CONTEXT_KEY]
    pruned = await ctx.manager.sweep()
    if pruned:
        log.info(f"Pruned {len(pruned)} stale metadata rows on startup.")
    app[WORKER_KEY].start()


async def _on_cleanup(app: web.Application) -> None:
    await app[WORKER_KEY].stop()
    await app[CONTEXT_KEY].close()
    await close_connection_pool()


def create_app(
    ctx: OfflineContext, worker: OfflineWorker | None = None
) -> web.Application:
    """Builds the proxy application around an initialised context."""
    app = web.Application()
    app[CONTEXT_KEY] = ctx
    app[WORKER_KEY] = worker or OfflineWorker(ctx.manager)

    interceptor: FetchInterceptor = ctx.interceptor
    app.router.add_route("GET", "/fetch", interceptor.handle)
    app.router.add_route("HEAD", "/fetch", interceptor.handle)
    app.router.add_get("/healthz", healthz, allow_head=False)
    app.router.add_get("/regions", list_regions)
    app.router.add_get("/regions/{code}", region_status)
    app.router.add_post("/regions/{code}", cache_region)
    app.router.add_delete("/regions/{code}", evict_region)

    app.on_startup.append(_on_startup)
    app.on_cleanup.append(_on_cleanup)
    return app
