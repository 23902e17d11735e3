"""
Routes outgoing resource requests to the offline cache or to the network.

Classification is a URL-pattern match plus a local store lookup; it never
touches the network and never mutates anything.
"""

import asyncio
import logging
import re
from enum import Enum
from urllib.parse import urlsplit

import aiohttp
from aiohttp import web

from tilevault.models.config import DEFAULT_TILE_PATTERN
from tilevault.storage.blob_store import BlobStore
from tilevault.utils.path import forwardable_headers, is_absolute_url

from .connection import get_connection_pool
from .range_virtualizer import TileResponse, virtualize_range

log = logging.getLogger(__name__)

WRITE_CHUNK_SIZE = 65536


class Route(str, Enum):
    """Where a request is answered from."""

    CACHED_RANGE = "cached_range"
    CACHED_FULL = "cached_full"
    NETWORK = "network"
    PASSTHROUGH = "passthrough"


class FetchInterceptor:
    """Answers tile-archive requests from the blob store when it can."""

    def __init__(
        self,
        store: BlobStore,
        tile_pattern: str = DEFAULT_TILE_PATTERN,
        session: aiohttp.ClientSession | None = None,
        connect_timeout: float = 30.0,
    ):
        self.store = store
        self._pattern = re.compile(tile_pattern)
        self._session = session
        self._connect_timeout = connect_timeout

    def is_tile_request(self, url: str) -> bool:
        return bool(self._pattern.search(urlsplit(url).path))

    def classify(self, url: str, range_header: str | None = None) -> Route:
        """Decides, in priority order, how ``url`` will be answered."""
        if not self.is_tile_request(url):
            return Route.PASSTHROUGH
        if self.store.contains(url):
            return Route.CACHED_RANGE if range_header else Route.CACHED_FULL
        return Route.NETWORK

    async def _http(self) -> aiohttp.ClientSession:
        if self._session is not None:
            return self._session
        return await get_connection_pool(self._connect_timeout)

    async def handle(self, request: web.Request) -> web.StreamResponse:
        """aiohttp handler for ``GET|HEAD /fetch?url=<absolute url>``."""
        url = request.query.get("url", "")
        if not is_absolute_url(url):
            raise web.HTTPBadRequest(
                text="Query parameter 'url' must be an absolute URL."
            )

        range_header = request.headers.get("Range")
        route = self.classify(url, range_header)
        log.debug(f"{request.method} {url} -> {route.value}")

        if route in (Route.CACHED_RANGE, Route.CACHED_FULL):
            response = await self._serve_cached(request, url, range_header)
            if response is not None:
                return response
            log.debug(f"'{url}' was evicted mid-request, forwarding to network.")
        return await self._forward(request, url)

    async def _serve_cached(
        self, request: web.Request, url: str, range_header: str | None
    ) -> web.StreamResponse | None:
        entry = self.store.open(url)
        if entry is None:
            return None
        with entry:
            result = virtualize_range(entry.body, entry.headers, range_header)
            try:
                return await self._write_result(request, result)
            finally:
                result.release()

    async def _write_result(
        self, request: web.Request, result: TileResponse
    ) -> web.StreamResponse:
        response = web.StreamResponse(
            status=result.status, reason=result.reason, headers=result.headers
        )
        await response.prepare(request)
        if request.method != "HEAD":
            body = result.body
            for offset in range(0, len(body), WRITE_CHUNK_SIZE):
                await response.write(body[offset : offset + WRITE_CHUNK_SIZE])
        await response.write_eof()
        return response

    async def _forward(self, request: web.Request, url: str) -> web.StreamResponse:
        """Relays the request to the origin unmodified, streaming the body back."""
        http = await self._http()
        response: web.StreamResponse | None = None
        try:
            async with http.request(
                request.method,
                url,
                headers=forwardable_headers(request.headers),
                allow_redirects=True,
            ) as upstream:
                response = web.StreamResponse(
                    status=upstream.status,
                    reason=upstream.reason,
                    headers=forwardable_headers(upstream.headers),
                )
                await response.prepare(request)
                if request.method != "HEAD":
                    async for chunk in upstream.content.iter_chunked(WRITE_CHUNK_SIZE):
                        await response.write(chunk)
                await response.write_eof()
                return response
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.warning(f"Upstream fetch of '{url}' failed: {e}")
            if response is not None and response.prepared:
                raise
            raise web.HTTPBadGateway(text=f"Upstream fetch failed: {e}") from e
