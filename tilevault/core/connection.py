"""
The shared aiohttp connection pool used for region transfers and for
forwarding intercepted requests to the network.
"""

import asyncio
import logging

import aiohttp

log = logging.getLogger(__name__)

_connection_pool: aiohttp.ClientSession | None = None
_pool_lock = asyncio.Lock()


async def get_connection_pool(connect_timeout: float = 30.0) -> aiohttp.ClientSession:
    """
    Gets or creates the shared aiohttp ClientSession.

    Bodies are passed through undecoded so cached bytes match what the origin
    serves, and only connection setup is time-bounded: archive transfers over
    slow links may legitimately take many minutes.
    """
    global _connection_pool
    async with _pool_lock:
        if _connection_pool and not _connection_pool.closed:
            return _connection_pool

        connector = aiohttp.TCPConnector(
            limit=32,
            limit_per_host=8,
            ttl_dns_cache=600,
            keepalive_timeout=30,
            enable_cleanup_closed=True,
        )
        timeout = aiohttp.ClientTimeout(
            total=None, sock_connect=connect_timeout, sock_read=None
        )
        _connection_pool = aiohttp.ClientSession(
            connector=connector,
            timeout=timeout,
            auto_decompress=False,
        )
        log.debug(f"Created connection pool with connect timeout {connect_timeout}s")

    return _connection_pool


async def close_connection_pool() -> None:
    """Closes the shared global connection pool."""
    global _connection_pool
    async with _pool_lock:
        if _connection_pool and not _connection_pool.closed:
            await _connection_pool.close()
            _connection_pool = None
            log.debug("Shared connection pool closed.")
