"""
Downloads whole regional archives into the blob store with progress reporting,
and keeps the metadata table consistent with the store.

A transfer either commits completely (payload first, then its metadata record)
or leaves both stores exactly as they were.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from contextlib import suppress
from datetime import datetime, timezone

import aiohttp

from tilevault.exceptions import (
    NetworkError,
    TileVaultError,
    TransferCancelledError,
)
from tilevault.models.region import Availability, RegionDescriptor, RegionMetadata
from tilevault.storage.blob_store import BlobStore, StagedBlob, storage_error
from tilevault.storage.metadata import MetadataTable
from tilevault.utils.formatting import format_progress
from tilevault.utils.structured_logger import TransferLogger

from .connection import get_connection_pool
from .notifier import ChangeKind, StateChange, StateNotifier

log = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, bool], None]

# Bypass every cache between us and the origin, and ask for the raw bytes.
NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Accept-Encoding": "identity",
}


def _content_length(response) -> int:
    """The declared body length, or 0 when unknown."""
    raw = response.headers.get("Content-Length")
    try:
        return max(0, int(raw)) if raw is not None else 0
    except (TypeError, ValueError):
        return 0


class TransferSession:
    """
    The handle of one in-flight transfer.

    Awaiting the handle yields the committed RegionMetadata, or raises the
    transfer's error (TransferCancelledError after ``cancel()``).
    """

    def __init__(self, descriptor: RegionDescriptor):
        self.descriptor = descriptor
        self.received = 0
        self.total = 0
        self.started_at = time.monotonic()
        self._listeners: list[ProgressCallback] = []
        self._task: asyncio.Task | None = None

    @property
    def url(self) -> str:
        return self.descriptor.source_url

    def add_listener(self, callback: ProgressCallback) -> None:
        self._listeners.append(callback)

    def emit(self, received: int, total: int, is_final: bool) -> None:
        for callback in list(self._listeners):
            try:
                callback(received, total, is_final)
            except Exception as e:
                log.warning(f"Progress callback failed for '{self.url}': {e}")

    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def cancel(self) -> None:
        """
        Stops reading and releases the connection. A cancel arriving once the
        body is complete lets the commit finish.
        """
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> RegionMetadata:
        # Shielded so one impatient awaiter cannot cancel a shared transfer.
        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if self._task.cancelled():
                raise TransferCancelledError(
                    f"Transfer of '{self.url}' was cancelled."
                ) from None
            raise

    def __await__(self):
        return self.wait().__await__()


class RegionTransferManager:
    """
    Streams region archives into the blob store, one transfer per URL at most.
    """

    def __init__(
        self,
        store: BlobStore,
        metadata: MetadataTable,
        session: aiohttp.ClientSession | None = None,
        chunk_size: int = 262144,
        connect_timeout: float = 30.0,
        streaming: bool = True,
        notifier: StateNotifier | None = None,
        transfer_logger: TransferLogger | None = None,
    ):
        """
        Args:
            store: Destination of committed payloads.
            metadata: Table of per-resource transfer records.
            session: HTTP session to use; the shared pool when omitted.
            chunk_size: Bytes requested per streamed read.
            connect_timeout: Bound on connection setup only.
            streaming: When False, bodies are read in one piece.
            notifier: Receives a StateChange after every mutation.
            transfer_logger: Optional structured event log.
        """
        self.store = store
        self.metadata = metadata
        self.chunk_size = chunk_size
        self.connect_timeout = connect_timeout
        self.streaming = streaming
        self.notifier = notifier or StateNotifier()
        self.events = transfer_logger
        self._session = session
        self._sessions: dict[str, TransferSession] = {}

    async def _http(self) -> aiohttp.ClientSession:
        if self._session is not None:
            return self._session
        return await get_connection_pool(self.connect_timeout)

    def active_transfers(self) -> list[TransferSession]:
        return [ts for ts in self._sessions.values() if not ts.done()]

    def get_transfer(self, url: str) -> TransferSession | None:
        ts = self._sessions.get(url)
        return ts if ts is not None and not ts.done() else None

    def start_transfer(
        self,
        descriptor: RegionDescriptor,
        on_progress: ProgressCallback | None = None,
    ) -> TransferSession:
        """
        Starts downloading ``descriptor.source_url``.

        A second call for a URL whose transfer is still running returns the
        existing handle, with ``on_progress`` attached to it.
        """
        url = descriptor.source_url
        if (existing := self.get_transfer(url)) is not None:
            if on_progress:
                existing.add_listener(on_progress)
            log.debug(f"Transfer of '{url}' already running, joining it.")
            if self.events:
                self.events.transfer_coalesced(url)
            return existing

        ts = TransferSession(descriptor)
        if on_progress:
            ts.add_listener(on_progress)
        self._sessions[url] = ts
        ts._task = asyncio.create_task(
            self._run(ts), name=f"transfer:{descriptor.id}"
        )
        ts._task.add_done_callback(lambda _t, s=ts: self._forget(s))
        log.info(f"Downloading region [cyan]{descriptor.display_label}[/cyan]...")
        if self.events:
            self.events.transfer_started(
                url, descriptor.id, descriptor.approximate_size_mib
            )
        return ts

    def _forget(self, ts: TransferSession) -> None:
        if self._sessions.get(ts.url) is ts:
            del self._sessions[ts.url]

    async def download(
        self,
        descriptor: RegionDescriptor,
        on_progress: ProgressCallback | None = None,
    ) -> RegionMetadata:
        """Starts (or joins) a transfer and waits for it to commit."""
        return await self.start_transfer(descriptor, on_progress)

    async def _read_body(
        self, response, staged: StagedBlob, ts: TransferSession
    ) -> None:
        content = getattr(response, "content", None)
        streamable = content is not None and hasattr(content, "iter_chunked")
        if not self.streaming or not streamable:
            log.debug(f"Streaming unavailable for '{ts.url}', reading whole body.")
            body = await response.read()
            await staged.write(body)
            ts.received = staged.written
            return

        async for chunk in content.iter_chunked(self.chunk_size):
            await staged.write(chunk)
            ts.received = staged.written
            ts.emit(ts.received, ts.total, False)

    async def _fetch_into(self, ts: TransferSession, staged_holder: list) -> dict:
        """Runs the request and stages the body. Returns the response headers."""
        url = ts.url
        http = await self._http()
        try:
            async with http.get(
                url, headers=NO_CACHE_HEADERS, allow_redirects=True
            ) as response:
                if not 200 <= response.status < 300:
                    raise NetworkError(
                        url,
                        f"Server answered HTTP {response.status} for '{url}'.",
                        status=response.status,
                    )
                ts.total = _content_length(response)
                staged = await self.store.stage(url)
                staged_holder.append(staged)
                await self._read_body(response, staged, ts)
                headers = dict(response.headers)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(url, f"Transfer of '{url}' failed: {e}") from e

        if ts.total and staged.written != ts.total:
            raise NetworkError(
                url,
                f"Transfer of '{url}' ended after {staged.written} of "
                f"{ts.total} bytes.",
            )
        return headers

    async def _run(self, ts: TransferSession) -> RegionMetadata:
        url = ts.url
        staged_holder: list[StagedBlob] = []
        try:
            headers = await self._fetch_into(ts, staged_holder)
            staged = staged_holder[-1]
            # Past this point the body is complete; a late cancel must not split
            # the store write from its metadata write.
            commit = asyncio.ensure_future(self._commit(ts, staged, headers))
            try:
                metadata = await asyncio.shield(commit)
            except asyncio.CancelledError:
                log.debug(f"Cancel of '{url}' arrived during commit, finishing it.")
                metadata = await commit
        except asyncio.CancelledError:
            log.warning(
                f"Transfer of '{url}' cancelled at "
                f"{format_progress(ts.received, ts.total)}."
            )
            if self.events:
                self.events.transfer_cancelled(url, ts.received)
            raise
        except TileVaultError as e:
            log.error(f"[red]✗ {e}[/red]")
            if self.events:
                self.events.transfer_failed(url, str(e), ts.received)
            raise
        finally:
            for leftover in staged_holder:
                await self.store.discard(leftover)

        ts.emit(metadata.byte_size, metadata.byte_size, True)
        duration = time.monotonic() - ts.started_at
        log.info(
            f"[green]✓ Region {ts.descriptor.display_label} available offline "
            f"({metadata.byte_size} bytes).[/green]"
        )
        if self.events:
            self.events.transfer_completed(url, metadata.byte_size, duration)
        await self.notifier.notify(StateChange(ChangeKind.COMPLETED, url))
        return metadata

    async def _commit(
        self, ts: TransferSession, staged: StagedBlob, headers: dict
    ) -> RegionMetadata:
        """
        Publishes the payload, then upserts its metadata row.

        A displaced earlier copy is only dropped once the row is written. If
        the row cannot be written, the earlier copy is put back.
        """
        previous = await self.store.commit(staged, headers)
        metadata = RegionMetadata(
            url=ts.url,
            code=ts.descriptor.id,
            label=ts.descriptor.label,
            byte_size=staged.written,
            fetched_at=datetime.now(timezone.utc),
        )
        try:
            await self.metadata.upsert(metadata)
        except OSError as e:
            if previous is not None:
                await self.store.restore(previous)
            else:
                await asyncio.to_thread(self.store.delete, ts.url)
            raise storage_error(e, ts.url) from e
        if previous is not None:
            await self.store.release(previous)
        return metadata

    async def evict(self, url: str) -> bool:
        """
        Removes a cached resource and its metadata.

        A running transfer of ``url`` is cancelled first. Returns False, without
        error, when nothing was cached.
        """
        if (ts := self.get_transfer(url)) is not None:
            ts.cancel()
            with suppress(TileVaultError):
                await ts.wait()

        removed_meta = await self.metadata.delete(url)
        removed_blob = await asyncio.to_thread(self.store.delete, url)
        if not (removed_meta or removed_blob):
            log.debug(f"Nothing cached for '{url}', eviction is a no-op.")
            return False

        log.info(f"Removed offline copy of '{url}'.")
        if self.events:
            self.events.resource_evicted(url)
        await self.notifier.notify(StateChange(ChangeKind.EVICTED, url))
        return True

    async def _prune(self, url: str) -> None:
        if await self.metadata.delete(url):
            log.warning(
                f"[yellow]Cached payload for '{url}' vanished, "
                "pruned its metadata.[/yellow]"
            )
            if self.events:
                self.events.metadata_pruned(url)
            await self.notifier.notify(StateChange(ChangeKind.PRUNED, url))

    async def availability(self, url: str) -> Availability:
        """
        Reports whether ``url`` is available offline, re-validating the
        metadata row against the blob store and pruning it if stale.
        """
        metadata = await self.metadata.get(url)
        has_blob = await asyncio.to_thread(self.store.contains, url)
        if metadata is None:
            return Availability(url=url, available=False)
        if not has_blob:
            await self._prune(url)
            return Availability(url=url, available=False)
        return Availability(
            url=url, available=True, byte_size=metadata.byte_size, metadata=metadata
        )

    async def is_available(self, url: str) -> bool:
        return (await self.availability(url)).available

    async def sweep(self) -> list[str]:
        """
        Prunes every metadata row whose blob is gone, and deletes blobs left
        without metadata by an interrupted commit. Returns the pruned URLs.
        """
        pruned = []
        records = await self.metadata.all()
        for url in records:
            if not await asyncio.to_thread(self.store.contains, url):
                await self._prune(url)
                pruned.append(url)

        for url in await asyncio.to_thread(self.store.urls):
            if url in records or self.get_transfer(url) is not None:
                continue
            if await asyncio.to_thread(self.store.delete, url):
                log.debug(f"Deleted orphan blob for '{url}'.")
        return pruned

    async def close(self) -> None:
        """Cancels all running transfers and waits for them to unwind."""
        running = self.active_transfers()
        for ts in running:
            ts.cancel()
        for ts in running:
            with suppress(TileVaultError):
                await ts.wait()
