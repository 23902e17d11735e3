"""
A durable, file-based store mapping absolute resource URLs to full payloads and
their original response headers.

Each entry is a ``<key>.bin`` payload plus a ``<key>.json`` sidecar. The sidecar
is written last and removed first, so an entry is only ever observable once its
payload is complete.
"""

import asyncio
import errno
import json
import logging
import mmap
import os
import time
import uuid
from pathlib import Path
from typing import Any, Mapping

import aiofiles

from tilevault.exceptions import StorageError, StorageQuotaExceeded
from tilevault.utils.path import blob_key, create_dir, storable_headers

log = logging.getLogger(__name__)

_QUOTA_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}

# Staging files untouched for this long belong to no live transfer.
STAGING_STALE_AFTER = 3600.0


def storage_error(e: OSError, url: str) -> StorageError:
    """Maps an OSError raised while caching ``url`` into the storage errors."""
    if e.errno in _QUOTA_ERRNOS:
        return StorageQuotaExceeded(f"Out of storage while caching '{url}': {e}")
    return StorageError(f"Storage failure while caching '{url}': {e}")


class CacheEntry:
    """
    A read-only view of one cached resource.

    ``body`` is a memoryview over a memory-mapped payload, so slicing it never
    copies bytes. Use as a context manager, and release any derived slices
    before the entry is closed.
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str],
        size: int,
        view: memoryview,
        mapped: mmap.mmap | None = None,
    ):
        self.url = url
        self.headers = headers
        self.size = size
        self._view = view
        self._mapped = mapped

    @property
    def body(self) -> memoryview:
        return self._view

    @property
    def content_type(self) -> str | None:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value
        return None

    def close(self) -> None:
        self._view.release()
        if self._mapped is not None and not self._mapped.closed:
            try:
                self._mapped.close()
            except BufferError:
                # A slice is still alive; the mapping is released with it.
                log.debug(f"Deferred unmapping of '{self.url}', views still exported.")

    def __enter__(self) -> "CacheEntry":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class StagedBlob:
    """
    An in-progress payload written incrementally into the staging area.

    Nothing written here is visible to readers until ``BlobStore.commit``.
    """

    def __init__(self, url: str, path: Path, quota_remaining: int | None):
        self.url = url
        self.path = path
        self.written = 0
        self._quota_remaining = quota_remaining
        self._file = None

    async def open(self) -> None:
        try:
            self._file = await aiofiles.open(self.path, "wb")
        except OSError as e:
            raise storage_error(e, self.url) from e

    async def write(self, chunk: bytes) -> None:
        if self._file is None:
            await self.open()
        if (
            self._quota_remaining is not None
            and self.written + len(chunk) > self._quota_remaining
        ):
            raise StorageQuotaExceeded(
                f"Caching '{self.url}' would exceed the configured store quota."
            )
        try:
            await self._file.write(chunk)
        except OSError as e:
            raise storage_error(e, self.url) from e
        self.written += len(chunk)

    async def close(self) -> None:
        if self._file is not None:
            try:
                await self._file.close()
            finally:
                self._file = None


class PreviousEntry:
    """
    A committed entry displaced by a newer commit of the same URL.

    It is parked in the staging area until the caller either releases it (the
    replacement is final) or restores it (the replacement must be undone).
    """

    def __init__(self, url: str, bin_path: Path, meta_path: Path):
        self.url = url
        self.bin_path = bin_path
        self.meta_path = meta_path


class BlobStore:
    """Manages the on-disk blob cache: staging, atomic commit, reads, eviction."""

    def __init__(self, root: Path, quota_bytes: int = 0):
        """
        Args:
            root: Directory holding the store.
            quota_bytes: Upper bound on the summed payload size, 0 for unlimited.
        """
        self.root = root
        self.staging_dir = root / "staging"
        self.quota_bytes = quota_bytes
        create_dir(self.root)
        create_dir(self.staging_dir)

    def _paths(self, url: str) -> tuple[Path, Path]:
        key = blob_key(url)
        return self.root / f"{key}.bin", self.root / f"{key}.json"

    def contains(self, url: str) -> bool:
        """True only when both the payload and its sidecar are present."""
        bin_path, meta_path = self._paths(url)
        return meta_path.is_file() and bin_path.is_file()

    def read_sidecar(self, url: str) -> dict[str, Any] | None:
        _, meta_path = self._paths(url)
        try:
            with open(meta_path, encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, OSError) as e:
            log.warning(f"Unreadable blob sidecar for '{url}': {e}")
            return None

    def open(self, url: str) -> CacheEntry | None:
        """Opens a cached resource for zero-copy reading. Returns None on a miss."""
        sidecar = self.read_sidecar(url)
        if sidecar is None:
            return None

        bin_path, _ = self._paths(url)
        try:
            with open(bin_path, "rb") as f:
                size = os.fstat(f.fileno()).st_size
                if size == 0:
                    headers = sidecar.get("headers", {})
                    return CacheEntry(url, headers, 0, memoryview(b""))
                mapped = mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ)
        except FileNotFoundError:
            return None
        except OSError as e:
            log.warning(f"Failed to open cached payload for '{url}': {e}")
            return None

        return CacheEntry(
            url, sidecar.get("headers", {}), size, memoryview(mapped), mapped
        )

    def total_size(self, exclude_url: str | None = None) -> int:
        """Sums the payload sizes of all committed entries."""
        excluded = self._paths(exclude_url)[0] if exclude_url else None
        total = 0
        for bin_path in self.root.glob("*.bin"):
            if bin_path == excluded:
                continue
            try:
                total += bin_path.stat().st_size
            except OSError:
                continue
        return total

    def urls(self) -> list[str]:
        """Lists the URLs of all committed entries."""
        found = []
        for meta_path in self.root.glob("*.json"):
            try:
                with open(meta_path, encoding="utf-8") as f:
                    url = json.load(f).get("url")
            except (json.JSONDecodeError, OSError):
                continue
            if url and meta_path.with_suffix(".bin").is_file():
                found.append(url)
        return found

    async def stage(self, url: str) -> StagedBlob:
        """Creates a staging file for an incremental write of ``url``."""
        quota_remaining = None
        if self.quota_bytes:
            used = await asyncio.to_thread(self.total_size, url)
            quota_remaining = max(0, self.quota_bytes - used)
        path = self.staging_dir / f"{blob_key(url)}.{uuid.uuid4().hex}.part"
        staged = StagedBlob(url, path, quota_remaining)
        await staged.open()
        return staged

    def _set_aside(
        self, staged: StagedBlob, bin_path: Path, meta_path: Path
    ) -> PreviousEntry:
        stem = staged.path.name.removesuffix(".part")
        previous = PreviousEntry(
            staged.url,
            self.staging_dir / f"{stem}.prev.bin.part",
            self.staging_dir / f"{stem}.prev.json.part",
        )
        # Sidecar first, so the entry is hidden before its payload moves.
        os.replace(meta_path, previous.meta_path)
        try:
            os.replace(bin_path, previous.bin_path)
        except OSError:
            os.replace(previous.meta_path, meta_path)
            raise
        for path in (previous.bin_path, previous.meta_path):
            os.utime(path)
        return previous

    def _restore_sync(self, previous: PreviousEntry) -> None:
        bin_path, meta_path = self._paths(previous.url)
        meta_path.unlink(missing_ok=True)
        os.replace(previous.bin_path, bin_path)
        os.replace(previous.meta_path, meta_path)

    def _commit_sync(
        self, staged: StagedBlob, headers: dict[str, str]
    ) -> PreviousEntry | None:
        bin_path, meta_path = self._paths(staged.url)
        sidecar_tmp = staged.path.with_suffix(".json.part")
        sidecar = {
            "url": staged.url,
            "headers": headers,
            "size": staged.written,
            "stored_at": time.time(),
        }
        previous = None
        try:
            with open(sidecar_tmp, "w", encoding="utf-8") as f:
                json.dump(sidecar, f)
            if meta_path.is_file() and bin_path.is_file():
                previous = self._set_aside(staged, bin_path, meta_path)
            else:
                meta_path.unlink(missing_ok=True)
            os.replace(staged.path, bin_path)
            os.replace(sidecar_tmp, meta_path)
        except OSError as e:
            sidecar_tmp.unlink(missing_ok=True)
            if previous is not None:
                try:
                    self._restore_sync(previous)
                except OSError as restore_error:
                    log.error(
                        f"Could not restore previous copy of '{staged.url}': "
                        f"{restore_error}"
                    )
            raise storage_error(e, staged.url) from e
        return previous

    async def commit(
        self, staged: StagedBlob, headers: Mapping[str, str]
    ) -> PreviousEntry | None:
        """
        Atomically publishes a fully written staged blob.

        Returns the entry it replaced, if any. The caller must hand it to
        ``release`` once the replacement is final, or to ``restore`` to undo
        the commit.
        """
        await staged.close()
        previous = await asyncio.to_thread(
            self._commit_sync, staged, storable_headers(headers)
        )
        log.debug(f"Committed {staged.written} bytes for '{staged.url}'.")
        return previous

    async def restore(self, previous: PreviousEntry) -> None:
        """Puts a displaced entry back in place of its replacement."""
        try:
            await asyncio.to_thread(self._restore_sync, previous)
        except OSError as e:
            raise storage_error(e, previous.url) from e
        log.debug(f"Restored previous copy of '{previous.url}'.")

    async def release(self, previous: PreviousEntry) -> None:
        """Drops a displaced entry for good."""
        for path in (previous.bin_path, previous.meta_path):
            await asyncio.to_thread(path.unlink, True)

    async def discard(self, staged: StagedBlob) -> None:
        """Drops a staged blob, leaving the committed store untouched."""
        try:
            await staged.close()
        finally:
            await asyncio.to_thread(staged.path.unlink, True)

    def delete(self, url: str) -> bool:
        """Removes an entry. Returns False when there was nothing to remove."""
        bin_path, meta_path = self._paths(url)
        removed = False
        for path in (meta_path, bin_path):
            try:
                path.unlink()
                removed = True
            except FileNotFoundError:
                continue
        if removed:
            log.debug(f"Deleted cached blob for '{url}'.")
        return removed

    def clear_staging(self, stale_after: float = STAGING_STALE_AFTER) -> int:
        """
        Removes leftovers of interrupted transfers.

        Only files not modified for ``stale_after`` seconds are removed, so the
        staging files of a transfer running in another process survive.
        """
        cleaned = 0
        now = time.time()
        for part in self.staging_dir.glob("*.part"):
            try:
                if now - part.stat().st_mtime < stale_after:
                    continue
                part.unlink()
                cleaned += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                log.warning(f"Failed to remove stale staging file {part.name}: {e}")
        if cleaned:
            log.debug(f"Staging cleanup: removed {cleaned} stale files.")
        return cleaned
