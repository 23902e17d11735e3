"""
A typed command/event channel in front of the transfer manager.

Callers post commands into the worker's mailbox and subscribe to the events it
publishes, instead of driving the manager directly.
"""

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Union

from tilevault.exceptions import TileVaultError
from tilevault.models.region import RegionDescriptor, RegionMetadata

from .transfer_manager import RegionTransferManager, TransferSession

log = logging.getLogger(__name__)

DEFAULT_QUERY_TIMEOUT = 1.5


# --- Commands ---


@dataclass(frozen=True)
class CacheResource:
    descriptor: RegionDescriptor


@dataclass(frozen=True)
class EvictResource:
    url: str


@dataclass(frozen=True)
class QueryAvailability:
    url: str
    reply: asyncio.Future = field(compare=False)


Command = Union[CacheResource, EvictResource, QueryAvailability]


# --- Events ---


@dataclass(frozen=True)
class Progress:
    url: str
    received: int
    total: int
    final: bool


@dataclass(frozen=True)
class Completed:
    url: str
    metadata: RegionMetadata


@dataclass(frozen=True)
class Failed:
    url: str
    error: str


Event = Union[Progress, Completed, Failed]


class OfflineWorker:
    """An actor processing cache commands one at a time from its mailbox."""

    def __init__(self, manager: RegionTransferManager):
        self.manager = manager
        self._mailbox: asyncio.Queue[Command] = asyncio.Queue()
        self._subscribers: list[asyncio.Queue[Event]] = []
        self._watchers: set[asyncio.Task] = set()
        self._loop_task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        if not self.running:
            self._loop_task = asyncio.create_task(self._run(), name="offline-worker")
            log.debug("Offline worker started.")

    async def stop(self) -> None:
        """Stops the mailbox loop and event watchers. Transfers keep running."""
        tasks = list(self._watchers)
        if self._loop_task is not None:
            tasks.append(self._loop_task)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._loop_task = None
        log.debug("Offline worker stopped.")

    def send(self, command: Command) -> None:
        self._mailbox.put_nowait(command)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue[Event] = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def _publish(self, event: Event) -> None:
        for queue in list(self._subscribers):
            queue.put_nowait(event)

    async def query(self, url: str, timeout: float = DEFAULT_QUERY_TIMEOUT) -> bool:
        """
        Asks whether ``url`` is available offline. An unanswered query counts
        as unavailable.
        """
        reply = asyncio.get_running_loop().create_future()
        self.send(QueryAvailability(url, reply))
        try:
            return await asyncio.wait_for(reply, timeout)
        except asyncio.TimeoutError:
            log.debug(f"Availability query for '{url}' timed out after {timeout}s.")
            return False

    async def _run(self) -> None:
        while True:
            command = await self._mailbox.get()
            try:
                await self._dispatch(command)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.error(f"[red]✗ Worker failed to handle {command!r}: {e}[/red]")
            finally:
                self._mailbox.task_done()

    async def _dispatch(self, command: Command) -> None:
        if isinstance(command, CacheResource):
            self._start(command.descriptor)
        elif isinstance(command, EvictResource):
            await self.manager.evict(command.url)
        elif isinstance(command, QueryAvailability):
            available = await self.manager.is_available(command.url)
            if not command.reply.done():
                command.reply.set_result(available)
        else:
            log.warning(f"Ignoring unknown worker command: {command!r}")

    def _start(self, descriptor: RegionDescriptor) -> None:
        url = descriptor.source_url
        if self.manager.get_transfer(url) is not None:
            log.debug(f"'{url}' is already being cached, not starting it again.")
            return

        def on_progress(received: int, total: int, is_final: bool) -> None:
            self._publish(Progress(url, received, total, is_final))

        session = self.manager.start_transfer(descriptor, on_progress)
        watcher = asyncio.create_task(self._watch(session))
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)

    async def _watch(self, session: TransferSession) -> None:
        try:
            metadata = await session.wait()
        except TileVaultError as e:
            self._publish(Failed(session.url, str(e)))
        except OSError as e:
            self._publish(Failed(session.url, f"Storage error: {e}"))
        else:
            self._publish(Completed(session.url, metadata))
