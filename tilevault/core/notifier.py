"""
The state-change hook invoked after the cache is mutated, so that badges and
listings can refresh. Hook failures are logged and never touch core state.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

log = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    COMPLETED = "completed"
    EVICTED = "evicted"
    PRUNED = "pruned"


@dataclass(frozen=True)
class StateChange:
    kind: ChangeKind
    url: str


StateHook = Callable[[StateChange], Awaitable[None] | None]


class StateNotifier:
    """Fans a state change out to the registered hooks."""

    def __init__(self, *hooks: StateHook):
        self._hooks: list[StateHook] = list(hooks)

    def subscribe(self, hook: StateHook) -> None:
        self._hooks.append(hook)

    def unsubscribe(self, hook: StateHook) -> None:
        if hook in self._hooks:
            self._hooks.remove(hook)

    async def notify(self, change: StateChange) -> None:
        for hook in list(self._hooks):
            try:
                result = hook(change)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning(
                    f"State hook {getattr(hook, '__name__', hook)!r} failed "
                    f"on {change.kind.value} for '{change.url}': {e}"
                )
