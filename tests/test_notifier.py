"""Tests for notifier module."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from tilevault.core.notifier import ChangeKind, StateChange, StateNotifier

CHANGE = StateChange(ChangeKind.COMPLETED, "https://t.example/CVL.pmtiles")


class TestStateNotifier:
    """Tests for StateNotifier."""

    @pytest.mark.asyncio
    async def test_sync_and_async_hooks(self):
        """Both plain and coroutine hooks receive the change."""
        sync_hook = MagicMock(return_value=None)
        async_hook = AsyncMock()
        notifier = StateNotifier(sync_hook, async_hook)
        await notifier.notify(CHANGE)
        sync_hook.assert_called_once_with(CHANGE)
        async_hook.assert_awaited_once_with(CHANGE)

    @pytest.mark.asyncio
    async def test_failing_hook_does_not_stop_others(self):
        """A raising hook is logged and the next hook still runs."""
        failing = MagicMock(side_effect=RuntimeError("boom"))
        after = MagicMock(return_value=None)
        notifier = StateNotifier(failing, after)
        await notifier.notify(CHANGE)
        after.assert_called_once_with(CHANGE)

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        """Removed hooks are no longer called."""
        hook = MagicMock(return_value=None)
        notifier = StateNotifier()
        notifier.subscribe(hook)
        notifier.unsubscribe(hook)
        await notifier.notify(CHANGE)
        hook.assert_not_called()
