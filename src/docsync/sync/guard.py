"""SyncGuard — remote-apply reentrancy flag plus a trailing-edge debounce timer."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from enum import Enum, auto
from typing import Any, Awaitable, Callable, Iterator

import anyio
import anyio.abc

logger = logging.getLogger(__name__)


SaveCallback = Callable[[], Awaitable[Any]]


class GuardState(Enum):
    IDLE = auto()
    PENDING = auto()
    SAVING = auto()


class ScheduledCall:
    """Handle for one debounced callback: a delay plus the scope that can cancel it."""

    def __init__(self, callback: SaveCallback, delay: float) -> None:
        self.callback = callback
        self.delay = delay
        self._scope = anyio.CancelScope()
        self._fired = False

    @property
    def cancelled(self) -> bool:
        return self._scope.cancel_called

    @property
    def fired(self) -> bool:
        return self._fired

    def cancel(self) -> bool:
        """Cancel the call if its delay has not elapsed yet."""
        if self._fired or self._scope.cancel_called:
            return False
        self._scope.cancel()
        return True

    async def wait(self) -> bool:
        """Sleep out the delay; False when cancelled first."""
        with self._scope:
            await anyio.sleep(self.delay)
        if self._scope.cancel_called:
            return False
        self._fired = True
        return True


class SyncGuard:
    """Per-document guard owned by a SyncEngine.

    Tracks whether a remote update is being merged, so the change handler can
    tell remote-origin notifications apart from local edits, and keeps at most
    one pending debounced save.
    """

    def __init__(self, task_group: anyio.abc.TaskGroup | None = None) -> None:
        self._task_group = task_group
        self._applying_depth = 0
        self._pending: ScheduledCall | None = None
        self._saving = 0

    def bind_task_group(self, task_group: anyio.abc.TaskGroup | None) -> None:
        self._task_group = task_group

    # -- remote apply scope ----------------------------------------------

    def begin_remote_apply(self) -> None:
        self._applying_depth += 1

    def end_remote_apply(self) -> None:
        if self._applying_depth == 0:
            raise RuntimeError("end_remote_apply() called without a matching begin")
        self._applying_depth -= 1

    @property
    def is_applying_remote(self) -> bool:
        return self._applying_depth > 0

    @contextmanager
    def applying_remote(self) -> Iterator[None]:
        """Hold the applying flag around a synchronous remote-driven mutation."""
        self.begin_remote_apply()
        try:
            yield
        finally:
            self.end_remote_apply()

    # -- debounce --------------------------------------------------------

    @property
    def pending(self) -> ScheduledCall | None:
        return self._pending

    @property
    def state(self) -> GuardState:
        if self._saving:
            return GuardState.SAVING
        if self._pending is not None:
            return GuardState.PENDING
        return GuardState.IDLE

    def schedule_save(self, callback: SaveCallback, delay: float) -> ScheduledCall:
        """Run ``callback`` once ``delay`` seconds pass without another call here."""
        if self._task_group is None:
            raise RuntimeError("sync guard has no task group; enter the owning SyncEngine first")
        if self._pending is not None:
            self._pending.cancel()
        call = ScheduledCall(callback, delay)
        self._pending = call
        self._task_group.start_soon(self._run_scheduled, call)
        return call

    def cancel_pending(self) -> bool:
        call, self._pending = self._pending, None
        if call is None:
            return False
        return call.cancel()

    async def flush(self) -> bool:
        """Fire the pending callback now instead of waiting out its delay."""
        call = self._pending
        if call is None or not call.cancel():
            return False
        self._pending = None
        await self._fire(call)
        return True

    async def _run_scheduled(self, call: ScheduledCall) -> None:
        if not await call.wait():
            return
        if self._pending is call:
            self._pending = None
        await self._fire(call)

    async def _fire(self, call: ScheduledCall) -> None:
        self._saving += 1
        try:
            await call.callback()
        except Exception:
            logger.exception("debounced save callback failed")
        finally:
            self._saving -= 1
