"""LifecycleManager + SyncEvent enum for sync engine hooks."""

from __future__ import annotations

import inspect
import logging
from enum import Enum, auto
from typing import Any, Callable

logger = logging.getLogger(__name__)


class SyncEvent(Enum):
    BEFORE_SAVE = auto()
    AFTER_SAVE = auto()
    BEFORE_LOAD = auto()
    AFTER_LOAD = auto()
    AFTER_CLEAR = auto()
    ON_ERROR = auto()


LifecycleHook = Callable[..., Any]


class LifecycleManager:
    """Manages registration and firing of sync lifecycle hooks.

    AFTER_LOAD doubles as the "content is ready for display" signal and
    ON_ERROR receives every failure the engine swallows.
    """

    def __init__(self) -> None:
        self._hooks: dict[SyncEvent, list[LifecycleHook]] = {}

    def on(self, event: SyncEvent, hook: LifecycleHook) -> None:
        self._hooks.setdefault(event, []).append(hook)

    def off(self, event: SyncEvent, hook: LifecycleHook) -> None:
        hooks = self._hooks.get(event, [])
        if hook in hooks:
            hooks.remove(hook)

    def fire(self, event: SyncEvent, *args: Any, **kwargs: Any) -> None:
        for hook in self._hooks.get(event, []):
            hook(*args, **kwargs)

    async def fire_async(self, event: SyncEvent, *args: Any, **kwargs: Any) -> None:
        for hook in self._hooks.get(event, []):
            try:
                result = hook(*args, **kwargs)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                # A broken hook must not take the sync engine down with it.
                logger.exception("%s hook %r failed", event.name, hook)

    def hook(self, event: SyncEvent) -> Callable[[LifecycleHook], LifecycleHook]:
        """Decorator to register a lifecycle hook."""
        def decorator(fn: LifecycleHook) -> LifecycleHook:
            self.on(event, fn)
            return fn
        return decorator
