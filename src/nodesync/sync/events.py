"""Event fan-out for sync listeners and the one-shot skip signal."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from enum import StrEnum

import structlog

log = structlog.get_logger(__name__)


class SyncEvent(StrEnum):
    STARTING = "starting"
    PROGRESS = "progress"
    FINISHED = "finished"
    ERROR = "error"
    STOPPED = "stopped"


Listener = Callable[..., object]


class SyncEvents:
    """Fan-out sink for the fixed set of :class:`SyncEvent` names.

    Plain callables run inline; coroutine functions are scheduled as tasks
    so that a slow listener never holds up the poll loop.  A listener that
    raises is logged and the remaining listeners still run.
    """

    def __init__(self) -> None:
        self._listeners: dict[SyncEvent, list[Listener]] = {event: [] for event in SyncEvent}
        self._tasks: set[asyncio.Task] = set()

    def on(self, event: SyncEvent | str, listener: Listener) -> None:
        listeners = self._listeners[SyncEvent(event)]
        if listener not in listeners:
            listeners.append(listener)

    def off(self, event: SyncEvent | str, listener: Listener) -> None:
        listeners = self._listeners[SyncEvent(event)]
        if listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: SyncEvent | str) -> int:
        return len(self._listeners[SyncEvent(event)])

    def emit(self, event: SyncEvent, *args: object) -> None:
        for listener in list(self._listeners[event]):
            if inspect.iscoroutinefunction(listener):
                task = asyncio.get_running_loop().create_task(listener(*args))
                self._tasks.add(task)
                task.add_done_callback(self._on_task_done)
                continue
            try:
                listener(*args)
            except Exception:
                log.exception("sync_listener_failed", sync_event=event.value)

    async def drain(self) -> None:
        """Wait for all scheduled coroutine listeners to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("sync_listener_failed", error=str(exc))


class SkipChannel:
    """External "skip sync" signal; listeners are expected to connect per session."""

    def __init__(self) -> None:
        self._listeners: list[Callable[[], object]] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def connect(self, listener: Callable[[], object]) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def disconnect(self, listener: Callable[[], object]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def fire(self) -> bool:
        """Deliver the skip signal.  Returns True if anybody was listening."""
        listeners = list(self._listeners)
        if not listeners:
            log.debug("skip_signal_ignored")
            return False
        for listener in listeners:
            listener()
        return True
