"""Sync monitor: polls the node until it has caught up with the network.

One :class:`SyncSession` runs at a time.  Each session is driven by two
tasks: the poll loop, which queries the node every poll interval and
resolves the session, and a driver, which waits for the resolution, emits
the terminal event and cleans up.  ``stop()`` and ``skip()`` never cancel
an in-flight RPC call; they resolve the session so that the call's
continuation finds it inactive and does nothing.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import time
from collections.abc import Callable, Coroutine, Generator
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from nodesync.errors import NotConnected, UnexpectedRpcPayload
from nodesync.node.lifecycle import NodeState
from nodesync.sync.events import SkipChannel, SyncEvent, SyncEvents
from nodesync.sync.status import (
    STALE_BLOCK_SECONDS,
    BlockStale,
    MethodUnsupported,
    NoBlock,
    RpcError,
    Syncing,
    classify_latest_block,
    classify_sync_status,
)

if TYPE_CHECKING:
    from nodesync.node.lifecycle import NodeLifecycle
    from nodesync.node.transport import NodeTransport

log = structlog.get_logger(__name__)

SYNC_CHECK_INTERVAL = 2.0  # seconds


class SyncResolution(StrEnum):
    PENDING = "pending"
    DONE = "done"
    SKIPPED = "skipped"
    ERROR = "error"
    STOPPED = "stopped"


class MonitorState(StrEnum):
    """Monitor state.  A terminal state is kept until the next start()."""

    IDLE = "idle"
    SYNCING = "syncing"
    FINISHED = "finished"
    SKIPPED = "skipped"
    ERRORED = "errored"
    STOPPED = "stopped"


class SyncSession:
    """A single polling attempt, awaitable for its final resolution.

    Awaiting the session returns the :class:`SyncResolution` or raises the
    error that ended it.  The resolution is set exactly once.
    """

    def __init__(self) -> None:
        self.started_at: datetime = datetime.now(UTC)
        self.resolution: SyncResolution = SyncResolution.PENDING
        self.error: Exception | None = None
        self.ticks = 0
        self.skip_listener: Callable[[], object] | None = None
        self._future: asyncio.Future[SyncResolution] = asyncio.get_running_loop().create_future()
        self._ended = asyncio.Event()

    @property
    def active(self) -> bool:
        return self.resolution is SyncResolution.PENDING

    def resolve(self, resolution: SyncResolution) -> bool:
        if not self.active:
            return False
        self.resolution = resolution
        self._future.set_result(resolution)
        self._ended.set()
        return True

    def fail(self, exc: Exception) -> bool:
        if not self.active:
            return False
        self.resolution = SyncResolution.ERROR
        self.error = exc
        self._future.set_exception(exc)
        self._ended.set()
        return True

    async def wait_ended(self, timeout: float) -> None:
        """Sleep for *timeout* seconds, waking early if the session ends."""
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._ended.wait(), timeout=timeout)

    def to_dict(self) -> dict:
        return {
            "active": self.active,
            "started_at": self.started_at.isoformat(),
            "resolution": self.resolution.value,
            "ticks": self.ticks,
            "error": str(self.error) if self.error else None,
        }

    def __await__(self) -> Generator[Any, None, SyncResolution]:
        return asyncio.shield(self._future).__await__()


class SyncMonitor:
    """Watches a node's sync progress and reports a single outcome per session."""

    def __init__(
        self,
        transport: NodeTransport,
        lifecycle: NodeLifecycle,
        *,
        events: SyncEvents | None = None,
        skip_channel: SkipChannel | None = None,
        poll_interval: float = SYNC_CHECK_INTERVAL,
        stale_after: float = STALE_BLOCK_SECONDS,
        auto_start: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._transport = transport
        self._lifecycle = lifecycle
        self._events = events or SyncEvents()
        self._skip_channel = skip_channel or SkipChannel()
        self._poll_interval = poll_interval
        self._stale_after = stale_after
        self._auto_start = auto_start
        self._clock = clock
        self._session: SyncSession | None = None
        self._state = MonitorState.IDLE
        self._last_resolution: SyncResolution | None = None
        self._tasks: set[asyncio.Task] = set()

        lifecycle.subscribe(self._on_node_state_changed)

    @property
    def events(self) -> SyncEvents:
        return self._events

    @property
    def skip_channel(self) -> SkipChannel:
        return self._skip_channel

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def session(self) -> SyncSession | None:
        return self._session

    @property
    def is_syncing(self) -> bool:
        return self._session is not None and self._session.active

    @property
    def last_resolution(self) -> SyncResolution | None:
        return self._last_resolution

    def get_status(self) -> dict:
        return {
            "state": self._state.value,
            "poll_interval_ms": round(self._poll_interval * 1000),
            "stale_block_seconds": self._stale_after,
            "last_resolution": self._last_resolution.value if self._last_resolution else None,
            "session": self._session.to_dict() if self._session else None,
        }

    # -- public API ---------------------------------------------------------

    def start(self) -> SyncSession:
        """Start a sync session, or return the one already in progress.

        Raises :class:`NotConnected` when the node transport is not connected.
        """
        if self._session is not None and self._session.active:
            log.warning("sync_already_in_progress")
            return self._session

        if not self._transport.is_connected():
            raise NotConnected("Cannot sync - node not yet connected")

        log.info("sync_loop_starting", poll_interval=self._poll_interval)

        session = SyncSession()
        session.skip_listener = functools.partial(self._on_skip_signal, session)
        self._session = session
        self._state = MonitorState.SYNCING
        self._skip_channel.connect(session.skip_listener)

        self._events.emit(SyncEvent.STARTING)

        self._spawn(self._poll(session))
        self._spawn(self._drive(session))
        return session

    async def stop(self) -> None:
        """Stop the active session, if any, then emit ``stopped`` after a grace delay.

        The delay lets an RPC call already issued by the poll loop drain
        before anyone can start a new session on top of it.
        """
        session = self._session
        if session is None or not session.active:
            log.debug("sync_not_in_progress")
            return

        log.info("sync_loop_stopping")
        session.resolve(SyncResolution.STOPPED)
        self._last_resolution = SyncResolution.STOPPED
        self._clear_state(session)
        self._state = MonitorState.STOPPED

        await asyncio.sleep(self._poll_interval)

        self._events.emit(SyncEvent.STOPPED)

    def skip(self) -> bool:
        """Resolve the active session as skipped.  Returns False if there was none."""
        session = self._session
        if session is None:
            log.debug("sync_skip_ignored")
            return False
        return self._on_skip_signal(session)

    async def aclose(self) -> None:
        """Detach from the node lifecycle and wind down every session and task."""
        self._lifecycle.unsubscribe(self._on_node_state_changed)
        while self._session is not None or self._tasks:
            await self.stop()
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self._events.drain()

    # -- session driving ----------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _on_skip_signal(self, session: SyncSession) -> bool:
        if not session.active:
            return False
        log.info("sync_skipped")
        if session.skip_listener is not None:
            self._skip_channel.disconnect(session.skip_listener)
        return session.resolve(SyncResolution.SKIPPED)

    def _clear_state(self, session: SyncSession) -> None:
        if session.skip_listener is not None:
            self._skip_channel.disconnect(session.skip_listener)
        if self._session is session:
            self._session = None

    def _record(self, session: SyncSession, resolution: SyncResolution, state: MonitorState) -> None:
        self._last_resolution = resolution
        if self._session is session:
            self._state = state

    async def _drive(self, session: SyncSession) -> None:
        try:
            resolution = await session
        except Exception as exc:
            log.error("sync_error", error=str(exc), error_type=type(exc).__name__)
            self._record(session, SyncResolution.ERROR, MonitorState.ERRORED)
            self._events.emit(SyncEvent.ERROR, exc)
        else:
            # stop() already cleared a stopped session and emits its own event
            if resolution is not SyncResolution.STOPPED:
                state = MonitorState.SKIPPED if resolution is SyncResolution.SKIPPED else MonitorState.FINISHED
                self._record(session, resolution, state)
                self._events.emit(SyncEvent.FINISHED)
        finally:
            log.info("sync_loop_ended", resolution=session.resolution.value, ticks=session.ticks)
            self._clear_state(session)

    async def _poll(self, session: SyncSession) -> None:
        while True:
            await session.wait_ended(self._poll_interval)
            if not session.active:
                log.debug("sync_no_longer_in_progress")
                return

            session.ticks += 1
            try:
                finished = await self._check(session)
            except Exception as exc:
                if session.active:
                    log.error("node_crashed_while_syncing", error=str(exc))
                    session.fail(exc)
                return

            if finished:
                return

    async def _check(self, session: SyncSession) -> bool:
        """Run one poll tick.  Returns True once the loop should end."""
        log.debug("sync_status_check", tick=session.ticks)
        response = await self._transport.send("eth_syncing", [])
        if not session.active:
            return True

        status = classify_sync_status(response)

        if isinstance(status, MethodUnsupported):
            log.warning("sync_method_not_implemented")
            session.resolve(SyncResolution.DONE)
            return True

        if isinstance(status, RpcError):
            raise UnexpectedRpcPayload(f"Unexpected error: {status.message}", code=status.code)

        if isinstance(status, Syncing):
            log.debug("sync_status", progress=status.progress)
            self._events.emit(SyncEvent.PROGRESS, status)
            return False

        log.debug("latest_block_check")
        block_response = await self._transport.send("eth_getBlockByNumber", ["latest", False])
        if not session.active:
            return True

        block = classify_latest_block(block_response, self._clock(), self._stale_after)
        if isinstance(block, NoBlock):
            return False

        log.debug("latest_block", number=block.number, timestamp=block.timestamp, age=block.age)
        if isinstance(block, BlockStale):
            log.debug("sync_keep_syncing", age=block.age)
            self._events.emit(SyncEvent.PROGRESS, block)
            return False

        log.info("sync_complete", block=block.number)
        session.resolve(SyncResolution.DONE)
        return True

    # -- node lifecycle -----------------------------------------------------

    def _on_node_state_changed(self, state: NodeState) -> None:
        if state is NodeState.STOPPING:
            log.info("node_stopping_stop_sync")
            self._spawn(self.stop())
        elif state is NodeState.CONNECTED:
            log.info("node_connected_restart_sync", auto_start=self._auto_start)
            self._spawn(self._restart())

    async def _restart(self) -> None:
        await self.stop()
        if not self._auto_start or self._lifecycle.state is not NodeState.CONNECTED:
            return
        try:
            self.start()
        except NotConnected as exc:
            log.warning("sync_restart_failed", error=str(exc))
