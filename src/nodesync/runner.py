"""Foreground watcher: wires the node transport, lifecycle and sync monitor together.

Hosts the control server on a Unix domain socket while it runs so that
``nodesync skip`` / ``nodesync status`` can reach it from another shell.
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
import socket
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
import uvicorn

from nodesync.errors import TransportError
from nodesync.node.lifecycle import NodeLifecycle, NodeState
from nodesync.node.transport import HttpNodeTransport
from nodesync.server.rpc import ControlState, create_control_app
from nodesync.sync.events import SkipChannel, SyncEvent, SyncEvents
from nodesync.sync.monitor import SyncMonitor

if TYPE_CHECKING:
    import httpx

    from nodesync.config import AppConfig

log = structlog.get_logger(__name__)

EventCallback = Callable[[SyncEvent, tuple], object]


def ensure_clean_socket(sock_path: Path) -> None:
    """Remove *sock_path* if it is a stale (unconnectable) Unix socket.

    A socket with a live listener is left alone so that a second watcher
    does not break a running one.
    """
    if not sock_path.exists():
        return

    test_sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        test_sock.connect(str(sock_path))
    except OSError:
        log.debug("removing stale socket", path=str(sock_path))
        sock_path.unlink(missing_ok=True)
    finally:
        test_sock.close()


async def connect_node(
    transport: HttpNodeTransport,
    lifecycle: NodeLifecycle,
    *,
    retry_seconds: float,
    shutdown_event: asyncio.Event,
) -> bool:
    """Probe the node until it answers, then move the lifecycle to ``connected``.

    Returns False if shutdown was requested before the node came up.
    """
    lifecycle.transition(NodeState.STARTING)
    while not shutdown_event.is_set():
        try:
            await transport.connect()
        except TransportError as exc:
            log.warning("node_connect_failed", url=transport.url, error=str(exc), retry_in=retry_seconds)
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(shutdown_event.wait(), timeout=retry_seconds)
            continue
        lifecycle.transition(NodeState.CONNECTED)
        return True
    return False


def _forward_events(events: SyncEvents, on_event: EventCallback) -> None:
    for event in SyncEvent:
        events.on(event, lambda *args, _event=event: on_event(_event, args))


async def run_watch(
    config: AppConfig,
    *,
    on_event: EventCallback | None = None,
    serve_control: bool = True,
    exit_after_session: bool = True,
    _http_transport: httpx.AsyncBaseTransport | None = None,
) -> ControlState:
    """Run the watcher until shutdown (or until the first session ends)."""
    state = ControlState()
    state.node_url = config.node.rpc_url

    lifecycle = NodeLifecycle()
    events = SyncEvents()
    skip_channel = SkipChannel()
    state.lifecycle = lifecycle

    if on_event is not None:
        _forward_events(events, on_event)

    if exit_after_session:
        for event in (SyncEvent.FINISHED, SyncEvent.ERROR):
            events.on(event, lambda *_: state.request_shutdown())

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, state.request_shutdown)

    async with HttpNodeTransport(
        config.node.rpc_url,
        timeout=config.node.timeout_seconds,
        _transport=_http_transport,
    ) as transport:
        monitor = SyncMonitor(
            transport,
            lifecycle,
            events=events,
            skip_channel=skip_channel,
            poll_interval=config.monitor.poll_interval,
            stale_after=config.monitor.stale_block_seconds,
            auto_start=config.monitor.auto_start,
        )
        state.monitor = monitor

        server: uvicorn.Server | None = None
        server_task: asyncio.Task | None = None
        if serve_control:
            config.base_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
            ensure_clean_socket(config.socket_path)
            server = uvicorn.Server(
                uvicorn.Config(
                    create_control_app(state),
                    uds=str(config.socket_path),
                    log_level="warning",
                    loop="asyncio",
                )
            )
            server_task = asyncio.create_task(server.serve())
            # uvicorn takes over SIGINT/SIGTERM while serving
            server_task.add_done_callback(lambda _: state.request_shutdown())

        try:
            connected = await connect_node(
                transport,
                lifecycle,
                retry_seconds=config.node.connect_retry_seconds,
                shutdown_event=state.shutdown_event,
            )
            if connected:
                await state.shutdown_event.wait()
        finally:
            log.info("initiating graceful shutdown")
            lifecycle.transition(NodeState.STOPPING)
            await monitor.aclose()
            lifecycle.transition(NodeState.STOPPED)

            if server is not None and server_task is not None:
                server.should_exit = True
                await server_task
                config.socket_path.unlink(missing_ok=True)

    log.info("watcher shut down cleanly")
    return state
