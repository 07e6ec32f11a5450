"""Control server for a running ``nodesync watch`` process."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI
from pydantic import BaseModel

from nodesync.errors import NotConnected

if TYPE_CHECKING:
    from nodesync.node.lifecycle import NodeLifecycle
    from nodesync.sync.monitor import SyncMonitor

log = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Wire models
# ---------------------------------------------------------------------------


class RpcRequest(BaseModel):
    """Incoming control call from the CLI client."""

    cmd: str
    params: dict = {}


class RpcResponse(BaseModel):
    """Outgoing control response sent back to the CLI client."""

    ok: bool = True
    data: dict = {}
    error: str | None = None


# ---------------------------------------------------------------------------
# Runtime state
# ---------------------------------------------------------------------------


class ControlState:
    """Holds mutable runtime state shared with the control endpoint."""

    def __init__(self) -> None:
        self.started_at: datetime = datetime.now(timezone.utc)
        self.shutdown_event: asyncio.Event = asyncio.Event()
        self.monitor: SyncMonitor | None = None
        self.lifecycle: NodeLifecycle | None = None
        self.node_url: str | None = None

    def get_status(self) -> dict:
        """Return a snapshot of the watcher status."""
        uptime = (datetime.now(timezone.utc) - self.started_at).total_seconds()
        status: dict = {
            "uptime_seconds": round(uptime, 2),
            "started_at": self.started_at.isoformat(),
        }
        if self.node_url:
            status["node_url"] = self.node_url
        if self.lifecycle:
            status["node_state"] = self.lifecycle.state.value
        if self.monitor:
            status["sync"] = self.monitor.get_status()
        return status

    def request_shutdown(self) -> None:
        """Signal the watcher to shut down gracefully."""
        log.info("shutdown_requested")
        self.shutdown_event.set()


# ---------------------------------------------------------------------------
# Command dispatch
# ---------------------------------------------------------------------------

_KNOWN_COMMANDS = ("ping", "health", "status", "skip", "sync_now", "stop", "shutdown")


async def _dispatch(cmd: str, params: dict, state: ControlState) -> RpcResponse:
    """Route a control command string to the appropriate handler."""
    if cmd == "ping":
        return RpcResponse()

    if cmd == "status":
        return RpcResponse(data=state.get_status())

    if cmd == "health":
        uptime = (datetime.now(timezone.utc) - state.started_at).total_seconds()
        return RpcResponse(data={"uptime_seconds": round(uptime, 2)})

    if cmd == "shutdown":
        state.request_shutdown()
        return RpcResponse(data={"message": "shutdown initiated"})

    if not state.monitor:
        if cmd in _KNOWN_COMMANDS:
            return RpcResponse(ok=False, error="monitor not configured")
        return RpcResponse(ok=False, error=f"unknown command: {cmd}")

    if cmd == "skip":
        skipped = state.monitor.skip_channel.fire()
        if not skipped:
            return RpcResponse(ok=False, error="no sync in progress")
        return RpcResponse(data={"message": "sync skipped"})

    if cmd == "sync_now":
        try:
            session = state.monitor.start()
        except NotConnected as exc:
            return RpcResponse(ok=False, error=str(exc))
        return RpcResponse(data={"message": "sync started", "session": session.to_dict()})

    if cmd == "stop":
        if not state.monitor.is_syncing:
            return RpcResponse(data={"message": "sync not in progress"})
        await state.monitor.stop()
        return RpcResponse(data={"message": "sync stopped"})

    return RpcResponse(ok=False, error=f"unknown command: {cmd}")


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_control_app(state: ControlState) -> FastAPI:
    """Build the FastAPI application that serves the control endpoint."""
    app = FastAPI(title="nodesync-watch", docs_url=None, redoc_url=None)

    @app.post("/rpc", response_model=RpcResponse)
    async def rpc_endpoint(request: RpcRequest) -> RpcResponse:
        log.info("rpc_request", cmd=request.cmd)
        response = await _dispatch(request.cmd, request.params, state)
        if not response.ok:
            log.warning("rpc_error", cmd=request.cmd, error=response.error)
        return response

    @app.get("/health", response_model=RpcResponse)
    async def health_endpoint() -> RpcResponse:
        uptime = (datetime.now(timezone.utc) - state.started_at).total_seconds()
        return RpcResponse(data={"uptime_seconds": round(uptime, 2)})

    return app
