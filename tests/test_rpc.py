"""Tests for the control server module."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient

from nodesync.errors import NotConnected
from nodesync.node.lifecycle import NodeLifecycle, NodeState
from nodesync.server.rpc import ControlState, create_control_app


def _make_client() -> tuple[TestClient, ControlState]:
    """Create a fresh ControlState + TestClient pair."""
    state = ControlState()
    app = create_control_app(state)
    return TestClient(app), state


def _make_client_with_monitor() -> tuple[TestClient, ControlState]:
    """Create a ControlState with a mock monitor + TestClient."""
    state = ControlState()
    monitor = MagicMock()
    monitor.get_status.return_value = {"state": "syncing", "session": None}
    monitor.stop = AsyncMock()
    state.monitor = monitor
    return TestClient(create_control_app(state)), state


# ---------------------------------------------------------------------------
# Basic endpoints
# ---------------------------------------------------------------------------


def test_ping() -> None:
    client, _state = _make_client()
    resp = client.post("/rpc", json={"cmd": "ping"})
    assert resp.status_code == 200
    assert resp.json()["ok"] is True


def test_status_without_monitor() -> None:
    client, _state = _make_client()
    body = client.post("/rpc", json={"cmd": "status"}).json()
    assert body["ok"] is True
    assert "uptime_seconds" in body["data"]
    assert "started_at" in body["data"]
    assert "sync" not in body["data"]


def test_status_includes_node_and_sync() -> None:
    client, state = _make_client_with_monitor()
    state.node_url = "http://127.0.0.1:8545"
    state.lifecycle = NodeLifecycle(NodeState.CONNECTED)

    data = client.post("/rpc", json={"cmd": "status"}).json()["data"]

    assert data["node_url"] == "http://127.0.0.1:8545"
    assert data["node_state"] == "connected"
    assert data["sync"] == {"state": "syncing", "session": None}


def test_health_get_endpoint() -> None:
    client, _state = _make_client()
    resp = client.get("/health")
    assert resp.status_code == 200
    assert "uptime_seconds" in resp.json()["data"]


def test_shutdown() -> None:
    client, state = _make_client()
    body = client.post("/rpc", json={"cmd": "shutdown"}).json()
    assert body["ok"] is True
    assert state.shutdown_event.is_set()


def test_unknown_command() -> None:
    client, _state = _make_client_with_monitor()
    body = client.post("/rpc", json={"cmd": "eth_syncing"}).json()
    assert body["ok"] is False
    assert "unknown" in body["error"].lower()


def test_monitor_commands_without_monitor() -> None:
    client, _state = _make_client()
    for cmd in ("skip", "sync_now", "stop"):
        body = client.post("/rpc", json={"cmd": cmd}).json()
        assert body["ok"] is False
        assert "not configured" in body["error"]


# ---------------------------------------------------------------------------
# Sync control
# ---------------------------------------------------------------------------


def test_skip_fires_skip_channel() -> None:
    client, state = _make_client_with_monitor()
    state.monitor.skip_channel.fire.return_value = True

    body = client.post("/rpc", json={"cmd": "skip"}).json()

    assert body["ok"] is True
    state.monitor.skip_channel.fire.assert_called_once_with()


def test_skip_without_session() -> None:
    client, state = _make_client_with_monitor()
    state.monitor.skip_channel.fire.return_value = False

    body = client.post("/rpc", json={"cmd": "skip"}).json()

    assert body["ok"] is False
    assert "no sync" in body["error"]


def test_sync_now_starts_session() -> None:
    client, state = _make_client_with_monitor()
    state.monitor.start.return_value.to_dict.return_value = {"resolution": "pending"}

    body = client.post("/rpc", json={"cmd": "sync_now"}).json()

    assert body["ok"] is True
    assert body["data"]["session"] == {"resolution": "pending"}
    state.monitor.start.assert_called_once_with()


def test_sync_now_not_connected() -> None:
    client, state = _make_client_with_monitor()
    state.monitor.start.side_effect = NotConnected("Cannot sync - node not yet connected")

    body = client.post("/rpc", json={"cmd": "sync_now"}).json()

    assert body["ok"] is False
    assert "not yet connected" in body["error"]


def test_stop_active_session() -> None:
    client, state = _make_client_with_monitor()
    state.monitor.is_syncing = True

    body = client.post("/rpc", json={"cmd": "stop"}).json()

    assert body["ok"] is True
    state.monitor.stop.assert_awaited_once()


def test_stop_idle_monitor() -> None:
    client, state = _make_client_with_monitor()
    state.monitor.is_syncing = False

    body = client.post("/rpc", json={"cmd": "stop"}).json()

    assert body["ok"] is True
    assert "not in progress" in body["data"]["message"]
    state.monitor.stop.assert_not_awaited()


# ---------------------------------------------------------------------------
# ControlState unit tests
# ---------------------------------------------------------------------------


def test_control_state_request_shutdown() -> None:
    state = ControlState()
    assert not state.shutdown_event.is_set()
    state.request_shutdown()
    assert state.shutdown_event.is_set()
