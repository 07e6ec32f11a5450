"""Sync monitor, status classification and event fan-out."""

from nodesync.sync.events import SkipChannel, SyncEvent, SyncEvents
from nodesync.sync.monitor import MonitorState, SyncMonitor, SyncResolution, SyncSession

__all__ = [
    "MonitorState",
    "SkipChannel",
    "SyncEvent",
    "SyncEvents",
    "SyncMonitor",
    "SyncResolution",
    "SyncSession",
]
