"""Node lifecycle state and the observer used to broadcast transitions."""

from __future__ import annotations

from collections.abc import Callable
from enum import StrEnum

import structlog

log = structlog.get_logger(__name__)


class NodeState(StrEnum):
    STARTING = "starting"
    STARTED = "started"
    CONNECTED = "connected"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


StateListener = Callable[[NodeState], object]


class NodeLifecycle:
    """Tracks the node's lifecycle state and notifies subscribers of changes."""

    def __init__(self, initial: NodeState = NodeState.STOPPED) -> None:
        self._state = initial
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> NodeState:
        return self._state

    def subscribe(self, listener: StateListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def transition(self, new_state: NodeState | str) -> bool:
        """Move to *new_state*.  Listeners are only notified on an actual change."""
        new_state = NodeState(new_state)
        if new_state == self._state:
            return False

        log.info("node_state_changed", previous=self._state.value, state=new_state.value)
        self._state = new_state
        for listener in list(self._listeners):
            listener(new_state)
        return True
