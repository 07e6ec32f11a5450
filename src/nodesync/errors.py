"""Exception hierarchy shared by the monitor and its node collaborators."""

from __future__ import annotations


class NodeSyncError(Exception):
    """Base class for all nodesync errors."""


class NotConnected(NodeSyncError):
    """Raised when a sync session is requested while the node is unreachable."""


class RpcFailure(NodeSyncError):
    """Raised for any failure while talking to the node."""


class TransportError(RpcFailure):
    """Raised when the JSON-RPC request itself fails (network, HTTP status, bad body)."""


class UnexpectedRpcPayload(RpcFailure):
    """Raised when the node answers with an error or a result of the wrong shape."""

    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code
