"""Classification of node sync-status and latest-block responses.

``eth_syncing`` is not implemented uniformly across node clients.  A missing
method and a missing status object both mean "nothing left to sync", so a
``null``/``false`` answer falls back to checking how old the latest block is.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from nodesync.errors import UnexpectedRpcPayload

METHOD_NOT_FOUND = -32601
STALE_BLOCK_SECONDS = 60


@dataclass(frozen=True)
class Syncing:
    """Node reports an active sync; *progress* is the raw status object."""

    progress: dict = field(default_factory=dict)


@dataclass(frozen=True)
class MethodUnsupported:
    """Node does not implement the sync-status method."""


@dataclass(frozen=True)
class RpcError:
    """Any other JSON-RPC error returned for the sync-status query."""

    code: int | None
    message: str


@dataclass(frozen=True)
class NoStatus:
    """Node returned no sync object (``null`` or ``false``)."""


@dataclass(frozen=True)
class NoBlock:
    """Latest-block query returned nothing yet."""


@dataclass(frozen=True)
class BlockFresh:
    """Latest block is recent enough to consider the node caught up."""

    number: int
    timestamp: int
    age: int


@dataclass(frozen=True)
class BlockStale:
    """Latest block is older than the staleness threshold."""

    number: int
    timestamp: int
    age: int


SyncStatusResult = Syncing | MethodUnsupported | RpcError | NoStatus
BlockResult = NoBlock | BlockFresh | BlockStale


def parse_quantity(value: object) -> int:
    """Parse a JSON-RPC quantity given either as ``"0x..."`` hex or a plain number."""
    if isinstance(value, bool):
        raise UnexpectedRpcPayload(f"Invalid quantity: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError:
            pass
    raise UnexpectedRpcPayload(f"Invalid quantity: {value!r}")


def _error_from(payload: dict) -> RpcError | MethodUnsupported | None:
    error = payload.get("error")
    if error is None:
        return None
    if not isinstance(error, dict):
        return RpcError(code=None, message=str(error))
    code = error.get("code")
    if code == METHOD_NOT_FOUND:
        return MethodUnsupported()
    return RpcError(code=code, message=str(error.get("message", error)))


def classify_sync_status(response: dict) -> SyncStatusResult:
    """Classify an ``eth_syncing`` response.

    The error object is accepted both at the top level of the response and
    nested inside ``result``, since some nodes report it there.
    """
    top_level = _error_from(response)
    if top_level is not None:
        return top_level

    result = response.get("result")
    if not result:
        return NoStatus()
    if not isinstance(result, dict):
        raise UnexpectedRpcPayload(f"Unexpected sync status: {result!r}")

    nested = _error_from(result)
    if nested is not None:
        return nested
    return Syncing(progress=result)


def classify_latest_block(
    response: dict,
    now: float,
    stale_after: float = STALE_BLOCK_SECONDS,
) -> BlockResult:
    """Classify an ``eth_getBlockByNumber("latest")`` response by block age."""
    error = _error_from(response)
    if error is not None:
        if isinstance(error, MethodUnsupported):
            raise UnexpectedRpcPayload("Latest block query not supported", code=METHOD_NOT_FOUND)
        raise UnexpectedRpcPayload(f"Unexpected error: {error.message}", code=error.code)

    block = response.get("result")
    if not block:
        return NoBlock()
    if not isinstance(block, dict):
        raise UnexpectedRpcPayload(f"Unexpected block payload: {block!r}")

    number = parse_quantity(block.get("number", 0))
    timestamp = parse_quantity(block.get("timestamp"))
    age = int(now) - timestamp

    # still catching up when the head is more than a minute behind wall-clock
    if age > stale_after:
        return BlockStale(number=number, timestamp=timestamp, age=age)
    return BlockFresh(number=number, timestamp=timestamp, age=age)
