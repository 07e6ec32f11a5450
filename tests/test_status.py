"""Tests for sync-status and latest-block classification."""

from __future__ import annotations

import pytest

from nodesync.errors import UnexpectedRpcPayload
from nodesync.sync.status import (
    BlockFresh,
    BlockStale,
    MethodUnsupported,
    NoBlock,
    NoStatus,
    RpcError,
    Syncing,
    classify_latest_block,
    classify_sync_status,
    parse_quantity,
)

NOW = 1_700_000_000


# ---------------------------------------------------------------------------
# classify_sync_status
# ---------------------------------------------------------------------------


def test_nested_method_not_found():
    assert classify_sync_status({"result": {"error": {"code": -32601}}}) == MethodUnsupported()


def test_top_level_method_not_found():
    response = {"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "not found"}}
    assert classify_sync_status(response) == MethodUnsupported()


def test_other_error_code():
    status = classify_sync_status({"result": {"error": {"code": -32000, "message": "header not found"}}})
    assert status == RpcError(code=-32000, message="header not found")


def test_error_that_is_not_an_object():
    status = classify_sync_status({"error": "kaput"})
    assert isinstance(status, RpcError)
    assert status.code is None
    assert status.message == "kaput"


@pytest.mark.parametrize("result", [None, False, {}])
def test_empty_results_mean_no_status(result):
    assert classify_sync_status({"result": result}) == NoStatus()


def test_missing_result_means_no_status():
    assert classify_sync_status({"jsonrpc": "2.0", "id": 1}) == NoStatus()


def test_sync_object_is_syncing():
    progress = {"startingBlock": "0x0", "currentBlock": "0x5", "highestBlock": "0xa"}
    status = classify_sync_status({"result": progress})
    assert isinstance(status, Syncing)
    assert status.progress == progress


def test_unexpected_result_shape_raises():
    with pytest.raises(UnexpectedRpcPayload):
        classify_sync_status({"result": True})


# ---------------------------------------------------------------------------
# classify_latest_block
# ---------------------------------------------------------------------------


def test_no_block():
    assert classify_latest_block({"result": None}, NOW) == NoBlock()


def test_stale_block():
    block = classify_latest_block({"result": {"number": "0x64", "timestamp": hex(NOW - 120)}}, NOW)
    assert block == BlockStale(number=100, timestamp=NOW - 120, age=120)


def test_fresh_block():
    block = classify_latest_block({"result": {"number": "0x64", "timestamp": hex(NOW - 5)}}, NOW)
    assert block == BlockFresh(number=100, timestamp=NOW - 5, age=5)


def test_threshold_is_exclusive():
    assert isinstance(classify_latest_block({"result": {"timestamp": NOW - 60}}, NOW), BlockFresh)
    assert isinstance(classify_latest_block({"result": {"timestamp": NOW - 61}}, NOW), BlockStale)


def test_custom_threshold():
    block = classify_latest_block({"result": {"timestamp": NOW - 20}}, NOW, stale_after=10)
    assert isinstance(block, BlockStale)


def test_fractional_clock_is_floored():
    block = classify_latest_block({"result": {"timestamp": NOW}}, NOW + 0.9)
    assert block.age == 0


def test_block_error_raises():
    with pytest.raises(UnexpectedRpcPayload) as excinfo:
        classify_latest_block({"error": {"code": -32000, "message": "nope"}}, NOW)
    assert excinfo.value.code == -32000


def test_block_without_timestamp_raises():
    with pytest.raises(UnexpectedRpcPayload):
        classify_latest_block({"result": {"number": "0x1"}}, NOW)


# ---------------------------------------------------------------------------
# parse_quantity
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("0x0", 0), ("0x5f5e100", 100_000_000), ("42", 42), (17, 17)],
)
def test_parse_quantity(raw, expected):
    assert parse_quantity(raw) == expected


@pytest.mark.parametrize("raw", ["zz", None, True, 1.5])
def test_parse_quantity_rejects_garbage(raw):
    with pytest.raises(UnexpectedRpcPayload):
        parse_quantity(raw)
