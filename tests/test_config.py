"""Tests for nodesync.config module."""

from __future__ import annotations

import os
import stat
import tomllib
import warnings
from pathlib import Path

import pytest
from pydantic import ValidationError

from nodesync.config import (
    AppConfig,
    MonitorConfig,
    NodeConfig,
    ServiceConfig,
    _dump_toml,
    _format_toml_value,
    check_config_permissions,
    ensure_dirs,
    load_config,
    save_config,
)

# ---------------------------------------------------------------------------
# 1. Default values
# ---------------------------------------------------------------------------


def test_node_config_defaults():
    cfg = NodeConfig()
    assert cfg.rpc_url == "http://127.0.0.1:8545"
    assert cfg.timeout_seconds == 10.0
    assert cfg.connect_retry_seconds == 5.0


def test_monitor_config_defaults():
    cfg = MonitorConfig()
    assert cfg.poll_interval_ms == 2000
    assert cfg.poll_interval == 2.0
    assert cfg.stale_block_seconds == 60
    assert cfg.auto_start is True


def test_service_config_defaults():
    assert ServiceConfig().log_level == "info"


def test_poll_interval_must_be_positive():
    with pytest.raises(ValidationError):
        MonitorConfig(poll_interval_ms=0)


# ---------------------------------------------------------------------------
# 2. AppConfig properties (use base_dir fixture)
# ---------------------------------------------------------------------------


def test_base_dir_property(base_dir: Path):
    assert AppConfig().base_dir == base_dir


def test_socket_path(base_dir: Path):
    assert AppConfig().socket_path == base_dir / "control.sock"


def test_log_dir(base_dir: Path):
    assert AppConfig().log_dir == base_dir / "logs"


# ---------------------------------------------------------------------------
# 3. ensure_dirs
# ---------------------------------------------------------------------------


def test_ensure_dirs_creates_directories(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    fresh = tmp_path / "fresh_base"
    monkeypatch.setattr("nodesync.config.get_base_dir", lambda: fresh)

    assert not fresh.exists()
    ensure_dirs()
    assert fresh.is_dir()
    assert (fresh / "logs").is_dir()


# ---------------------------------------------------------------------------
# 4. save_config / load_config
# ---------------------------------------------------------------------------


def test_load_config_no_file_returns_defaults(base_dir: Path):
    assert load_config() == AppConfig()


def test_save_load_round_trip_custom(base_dir: Path):
    original = AppConfig(
        node=NodeConfig(rpc_url="http://10.0.0.5:8545", timeout_seconds=3.5),
        monitor=MonitorConfig(poll_interval_ms=500, stale_block_seconds=30, auto_start=False),
        service=ServiceConfig(log_level="debug"),
    )
    save_config(original)

    assert load_config() == original


def test_load_config_partial_file_fills_defaults(base_dir: Path):
    (base_dir / "config.toml").write_text('[node]\nrpc_url = "http://other:8545"\n')
    os.chmod(base_dir / "config.toml", 0o600)

    cfg = load_config()
    assert cfg.node.rpc_url == "http://other:8545"
    assert cfg.monitor.poll_interval_ms == 2000


def test_save_config_sets_permissions(base_dir: Path):
    save_config(AppConfig())
    mode = stat.S_IMODE(os.stat(base_dir / "config.toml").st_mode)
    assert mode == 0o600


# ---------------------------------------------------------------------------
# 5. Permission checks
# ---------------------------------------------------------------------------


def test_check_config_permissions_ok(base_dir: Path):
    save_config(AppConfig())
    assert check_config_permissions() is None


def test_check_config_permissions_no_file(base_dir: Path):
    assert check_config_permissions() is None


def test_check_config_permissions_warns_group_readable(base_dir: Path):
    save_config(AppConfig())
    os.chmod(base_dir / "config.toml", 0o644)

    warning = check_config_permissions()
    assert warning is not None
    assert "permissive" in warning


def test_load_config_warns_on_bad_permissions(base_dir: Path):
    save_config(AppConfig())
    os.chmod(base_dir / "config.toml", 0o644)

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        load_config()

    assert any("permissive" in str(w.message) for w in caught)


# ---------------------------------------------------------------------------
# 6. TOML helpers
# ---------------------------------------------------------------------------


def test_format_toml_value_string_with_quotes():
    assert _format_toml_value('say "hi"') == '"say \\"hi\\""'


def test_format_toml_value_numbers():
    assert _format_toml_value(42) == "42"
    assert _format_toml_value(2.5) == "2.5"


def test_format_toml_value_bools():
    assert _format_toml_value(True) == "true"
    assert _format_toml_value(False) == "false"


def test_format_toml_value_unsupported_type():
    with pytest.raises(TypeError, match="Unsupported TOML value type"):
        _format_toml_value([1, 2, 3])


def test_dump_toml_round_trips_defaults():
    cfg = AppConfig()
    parsed = tomllib.loads(_dump_toml(cfg))

    assert set(parsed) == {"node", "monitor", "service"}
    assert parsed["node"]["rpc_url"] == cfg.node.rpc_url
    assert parsed["node"]["timeout_seconds"] == cfg.node.timeout_seconds
    assert parsed["monitor"]["poll_interval_ms"] == cfg.monitor.poll_interval_ms
    assert parsed["monitor"]["auto_start"] is True
    assert parsed["service"]["log_level"] == "info"
