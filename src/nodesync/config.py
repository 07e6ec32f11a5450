"""Configuration management for nodesync."""

from __future__ import annotations

import os
import stat
import tomllib
import warnings
from pathlib import Path

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

_BASE_DIR_NAME = ".nodesync"
_CONFIG_FILE = "config.toml"
_SOCKET_FILE = "control.sock"
_LOG_DIR = "logs"


def get_base_dir() -> Path:
    """Return the base directory for all nodesync runtime files (~/.nodesync/)."""
    return Path.home() / _BASE_DIR_NAME


# ---------------------------------------------------------------------------
# Config models
# ---------------------------------------------------------------------------


class NodeConfig(BaseModel):
    """How to reach the node's JSON-RPC endpoint."""

    rpc_url: str = Field(default="http://127.0.0.1:8545", description="Node JSON-RPC URL")
    timeout_seconds: float = Field(default=10.0, gt=0, description="Per-request timeout")
    connect_retry_seconds: float = Field(default=5.0, gt=0, description="Delay between connection attempts")


class MonitorConfig(BaseModel):
    """Settings that control the sync monitor."""

    poll_interval_ms: int = Field(default=2000, gt=0, description="Milliseconds between sync checks")
    stale_block_seconds: int = Field(default=60, ge=0, description="Latest block age that still counts as syncing")
    auto_start: bool = Field(default=True, description="Start a sync session whenever the node connects")

    @property
    def poll_interval(self) -> float:
        return self.poll_interval_ms / 1000


class ServiceConfig(BaseModel):
    """Settings for the watcher process itself."""

    log_level: str = Field(default="info", description="Logging level")


class AppConfig(BaseModel):
    """Top-level application configuration."""

    node: NodeConfig = Field(default_factory=NodeConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)

    # -- derived paths (not stored in TOML) --------------------------------

    @property
    def base_dir(self) -> Path:
        return get_base_dir()

    @property
    def socket_path(self) -> Path:
        return self.base_dir / _SOCKET_FILE

    @property
    def log_dir(self) -> Path:
        return self.base_dir / _LOG_DIR


# ---------------------------------------------------------------------------
# Filesystem helpers
# ---------------------------------------------------------------------------


def ensure_dirs() -> None:
    """Create the base directory and log directory if they don't already exist."""
    base = get_base_dir()
    base.mkdir(mode=0o700, parents=True, exist_ok=True)
    (base / _LOG_DIR).mkdir(mode=0o700, parents=True, exist_ok=True)


# ---------------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------------


def check_config_permissions() -> str | None:
    """Return a warning if the config file is readable by group or others."""
    path = get_base_dir() / _CONFIG_FILE
    if not path.is_file():
        return None

    mode = stat.S_IMODE(path.stat().st_mode)
    if mode & (stat.S_IRWXG | stat.S_IRWXO):
        return f"Config file {path} has overly permissive permissions {oct(mode)}; expected 0o600"
    return None


def load_config() -> AppConfig:
    """Load configuration from TOML, falling back to defaults if the file is missing."""
    path = get_base_dir() / _CONFIG_FILE
    if not path.is_file():
        return AppConfig()

    warning = check_config_permissions()
    if warning:
        warnings.warn(warning, stacklevel=2)

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    return AppConfig.model_validate(raw)


def _format_toml_value(value: object) -> str:
    """Format a single Python value as a TOML literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return repr(value)
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    msg = f"Unsupported TOML value type: {type(value)}"
    raise TypeError(msg)


def _dump_toml(config: AppConfig) -> str:
    """Serialize an AppConfig to a minimal TOML string (tables of scalars only)."""
    lines: list[str] = []
    sections = [
        ("node", config.node),
        ("monitor", config.monitor),
        ("service", config.service),
    ]
    for section_name, section_model in sections:
        lines.append(f"[{section_name}]")
        for key, value in section_model.model_dump(mode="python").items():
            lines.append(f"{key} = {_format_toml_value(value)}")
        lines.append("")
    return "\n".join(lines)


def save_config(config: AppConfig) -> None:
    """Save configuration to TOML and restrict file permissions to owner-only."""
    ensure_dirs()
    path = get_base_dir() / _CONFIG_FILE
    path.write_text(_dump_toml(config), encoding="utf-8")
    os.chmod(path, 0o600)
