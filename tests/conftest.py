"""Shared fixtures for nodesync tests."""

from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture()
def base_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Redirect all nodesync runtime files to a temporary directory.

    Patches ``nodesync.config.get_base_dir`` so that nothing touches the real
    ``~/.nodesync/``.
    """
    fake_base = tmp_path / ".nodesync"
    fake_base.mkdir()
    (fake_base / "logs").mkdir()

    monkeypatch.setattr("nodesync.config.get_base_dir", lambda: fake_base)

    return fake_base
