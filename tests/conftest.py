"""Test configuration and fixtures."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path
from unittest.mock import Mock

import pytest
import requests

from trigger_bridge.orchestrator.workflow.run_store import RunStore


@pytest.fixture
def temp_state_dir(tmp_path: Path) -> Path:
    """Provide a temporary state directory."""
    state_dir = tmp_path / ".state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def run_store(temp_state_dir: Path) -> RunStore:
    return RunStore(temp_state_dir / "runs")


@pytest.fixture
def clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Drop bridge variables from the environment and run from an empty directory."""
    for key in list(os.environ):
        if key.startswith("BRIDGE_") or key == "LOG_LEVEL":
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


def make_response(status_code: int, headers: dict[str, str] | None = None) -> Mock:
    resp = Mock(spec=requests.Response)
    resp.status_code = status_code
    resp.ok = status_code < 400
    resp.reason = "OK" if status_code < 400 else "Error"
    resp.headers = headers or {}
    return resp


@pytest.fixture
def response_factory() -> Callable[..., Mock]:
    return make_response


@pytest.fixture
def mock_session() -> Mock:
    session = Mock(spec=requests.Session)
    session.request.return_value = make_response(200)
    return session
