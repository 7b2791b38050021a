"""Shared pytest fixtures.

Key goals:
- Prevent the global settings singleton from leaking state across tests.
- Keep environment overrides for the bare consumer/retry variables out of
  the test process.
"""

from __future__ import annotations

import pytest

from session_gateway import config

_BARE_ENV_VARS = ("MAX_RETRIES", "RECONNECT_INTERVAL", "APP_URL", "APP_KEY")


@pytest.fixture(autouse=True)
def _reset_global_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure global settings do not leak between tests."""
    for name in _BARE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    config._settings = None
    yield
    config._settings = None
