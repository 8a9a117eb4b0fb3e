"""Test harness configuration.

This repo uses a `src/` layout. In some developer environments an older
installed `findmyworker_chat` package can shadow the local sources.

Ensure tests always import the in-repo code.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

DEFAULT_TEST_TIMEOUT_SECONDS = 30


def pytest_configure() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    src_dir = repo_root / "src"
    src_path = str(src_dir)
    if sys.path[:1] != [src_path] and src_path not in sys.path:
        sys.path.insert(0, src_path)


def pytest_collection_modifyitems(
    session: pytest.Session, config: pytest.Config, items: list[pytest.Item]
) -> None:
    """
    Apply a default per-test timeout.

    This relies on `pytest-timeout` when installed; if it isn't installed, the
    marker is inert but still documents the intent.
    """
    _ = session, config
    for item in items:
        if item.get_closest_marker("timeout") is None:
            item.add_marker(pytest.mark.timeout(DEFAULT_TEST_TIMEOUT_SECONDS))


@pytest.fixture()
def chat_env(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Isolate tests from FMW_* variables set in the developer shell."""
    for name in ("FMW_WS_URL", "FMW_API_URL", "FMW_LOCALE", "FMW_ACCESS_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    return {}


@pytest.fixture()
def anyio_backend() -> str:
    """The chat client is built on asyncio; run anyio-marked tests there."""
    return "asyncio"
