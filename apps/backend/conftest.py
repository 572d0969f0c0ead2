from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, AsyncIterator, Callable

import pytest

# `import app...` expects apps/backend on sys.path, whatever rootdir pytest picks.
_BACKEND_ROOT = str(Path(__file__).resolve().parent)
if _BACKEND_ROOT not in sys.path:
    sys.path.insert(0, _BACKEND_ROOT)


@pytest.fixture
def collect() -> Callable[[AsyncIterator[Any]], list[Any]]:
    """Drain an async iterator on a fresh event loop."""

    def _collect(events: AsyncIterator[Any]) -> list[Any]:
        async def _drain() -> list[Any]:
            return [event async for event in events]

        return asyncio.run(_drain())

    return _collect


@pytest.fixture
def fast_agent_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ORCHESTRATOR_MAX_RETRIES", "2")
    monkeypatch.setenv("DESIGN_MAX_RETRIES", "2")
    monkeypatch.setenv("RESEARCH_POLL_INTERVAL_SECONDS", "0")
    monkeypatch.setenv("RESEARCH_TIMEOUT_SECONDS", "5")
