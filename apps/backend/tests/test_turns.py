import asyncio

import pytest

from app.agent.architect import orchestrator
from app.agent.architect.schemas import OrchestratorOutput
from app.agent.llm import StructuredResult
from app.schemas.chat import TurnRequest
from app.services.stream import DONE_FRAME
from app.services.turns import ActiveTurns, active_turns, stream_turn


@pytest.fixture
def respond_model(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_generate_structured(messages, schema, *, model=None):
        return StructuredResult.success(OrchestratorOutput(mode="respond", message="ok"))

    monkeypatch.setattr(orchestrator, "generate_structured", fake_generate_structured)


def test_injected_registry_tracks_and_releases_the_turn(respond_model) -> None:
    registry = ActiveTurns()

    async def run():
        frames = stream_turn(TurnRequest(message="hi", session_id="s-7"), registry=registry)
        first = await frames.__anext__()
        during = (len(registry), len(active_turns()))
        rest = [frame async for frame in frames]
        return first, during, rest

    first, during, rest = asyncio.run(run())

    assert first.startswith("data: ")
    assert during == (1, 0)
    assert rest[-1] == DONE_FRAME
    assert len(registry) == 0


def test_superseded_turn_ends_without_done(respond_model) -> None:
    registry = ActiveTurns()

    async def run():
        frames = stream_turn(TurnRequest(message="hi", session_id="s-7"), registry=registry)
        await frames.__anext__()
        newer = registry.begin("s-7")
        rest = [frame async for frame in frames]
        return newer, rest

    newer, rest = asyncio.run(run())

    assert rest == []
    assert newer.is_set() is False
    assert len(registry) == 1
