from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Dict, Optional
from uuid import uuid4

from app.agent.architect.orchestrator import orchestrate
from app.agent.cancel import TurnCancelled
from app.schemas.chat import TurnRequest
from app.services.stream import sse_frames

logger = logging.getLogger(__name__)


class ActiveTurns:
    """Cancellation tokens of in-flight turns, keyed by session id.

    Starting a turn for a session cancels the token of the turn it replaces.
    """

    def __init__(self) -> None:
        self._tokens: Dict[str, asyncio.Event] = {}

    def begin(self, session_id: Optional[str]) -> asyncio.Event:
        token = asyncio.Event()
        if session_id:
            previous = self._tokens.get(session_id)
            if previous is not None and not previous.is_set():
                logger.info("Cancelling in-flight turn for session %s", session_id)
                previous.set()
            self._tokens[session_id] = token
        return token

    def end(self, session_id: Optional[str], token: asyncio.Event) -> None:
        if session_id and self._tokens.get(session_id) is token:
            del self._tokens[session_id]

    def __len__(self) -> int:
        return len(self._tokens)


_ACTIVE_TURNS = ActiveTurns()


def active_turns() -> ActiveTurns:
    return _ACTIVE_TURNS


async def stream_turn(turn: TurnRequest, *, registry: Optional[ActiveTurns] = None) -> AsyncIterator[str]:
    """SSE body for one turn. A superseded turn ends its stream without further frames."""
    turns = registry if registry is not None else active_turns()
    cancel = turns.begin(turn.session_id)
    turn_id = str(uuid4())
    logger.info("Turn %s started (session=%s, history=%d)", turn_id, turn.session_id or "-", len(turn.messages))
    events = orchestrate(
        turn.message,
        turn.messages,
        turn.gathered_state,
        turn.is_ready_for_design,
        cancel=cancel,
        turn_id=turn_id,
    )
    try:
        async for frame in sse_frames(events):
            yield frame
    except TurnCancelled:
        logger.info("Turn %s cancelled", turn_id)
    finally:
        cancel.set()
        turns.end(turn.session_id, cancel)
