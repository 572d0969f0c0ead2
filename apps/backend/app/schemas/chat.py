from __future__ import annotations

from typing import Any, Optional

from pydantic import Field, ValidationError

from app.agent.architect.schemas import AgentMessage, WireModel
from app.agent.architect.state import GatheredState
from app.services.errors import InvalidRequestError

MAX_MESSAGE_CHARS = 2_000


class TurnRequest(WireModel):
    message: str = Field(..., min_length=1, max_length=MAX_MESSAGE_CHARS)
    messages: list[AgentMessage] = Field(default_factory=list)
    gathered_state: GatheredState = Field(default_factory=GatheredState.empty)
    is_ready_for_design: bool = False
    session_id: Optional[str] = None


def parse_turn_request(body: Any) -> TurnRequest:
    if not isinstance(body, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    message = body.get("message")
    if not isinstance(message, str):
        raise InvalidRequestError("Message is required")
    message = message.strip()
    if not message:
        raise InvalidRequestError("Message is required")
    if len(message) > MAX_MESSAGE_CHARS:
        raise InvalidRequestError(f"Message must be at most {MAX_MESSAGE_CHARS} characters")
    try:
        return TurnRequest.model_validate({**body, "message": message})
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        raise InvalidRequestError(f"Invalid request fields: {', '.join(fields)}") from exc
