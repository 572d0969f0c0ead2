from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from app.schemas.decision import ConversationContext, DecisionRequest, DecisionResponse, RecordedDecision
from app.services.errors import InvalidRequestError


def record_decision(body: Any) -> DecisionResponse:
    """Append the user's selection to the submitted conversation context.

    Only records; the next turn is what acts on the decision.
    """
    try:
        req = DecisionRequest.model_validate(body)
    except ValidationError as exc:
        raise InvalidRequestError("Decision ID and option ID are required") from exc

    context = req.conversation_context or ConversationContext(current_phase="deciding")
    selected = req.option_title or req.option_id
    updated = context.model_copy(
        update={
            "decisions": [
                *context.decisions,
                RecordedDecision(question=req.decision_id, selected_option=selected, reasoning="User selected"),
            ]
        }
    )
    return DecisionResponse(
        text=f"Great choice! You've selected {selected}. This will be incorporated into your architecture design.",
        conversation_context=updated,
    )
