from __future__ import annotations

from typing import Literal, Optional

from pydantic import Field

from app.agent.architect.schemas import WireModel


class RecordedDecision(WireModel):
    question: str
    selected_option: str
    reasoning: Optional[str] = None


class ConversationContext(WireModel):
    requirements: list[str] = Field(default_factory=list)
    decisions: list[RecordedDecision] = Field(default_factory=list)
    current_phase: Literal["gathering", "deciding", "designing", "complete"] = "gathering"


class DecisionRequest(WireModel):
    decision_id: str = Field(..., min_length=1)
    option_id: str = Field(..., min_length=1)
    option_title: Optional[str] = None
    conversation_context: Optional[ConversationContext] = None


class DecisionResponse(WireModel):
    mode: Literal["continue"] = "continue"
    text: str
    conversation_context: ConversationContext
