from __future__ import annotations

from typing import Literal, Optional

from pydantic import Field

from app.agent.architect.schemas import ResearchOption, WireModel


class ResearchCreateRequest(WireModel):
    question: str = Field(..., min_length=1)
    context: str = Field(..., min_length=1)


class ResearchCreateResponse(WireModel):
    research_id: str
    status: Literal["pending"] = "pending"


class ResearchStatusResponse(WireModel):
    research_id: str
    status: Literal["pending", "completed"]
    options: Optional[list[ResearchOption]] = None
    recommendation: Optional[str] = None
    error: Optional[str] = None
