from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for every model that crosses the wire; field names are camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


ActivityType = Literal[
    "analyzing",
    "clarifying",
    "researching",
    "comparing",
    "designing",
    "rendering",
    "complete",
    "error",
]

EventType = Literal["activity", "message", "question", "research", "design", "error", "done"]

OrchestratorMode = Literal["clarify", "research", "design", "respond"]

NodeType = Literal[
    "client",
    "cdn",
    "gateway",
    "server",
    "service",
    "api",
    "queue",
    "cache",
    "database",
    "storage",
    "auth",
    "monitoring",
    "external",
]


class ActivityEvent(WireModel):
    id: str
    type: ActivityType
    message: str
    detail: Optional[str] = None
    progress: Optional[float] = Field(default=None, ge=0, le=100)
    timestamp: int = Field(..., description="Unix timestamp in milliseconds")


class QuestionOption(WireModel):
    id: str = Field(..., description="Unique identifier for this option")
    label: str = Field(..., description="Display text for the option (2-5 words)")
    value: str = Field(..., description="Value to use when selected")


class ClarifyingQuestion(WireModel):
    id: str = Field(..., description="Unique identifier for this question (e.g. 'q-scale')")
    question: str = Field(..., description="The question to ask the user (clear, concise)")
    context: Optional[str] = Field(default=None, description="Why this question matters for the design")
    options: list[QuestionOption] = Field(..., min_length=2, max_length=5)
    allow_custom: bool = True
    multi_select: bool = False


class Decision(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    topic: str
    choice: str
    reasoning: Optional[str] = None


class DesignRequirements(WireModel):
    system_type: str = Field(..., description="Type of system (e.g. 'chat app', 'e-commerce', 'API')")
    scale: str = Field(..., description="Expected scale/load")
    requirements: list[str] = Field(default_factory=list)
    decisions: list[Decision] = Field(default_factory=list)
    constraints: Optional[list[str]] = None


class OrchestratorOutput(WireModel):
    mode: OrchestratorMode
    message: str = Field(..., description="Response message to show the user - keep it concise")
    question: Optional[ClarifyingQuestion] = Field(
        default=None, description="Clarifying question (required when mode='clarify')"
    )
    research_topic: Optional[str] = Field(
        default=None, description="SINGLE topic keyword (e.g. 'database', 'cache', 'auth') - ONE word only"
    )
    research_query: Optional[str] = Field(
        default=None, description="Brief search query for research (e.g. 'best database for chat apps')"
    )
    research_context: Optional[str] = Field(default=None, description="Brief context about user requirements")
    design_requirements: Optional[DesignRequirements] = Field(
        default=None, description="Requirements for the design step (required when mode='design')"
    )
    ready_for_design: bool = False
    missing_info: list[str] = Field(default_factory=list)


class DesignNode(WireModel):
    id: str = Field(..., description="Unique identifier (kebab-case, e.g. 'user-service')")
    label: str = Field(..., description="Display label (technology name or component name)")
    type: NodeType
    tier: Optional[int] = Field(
        default=None, description="Layout tier: 1 clients, 2 edge, 3 gateway, 4 services, 5 data"
    )
    technology: Optional[str] = None
    description: Optional[str] = None


class DesignEdge(WireModel):
    id: str
    source: str = Field(..., description="Source node id")
    target: str = Field(..., description="Target node id")
    label: Optional[str] = Field(default=None, description="Edge label (1-2 words)")


class DesignDraft(WireModel):
    """What the model is asked to produce; tiers may be missing or out of range."""

    nodes: list[DesignNode] = Field(..., min_length=3, max_length=15)
    edges: list[DesignEdge] = Field(default_factory=list)
    summary: str = Field(..., description="Brief summary of the architecture (2-3 sentences)")


class Position(WireModel):
    x: float
    y: float


class PlacedNode(DesignNode):
    tier: int = Field(..., ge=1, le=5)
    position: Optional[Position] = None


class DesignOutput(WireModel):
    nodes: list[PlacedNode] = Field(..., min_length=3, max_length=15)
    edges: list[DesignEdge] = Field(default_factory=list)
    summary: str


class ResearchInput(WireModel):
    topic: str
    query: str
    context: str


class Citation(WireModel):
    url: str
    title: str
    snippet: Optional[str] = None


class ResearchOption(WireModel):
    id: str
    name: str
    summary: str
    pros: list[str] = Field(..., min_length=2, max_length=5)
    cons: list[str] = Field(..., min_length=2, max_length=5)
    best_for: str
    citations: list[Citation] = Field(default_factory=list)


class ResearchOutput(WireModel):
    topic: str
    question: str
    options: list[ResearchOption] = Field(..., min_length=2, max_length=4)
    recommendation: str


class SelectedOption(WireModel):
    question_id: str
    option_id: str
    value: str


class AgentMessage(WireModel):
    id: str
    role: Literal["user", "assistant", "system"]
    content: str = ""
    timestamp: int = 0
    question: Optional[ClarifyingQuestion] = None
    research: Optional[ResearchOutput] = None
    design: Optional[DesignOutput] = None
    selected_option: Optional[SelectedOption] = None


class MessagePayload(WireModel):
    content: str
    is_complete: bool = True


class ErrorPayload(WireModel):
    message: str
    code: Optional[str] = None


class DonePayload(WireModel):
    success: bool


def chunk(event_type: EventType, data: WireModel | dict[str, Any]) -> dict[str, Any]:
    payload = data.to_wire() if isinstance(data, WireModel) else data
    return {"type": event_type, "data": payload}
