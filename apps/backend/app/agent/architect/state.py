from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from .schemas import Decision, WireModel


MISSING_REQUIREMENTS = "system type or core requirements"
MISSING_DETAILS = "more details about your needs"
MIN_ANSWERS_WITHOUT_DECISION = 2


class GatheredState(WireModel):
    """Append-only record of what a conversation has established so far.

    Instances are immutable; every ``with_*`` method returns a new value with
    ``version`` bumped by one.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    requirements: tuple[str, ...] = ()
    decisions: tuple[Decision, ...] = ()
    questions_answered: int = Field(default=0, ge=0)
    version: int = Field(default=0, ge=0)

    @classmethod
    def empty(cls) -> "GatheredState":
        return cls()

    def with_requirement(self, requirement: str) -> "GatheredState":
        text = (requirement or "").strip()
        if not text:
            return self
        return self.model_copy(
            update={"requirements": self.requirements + (text,), "version": self.version + 1}
        )

    def with_decision(self, topic: str, choice: str, reasoning: str | None = None) -> "GatheredState":
        decision = Decision(topic=topic, choice=choice, reasoning=reasoning)
        return self.model_copy(
            update={"decisions": self.decisions + (decision,), "version": self.version + 1}
        )

    def with_answer(self, answer: str) -> "GatheredState":
        """Record an answered clarifying question; the answer becomes a requirement."""
        text = (answer or "").strip()
        requirements = self.requirements + (text,) if text else self.requirements
        return self.model_copy(
            update={
                "requirements": requirements,
                "questions_answered": self.questions_answered + 1,
                "version": self.version + 1,
            }
        )


@dataclass(frozen=True)
class Readiness:
    ready: bool
    missing: list[str] = field(default_factory=list)


def compute_readiness(state: GatheredState) -> Readiness:
    missing: list[str] = []
    if not state.requirements:
        missing.append(MISSING_REQUIREMENTS)
    if not state.decisions and state.questions_answered < MIN_ANSWERS_WITHOUT_DECISION:
        missing.append(MISSING_DETAILS)
    return Readiness(ready=not missing, missing=missing)
