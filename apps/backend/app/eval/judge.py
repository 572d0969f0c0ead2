"""LLM-based grading of generated designs."""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI


@dataclass(slots=True)
class Judgement:
    score: float
    passed: bool
    feedback: str


class LLMJudge:
    """Scores a design graph against a scenario's success criteria."""

    def __init__(self, model: str | None = None, threshold: float = 0.6):
        self.model_name = model or "gpt-4o-mini"
        self.threshold = threshold

    @lru_cache(maxsize=2)
    def _llm(self):
        return ChatOpenAI(model=self.model_name, temperature=0.0)

    @staticmethod
    def _parse_response(raw_text: str) -> Dict[str, object]:
        text = (raw_text or "").strip()
        if text.startswith("```"):
            first_newline = text.find("\n")
            if first_newline != -1:
                text = text[first_newline + 1 :]
            if text.endswith("```"):
                text = text[:-3]
            text = text.strip()
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            start = text.find("{")
            end = text.rfind("}")
            if start != -1 and end > start:
                try:
                    return json.loads(text[start : end + 1])
                except json.JSONDecodeError as exc:
                    raise RuntimeError(f"Judge returned malformed JSON: {raw_text}") from exc
            raise RuntimeError(f"Judge returned malformed JSON: {raw_text}")

    def judge(self, requirements: str, design: str, criteria: str) -> Judgement:
        system = SystemMessage(
            content=(
                "You are a meticulous senior architecture reviewer. You receive design requirements, "
                "a generated architecture graph (nodes and edges) and success criteria. "
                "Return JSON with keys score (0-1) and feedback (one or two sentences)."
            )
        )
        human = HumanMessage(
            content=json.dumps(
                {"requirements": requirements, "design": design, "success_criteria": criteria},
                ensure_ascii=False,
            )
        )

        raw = self._llm().invoke([system, human])
        data = self._parse_response(raw.content)

        score = max(0.0, min(1.0, float(data.get("score", 0.0))))
        feedback = str(data.get("feedback") or "").strip()
        return Judgement(score=score, passed=score >= self.threshold, feedback=feedback)
