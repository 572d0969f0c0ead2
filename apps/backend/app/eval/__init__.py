"""Evaluation harness for the design generator."""

from .scenarios import Scenario, ScenarioResult, load_scenarios
from .judge import LLMJudge

__all__ = [
    "Scenario",
    "ScenarioResult",
    "load_scenarios",
    "LLMJudge",
]
