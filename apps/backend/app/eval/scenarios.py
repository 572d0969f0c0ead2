"""Built-in design scenarios for the evaluation harness."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List

from app.agent.architect.schemas import Decision, DesignRequirements


@dataclass(slots=True)
class Scenario:
    """Design input plus what a reviewer expects the resulting graph to cover."""

    name: str
    requirements: DesignRequirements
    success_criteria: str


@dataclass(slots=True)
class ScenarioResult:
    scenario: Scenario
    output: str
    score: float
    passed: bool
    feedback: str


def default_scenarios() -> List[Scenario]:
    return [
        Scenario(
            name="chat_app",
            requirements=DesignRequirements(
                system_type="real-time chat app",
                scale="100k daily active users",
                requirements=["1:1 and group messaging", "presence indicators", "message history"],
                decisions=[
                    Decision(topic="database", choice="PostgreSQL"),
                    Decision(topic="cache", choice="Redis", reasoning="presence and fan-out"),
                ],
            ),
            success_criteria=(
                "Must include clients, a websocket-capable gateway, a messaging service, "
                "PostgreSQL for history and Redis for presence, with plausible connections."
            ),
        ),
        Scenario(
            name="e_commerce",
            requirements=DesignRequirements(
                system_type="e-commerce platform",
                scale="10k orders per day with seasonal spikes",
                requirements=["product catalog", "checkout and payments", "order tracking"],
                decisions=[Decision(topic="queue", choice="RabbitMQ")],
                constraints=["PCI compliance for payments"],
            ),
            success_criteria=(
                "Should cover catalog, cart/checkout, an external payment provider, an order "
                "pipeline through RabbitMQ and a CDN for static assets."
            ),
        ),
        Scenario(
            name="streaming_analytics",
            requirements=DesignRequirements(
                system_type="real-time IoT analytics",
                scale="50k sensors sending telemetry every second",
                requirements=["ingestion", "stream processing", "dashboards", "alerting"],
                decisions=[Decision(topic="queue", choice="Apache Kafka")],
            ),
            success_criteria=(
                "Need an ingestion path into Kafka, stream processors, hot and cold storage tiers, "
                "and dashboards or monitoring."
            ),
        ),
    ]


def load_scenarios(extra_path: str | Path | None = None) -> Iterator[Scenario]:
    """Yield the built-in scenarios, then any from a JSON list file.

    Each entry is ``{"name", "requirements", "successCriteria"}`` with
    ``requirements`` in the design input's wire shape.
    """

    yield from default_scenarios()

    if extra_path is None:
        return

    path = Path(extra_path)
    if not path.exists():
        return

    for item in json.loads(path.read_text(encoding="utf-8")):
        yield Scenario(
            name=item["name"],
            requirements=DesignRequirements.model_validate(item["requirements"]),
            success_criteria=item["successCriteria"],
        )
