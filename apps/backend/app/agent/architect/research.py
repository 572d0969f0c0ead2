from __future__ import annotations

import asyncio
import logging
import os
import re
import time
from typing import Any, Optional

from app.agent.cancel import race_cancel, sleep_or_cancel
from app.services.errors import ResearchProviderError

from .research_client import (
    RESEARCH_OUTPUT_SCHEMA,
    TERMINAL_STATUSES,
    ResearchClient,
    get_research_client,
    parsed_output,
    task_status,
)
from .schemas import ResearchInput, ResearchOption, ResearchOutput

logger = logging.getLogger(__name__)

MAX_OPTIONS = 4
MAX_POINTS = 5
MAX_USE_CASES = 3
FALLBACK_NOTE = "Based on general expertise (research unavailable)."


def _get_float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def poll_interval_seconds() -> float:
    return _get_float_env("RESEARCH_POLL_INTERVAL_SECONDS", 3.0)


def research_timeout_seconds() -> float:
    return _get_float_env("RESEARCH_TIMEOUT_SECONDS", 120.0)


def slugify(name: str) -> str:
    slug = re.sub(r"\s+", "-", (name or "").strip().lower())
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    return re.sub(r"-{2,}", "-", slug).strip("-") or "option"


def build_research_instructions(query: str, context: str, *, topic: Optional[str] = None) -> str:
    header = f"TOPIC: {topic}\nQUERY: {query}\n" if topic else f"QUESTION: {query}\n"
    return (
        "Research and compare technology options for the following architectural decision:\n\n"
        f"{header}"
        f"CONTEXT: {context}\n\n"
        "Analyze the top 2-4 technology options for this decision. For each option:\n"
        "1. name: the technology name\n"
        "2. description: one clear sentence\n"
        "3. advantages: 3-5 key advantages\n"
        "4. disadvantages: 3-5 key disadvantages\n"
        "5. bestUseCases: the situations where it fits best\n\n"
        "Focus on practical, production-ready solutions used in modern software architecture.\n"
        "Weigh scalability, maintainability, cost, learning curve and ecosystem support.\n"
        "Finish with a recommendation and the reasoning behind it, based on the given context."
    )


def _str_list(value: Any, limit: int) -> list[str]:
    if not isinstance(value, list):
        return []
    items = [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()]
    return items[:limit]


def map_research_options(data: dict[str, Any]) -> list[ResearchOption]:
    """Map the provider's option records onto ResearchOption, raising on invalid shapes."""
    raw_options = data.get("options")
    if not isinstance(raw_options, list):
        raise ResearchProviderError("Research output has no options list")
    options: list[ResearchOption] = []
    for raw in raw_options[:MAX_OPTIONS]:
        if not isinstance(raw, dict):
            continue
        name = str(raw.get("name") or "").strip()
        options.append(
            ResearchOption(
                id=slugify(name),
                name=name,
                summary=str(raw.get("description") or "").strip(),
                pros=_str_list(raw.get("advantages"), MAX_POINTS),
                cons=_str_list(raw.get("disadvantages"), MAX_POINTS),
                best_for=", ".join(_str_list(raw.get("bestUseCases"), MAX_USE_CASES)),
                citations=[],
            )
        )
    return options


def format_research_output(research: ResearchInput, data: dict[str, Any]) -> ResearchOutput:
    recommendation = str(data.get("recommendation") or "").strip()
    reasoning = str(data.get("reasoning") or "").strip()
    combined = ". ".join(part.rstrip(".") for part in (recommendation, reasoning) if part)
    return ResearchOutput(
        topic=research.topic,
        question=f"Which {research.topic} should we use?",
        options=map_research_options(data),
        recommendation=f"{combined}." if combined else "",
    )


async def poll_until_finished(
    client: ResearchClient,
    research_id: str,
    *,
    interval: float,
    timeout: float,
    cancel: Optional[asyncio.Event] = None,
) -> dict[str, Any]:
    deadline = time.monotonic() + timeout
    while True:
        task = await race_cancel(asyncio.to_thread(client.get_task, research_id), cancel)
        status = task_status(task)
        if status in TERMINAL_STATUSES:
            return task
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ResearchProviderError(f"Research {research_id} timed out after {timeout:.0f}s")
        await sleep_or_cancel(min(interval, remaining), cancel)


async def execute_research(
    research: ResearchInput,
    *,
    cancel: Optional[asyncio.Event] = None,
    client: Optional[ResearchClient] = None,
) -> ResearchOutput:
    """Run a deep-research comparison for one decision.

    Any provider failure (error, timeout, non-completed status, missing or
    invalid payload) degrades to the built-in comparisons. Cancellation is not
    a failure and propagates.
    """
    try:
        research_client = client or get_research_client()
        instructions = build_research_instructions(research.query, research.context, topic=research.topic)
        research_id = await race_cancel(
            asyncio.to_thread(research_client.create_task, instructions, RESEARCH_OUTPUT_SCHEMA),
            cancel,
        )
        logger.info("Research %s started for topic %r", research_id, research.topic)
        task = await poll_until_finished(
            research_client,
            research_id,
            interval=poll_interval_seconds(),
            timeout=research_timeout_seconds(),
            cancel=cancel,
        )
        status = task_status(task)
        if status != "completed":
            raise ResearchProviderError(f"Research ended with status: {status}")
        data = parsed_output(task)
        if not data:
            raise ResearchProviderError("No parsed data in research output")
        return format_research_output(research, data)
    except Exception as exc:
        logger.warning("Research for %r failed, using fallback comparison: %s", research.topic, exc)
        return fallback_research(research)


def _option(option_id: str, name: str, summary: str, pros: list[str], cons: list[str], best_for: str) -> ResearchOption:
    return ResearchOption(id=option_id, name=name, summary=summary, pros=pros, cons=cons, best_for=best_for)


def fallback_research(research: ResearchInput) -> ResearchOutput:
    topic = research.topic.lower()

    if "database" in topic or "sql" in topic:
        return ResearchOutput(
            topic=research.topic,
            question="Which database should we use?",
            options=[
                _option(
                    "postgresql",
                    "PostgreSQL",
                    "Robust relational database with excellent ACID compliance and advanced features",
                    [
                        "Strong data integrity and ACID compliance",
                        "Complex query support with powerful SQL",
                        "Mature ecosystem with excellent tooling",
                        "Great for structured data with relationships",
                    ],
                    [
                        "Horizontal scaling can be challenging",
                        "Schema migrations required for changes",
                        "May be overkill for simple key-value data",
                    ],
                    "Applications with complex relationships, financial systems, reporting",
                ),
                _option(
                    "mongodb",
                    "MongoDB",
                    "Flexible document database ideal for rapid development and scaling",
                    [
                        "Schema flexibility for evolving data",
                        "Easy horizontal scaling with sharding",
                        "Great for unstructured or semi-structured data",
                        "Fast development iteration",
                    ],
                    [
                        "Weaker consistency guarantees",
                        "No complex joins without aggregation",
                        "Can lead to data duplication",
                    ],
                    "Content management, real-time analytics, rapid prototyping",
                ),
            ],
            recommendation=f"PostgreSQL for data integrity needs, MongoDB for flexibility. {FALLBACK_NOTE}",
        )

    if "cache" in topic or "redis" in topic:
        return ResearchOutput(
            topic=research.topic,
            question="Which caching solution should we use?",
            options=[
                _option(
                    "redis",
                    "Redis",
                    "In-memory data store with rich data structures and persistence options",
                    [
                        "Extremely fast read/write operations",
                        "Rich data structures (lists, sets, hashes)",
                        "Pub/sub messaging support",
                        "Persistence options available",
                    ],
                    [
                        "Memory-bound, expensive at scale",
                        "Single-threaded command execution",
                        "Clustering complexity",
                    ],
                    "Session storage, real-time leaderboards, pub/sub messaging, rate limiting",
                ),
                _option(
                    "memcached",
                    "Memcached",
                    "Simple, high-performance distributed memory caching system",
                    [
                        "Very fast for simple key-value access",
                        "Multi-threaded design",
                        "Predictable performance",
                        "Simple to operate",
                    ],
                    [
                        "No persistence",
                        "Limited data types (strings only)",
                        "No built-in clustering",
                    ],
                    "Simple key-value caching, database query caching, session storage",
                ),
            ],
            recommendation=f"Redis for feature-rich caching, Memcached for simple high-throughput. {FALLBACK_NOTE}",
        )

    if any(word in topic for word in ("queue", "messag", "kafka", "broker", "pubsub", "stream")):
        return ResearchOutput(
            topic=research.topic,
            question="Which message queue should we use?",
            options=[
                _option(
                    "apache-kafka",
                    "Apache Kafka",
                    "Distributed event streaming platform for high-throughput data pipelines",
                    [
                        "Extremely high throughput",
                        "Durable message storage with replay",
                        "Strong ordering guarantees per partition",
                        "Great for event sourcing",
                    ],
                    [
                        "Operational complexity",
                        "Higher latency than in-memory queues",
                        "Steeper learning curve",
                    ],
                    "Event streaming, log aggregation, real-time analytics pipelines",
                ),
                _option(
                    "rabbitmq",
                    "RabbitMQ",
                    "Reliable message broker with flexible routing and multiple protocols",
                    [
                        "Flexible routing with exchanges",
                        "Multiple protocol support (AMQP, MQTT)",
                        "Easy to set up and operate",
                        "Good for complex routing patterns",
                    ],
                    [
                        "Lower throughput than Kafka",
                        "No built-in message replay",
                        "Single point of failure without clustering",
                    ],
                    "Task queues, microservice communication, complex routing",
                ),
            ],
            recommendation=f"Kafka for high-throughput streaming, RabbitMQ for traditional messaging. {FALLBACK_NOTE}",
        )

    return ResearchOutput(
        topic=research.topic,
        question=f"Which {research.topic} approach should we use?",
        options=[
            _option(
                "managed-service",
                "Managed cloud service",
                f"A hosted {research.topic} offering run by a cloud provider",
                [
                    "No infrastructure to operate",
                    "Built-in scaling and backups",
                    "Fast to adopt",
                ],
                [
                    "Higher cost at scale",
                    "Vendor lock-in",
                ],
                "Small teams and fast time to market",
            ),
            _option(
                "self-hosted",
                "Self-hosted open source",
                f"An open-source {research.topic} solution operated by your team",
                [
                    "Full control over configuration",
                    "Lower cost at steady high volume",
                    "No vendor lock-in",
                ],
                [
                    "Operational burden on the team",
                    "Scaling and upgrades are your responsibility",
                ],
                "Teams with operations experience or strict compliance needs",
            ),
        ],
        recommendation=f"Start managed and revisit once scale or cost demands it. {FALLBACK_NOTE}",
    )
