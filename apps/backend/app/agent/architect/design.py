from __future__ import annotations

import asyncio
import logging
import os
from typing import Mapping, Optional

from langchain_core.messages import HumanMessage, SystemMessage

from app.agent.cancel import race_cancel
from app.agent.llm import generate_structured, retry_structured
from app.services.errors import DesignGenerationError

from .layout import apply_layout
from .schemas import DesignDraft, DesignEdge, DesignOutput, DesignRequirements, NodeType, PlacedNode

logger = logging.getLogger(__name__)

MIN_TIER = 1
MAX_TIER = 5
DEFAULT_TIER = 4

TIER_BY_TYPE: Mapping[NodeType, int] = {
    "client": 1,
    "cdn": 2,
    "external": 2,
    "gateway": 3,
    "auth": 3,
    "server": 4,
    "service": 4,
    "api": 4,
    "monitoring": 4,
    "queue": 5,
    "cache": 5,
    "database": 5,
    "storage": 5,
}

DESIGN_SYSTEM_PROMPT = """You are the design step of an architecture assistant. You turn gathered requirements into a tiered architecture graph that a canvas renders automatically.
You never talk to the user; your output is rendered as a diagram.

TIERS (every node MUST have one):
- 1 CLIENTS: web, mobile and desktop apps, external users
- 2 EDGE: CDN, DNS, WAF, push notification and other third-party edge services
- 3 GATEWAY: load balancers, API gateways, reverse proxies, auth services
- 4 SERVICES: application servers, microservices, workers, background jobs
- 5 DATA: databases, caches, message queues, object storage

NODE TYPES (use exactly one of these):
client, cdn, gateway, server, service, api, queue, cache, database, storage, auth, monitoring, external

RULES:
- Between 5 and 15 nodes. Never fewer than 3.
- Every node except tier 1 has at least one incoming edge.
- Node ids are unique kebab-case (e.g. "user-service", "postgres-primary").
- Labels name the technology or the component; no generic names like "Service A".
- Fill "technology" whenever it is known (e.g. postgresql, redis, kafka, nginx, react, nodejs).
- Edges reference node ids that exist in "nodes".
- Do not output coordinates; only tiers.
- The summary is 2-3 sentences.
"""


def _get_int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def build_design_prompt(req: DesignRequirements) -> str:
    if req.decisions:
        decisions_text = "\n".join(
            f"- {d.topic}: {d.choice}" + (f" ({d.reasoning})" if d.reasoning else "") for d in req.decisions
        )
    else:
        decisions_text = "No specific technology decisions made - use sensible defaults"

    if req.constraints:
        constraints_text = "\n".join(f"- {c}" for c in req.constraints)
    else:
        constraints_text = "No specific constraints"

    requirements_text = "\n".join(f"- {r}" for r in req.requirements) or "- (none stated)"

    return (
        "Generate an architecture diagram for the following system:\n\n"
        f"## System Type\n{req.system_type}\n\n"
        f"## Scale\n{req.scale}\n\n"
        f"## Requirements\n{requirements_text}\n\n"
        f"## Technology Decisions\n{decisions_text}\n\n"
        f"## Constraints\n{constraints_text}\n\n"
        "Create a clear, production-ready architecture with appropriate components and connections.\n"
        "Use the tier system (1-5) for positioning and specify technologies for each component.\n"
    )


def resolve_tier(node_type: str, tier: Optional[int]) -> int:
    if tier is None:
        return TIER_BY_TYPE.get(node_type, DEFAULT_TIER)  # type: ignore[arg-type]
    return min(MAX_TIER, max(MIN_TIER, int(tier)))


def validate_design(draft: DesignDraft) -> DesignOutput:
    """Repair a model-produced graph: drop dangling edges, clamp tiers, lay out nodes."""
    nodes: list[PlacedNode] = []
    seen: set[str] = set()
    for node in draft.nodes:
        if node.id in seen:
            logger.warning("Dropping duplicate design node id %r", node.id)
            continue
        seen.add(node.id)
        fields = node.model_dump(exclude={"tier"})
        nodes.append(PlacedNode(**fields, tier=resolve_tier(node.type, node.tier)))

    edges: list[DesignEdge] = []
    for edge in draft.edges:
        if edge.source in seen and edge.target in seen:
            edges.append(edge)
        else:
            logger.info("Dropping design edge %s (%s -> %s): unknown endpoint", edge.id, edge.source, edge.target)

    return DesignOutput(nodes=apply_layout(nodes), edges=edges, summary=draft.summary)


async def generate_design(
    req: DesignRequirements,
    *,
    cancel: Optional[asyncio.Event] = None,
) -> DesignOutput:
    messages = [SystemMessage(content=DESIGN_SYSTEM_PROMPT), HumanMessage(content=build_design_prompt(req))]

    async def _attempt():
        return await race_cancel(generate_structured(messages, DesignDraft), cancel)

    result = await retry_structured(
        _attempt,
        retries=_get_int_env("DESIGN_MAX_RETRIES", 2),
        label="design",
    )
    if not result.ok or result.value is None:
        detail = result.error.detail if result.error else "unknown"
        raise DesignGenerationError(f"Design generation failed: {detail}")
    return validate_design(result.value)
