from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import ValidationError

from app.agent.architect.research import build_research_instructions, map_research_options
from app.agent.architect.research_client import (
    RESEARCH_OUTPUT_SCHEMA,
    ResearchClient,
    get_research_client,
    parsed_output,
    task_status,
)
from app.schemas.research import ResearchCreateRequest, ResearchCreateResponse, ResearchStatusResponse
from app.services.errors import InvalidRequestError, ResearchProviderError, ResearchUnavailableError

logger = logging.getLogger(__name__)


def create_research(body: Any, *, client: Optional[ResearchClient] = None) -> ResearchCreateResponse:
    try:
        req = ResearchCreateRequest.model_validate(body)
    except ValidationError as exc:
        raise InvalidRequestError("Question and context are required") from exc

    research_client = client or get_research_client()
    instructions = build_research_instructions(req.question, req.context)
    try:
        research_id = research_client.create_task(instructions, RESEARCH_OUTPUT_SCHEMA)
    except ResearchProviderError as exc:
        logger.warning("Research creation failed: %s", exc)
        raise ResearchUnavailableError(f"Failed to create research task: {exc}") from exc
    return ResearchCreateResponse(research_id=research_id)


def fetch_research(research_id: str, *, client: Optional[ResearchClient] = None) -> ResearchStatusResponse:
    research_id = (research_id or "").strip()
    if not research_id:
        raise InvalidRequestError("Research ID is required")

    research_client = client or get_research_client()
    try:
        task = research_client.get_task(research_id)
    except ResearchProviderError as exc:
        logger.warning("Research %s fetch failed: %s", research_id, exc)
        return ResearchStatusResponse(research_id=research_id, status="pending", error=str(exc))

    status = task_status(task)
    if status in ("failed", "canceled", "cancelled"):
        return ResearchStatusResponse(research_id=research_id, status="pending", error=f"Research {status}")
    if status != "completed":
        return ResearchStatusResponse(research_id=research_id, status="pending", error="Research still in progress")

    data = parsed_output(task)
    if not data:
        return ResearchStatusResponse(
            research_id=research_id, status="pending", error="No parsed data in research output"
        )
    try:
        options = map_research_options(data)
    except (ResearchProviderError, ValidationError) as exc:
        logger.warning("Research %s returned malformed options: %s", research_id, exc)
        return ResearchStatusResponse(research_id=research_id, status="pending", error="Research output malformed")

    return ResearchStatusResponse(
        research_id=research_id,
        status="completed",
        options=options,
        recommendation=str(data.get("recommendation") or ""),
    )
