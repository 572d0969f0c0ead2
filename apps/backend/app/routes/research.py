from typing import Optional

from fastapi import APIRouter, Query, Request, status
from starlette.concurrency import run_in_threadpool

from app.routes.chat import read_json
from app.schemas.research import ResearchCreateResponse, ResearchStatusResponse
from app.services import research_tasks as research_service

research_router = APIRouter(prefix="/api/research", tags=["research"])


@research_router.post("", status_code=status.HTTP_201_CREATED, response_model=ResearchCreateResponse)
async def create_research(request: Request):
    body = await read_json(request)
    return await run_in_threadpool(research_service.create_research, body)


# Query-string form kept for clients that cannot build path parameters.
@research_router.get("", response_model=ResearchStatusResponse, response_model_exclude_none=True)
def get_research_by_query(research_id: Optional[str] = Query(default=None, alias="researchId")):
    return research_service.fetch_research(research_id or "")


@research_router.get("/{research_id}", response_model=ResearchStatusResponse, response_model_exclude_none=True)
def get_research(research_id: str):
    return research_service.fetch_research(research_id)
