from fastapi import APIRouter, Request

from app.routes.chat import read_json
from app.schemas.decision import DecisionResponse
from app.services.decisions import record_decision

decision_router = APIRouter(prefix="/api", tags=["decision"])


@decision_router.post("/decision", response_model=DecisionResponse)
async def decision(request: Request):
    return record_decision(await read_json(request))
