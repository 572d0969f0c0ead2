import json

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from app.schemas.chat import parse_turn_request
from app.services.errors import InvalidRequestError
from app.services.turns import stream_turn

chat_router = APIRouter(prefix="/api", tags=["chat"])

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


async def read_json(request: Request):
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidRequestError("Request body must be valid JSON") from exc


@chat_router.post("/chat")
async def chat(request: Request):
    turn = parse_turn_request(await read_json(request))
    return StreamingResponse(stream_turn(turn), media_type="text/event-stream", headers=SSE_HEADERS)
