from __future__ import annotations

import secrets
import time
from typing import Optional

from .schemas import ActivityEvent, ActivityType, chunk

MAX_MESSAGE_CHARS = 200
MAX_DETAIL_CHARS = 300


def now_ms() -> int:
    return int(time.time() * 1000)


def truncate_str(value: str, max_chars: int, *, suffix: str = "...") -> str:
    if not isinstance(value, str):
        value = str(value)
    if len(value) <= max_chars:
        return value
    return value[: max(0, max_chars - len(suffix))] + suffix


def create_activity(
    activity_type: ActivityType,
    message: str,
    detail: Optional[str] = None,
    *,
    progress: Optional[float] = None,
) -> ActivityEvent:
    ts = now_ms()
    return ActivityEvent(
        id=f"activity-{ts}-{secrets.token_hex(3)[:5]}",
        type=activity_type,
        message=truncate_str(message, MAX_MESSAGE_CHARS),
        detail=truncate_str(detail, MAX_DETAIL_CHARS) if isinstance(detail, str) else None,
        progress=progress,
        timestamp=ts,
    )


def activity_chunk(
    activity_type: ActivityType,
    message: str,
    detail: Optional[str] = None,
) -> dict:
    return chunk("activity", create_activity(activity_type, message, detail))
