from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Iterable, Optional

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"
FRAME_SEPARATOR = "\n\n"
DONE_FRAME = f"{DATA_PREFIX}{DONE_SENTINEL}{FRAME_SEPARATOR}"

SERIALIZATION_ERROR_EVENT: dict[str, Any] = {
    "type": "error",
    "data": {"message": "Failed to serialize event", "code": "serialization_error"},
}


def encode_event(event: dict[str, Any]) -> str:
    """Frame one ``{type, data}`` event; an unserializable event becomes a minimal error frame."""
    try:
        payload = json.dumps(event, ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as exc:
        logger.warning("Could not serialize %s event: %s", event.get("type", "?"), exc)
        payload = json.dumps(SERIALIZATION_ERROR_EVENT)
    return f"{DATA_PREFIX}{payload}{FRAME_SEPARATOR}"


async def sse_frames(events: AsyncIterator[dict[str, Any]]) -> AsyncIterator[str]:
    """Drain ``events`` in order as SSE frames, always ending with the ``[DONE]`` frame.

    Cancellation propagates without emitting further frames.
    """
    try:
        async for event in events:
            yield encode_event(event)
    except Exception:
        logger.exception("Event producer failed mid-stream")
        yield encode_event(
            {"type": "error", "data": {"message": "The response stream failed.", "code": "stream_failed"}}
        )
        yield encode_event({"type": "done", "data": {"success": False}})
    finally:
        aclose = getattr(events, "aclose", None)
        if aclose is not None:
            await aclose()
    yield DONE_FRAME


class SSEParser:
    """Incremental parser for ``data:`` frames separated by blank lines.

    ``feed`` accepts arbitrary text fragments and returns the events completed
    by that fragment. Unparseable payloads are logged and skipped.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self.done = False

    def feed(self, text: str) -> list[dict[str, Any]]:
        self._buffer = (self._buffer + text).replace("\r\n", "\n")
        frames = self._buffer.split(FRAME_SEPARATOR)
        self._buffer = frames.pop()
        events: list[dict[str, Any]] = []
        for frame in frames:
            event = self._parse_frame(frame)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[dict[str, Any]]:
        """Parse whatever is left once the body has ended."""
        rest, self._buffer = self._buffer, ""
        if not rest.strip():
            return []
        event = self._parse_frame(rest)
        return [event] if event is not None else []

    def _parse_frame(self, frame: str) -> Optional[dict[str, Any]]:
        data_lines = [line[len(DATA_PREFIX):] for line in frame.split("\n") if line.startswith(DATA_PREFIX)]
        if not data_lines:
            return None
        data = "\n".join(data_lines)
        if data == DONE_SENTINEL:
            self.done = True
            return None
        try:
            event = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("Skipping unparseable stream chunk: %.200s", data)
            return None
        if not isinstance(event, dict) or "type" not in event:
            logger.warning("Skipping stream chunk without a type: %.200s", data)
            return None
        return event


def parse_frames(frames: Iterable[str]) -> tuple[list[dict[str, Any]], bool]:
    """Parse a complete sequence of text fragments; returns the events and whether ``[DONE]`` was seen."""
    parser = SSEParser()
    events: list[dict[str, Any]] = []
    for fragment in frames:
        events.extend(parser.feed(fragment))
    events.extend(parser.flush())
    return events, parser.done
