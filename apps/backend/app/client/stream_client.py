from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx

from app.services.stream import SSEParser

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000"
TERMINAL_ACTIVITIES = ("complete", "error")


@dataclass
class StreamHandlers:
    on_activity: Optional[Callable[[dict[str, Any]], None]] = None
    on_message: Optional[Callable[[str], None]] = None
    on_question: Optional[Callable[[dict[str, Any]], None]] = None
    on_research: Optional[Callable[[dict[str, Any]], None]] = None
    on_design: Optional[Callable[[dict[str, Any]], None]] = None
    on_error: Optional[Callable[[str], None]] = None
    on_complete: Optional[Callable[[], None]] = None


def _call(callback: Optional[Callable[..., None]], *args: Any) -> None:
    if callback is not None:
        callback(*args)


def dispatch_event(event: dict[str, Any], handlers: StreamHandlers) -> None:
    """Route one decoded ``{type, data}`` event to its handler. Unknown types are ignored."""
    event_type = event.get("type")
    data = event.get("data")
    if not isinstance(data, dict):
        data = {}
    if event_type == "activity":
        _call(handlers.on_activity, data)
    elif event_type == "message":
        _call(handlers.on_message, str(data.get("content", "")))
    elif event_type == "question":
        _call(handlers.on_question, data)
    elif event_type == "research":
        _call(handlers.on_research, data)
    elif event_type == "design":
        _call(handlers.on_design, data)
    elif event_type == "error":
        _call(handlers.on_error, str(data.get("message", "Unknown error")))
    elif event_type == "done":
        logger.debug("Turn finished (success=%s)", data.get("success"))


class AgentStreamClient:
    """Consumes the ``/api/chat`` event stream.

    At most one stream is in flight: ``start_stream`` aborts the previous one
    before starting, and an aborted stream ends quietly without calling any
    handler.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: float = 300.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or os.getenv("AI_ARCHITECT_URL") or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._task: Optional[asyncio.Task] = None
        self._aborted: set[asyncio.Task] = set()
        self.current_activity: Optional[dict[str, Any]] = None
        self.activities: list[dict[str, Any]] = []

    @property
    def is_processing(self) -> bool:
        return self._task is not None and not self._task.done()

    def reset(self) -> None:
        self.current_activity = None
        self.activities = []

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._aborted.add(self._task)
            self._task.cancel()

    async def start_stream(self, payload: dict[str, Any], handlers: Optional[StreamHandlers] = None) -> None:
        self.cancel()
        self.reset()
        task = asyncio.create_task(self._run(payload, handlers or StreamHandlers()))
        self._task = task
        try:
            await task
        except asyncio.CancelledError:
            if task in self._aborted:
                self._aborted.discard(task)
                return
            raise
        finally:
            if self._task is task:
                self._task = None
                self.current_activity = None

    def _track_activity(self, activity: dict[str, Any]) -> None:
        if activity.get("type") in TERMINAL_ACTIVITIES:
            self.activities.append(activity)
            self.current_activity = None
            return
        previous = self.current_activity
        if previous is not None and previous.get("id") != activity.get("id"):
            self.activities.append(previous)
        self.current_activity = activity

    async def _run(self, payload: dict[str, Any], handlers: StreamHandlers) -> None:
        parser = SSEParser()
        on_activity = handlers.on_activity

        def track(activity: dict[str, Any]) -> None:
            self._track_activity(activity)
            _call(on_activity, activity)

        routed = StreamHandlers(**{**vars(handlers), "on_activity": track})
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                async with client.stream("POST", "/api/chat", json=payload) as response:
                    if response.status_code >= 400:
                        await response.aread()
                        raise httpx.HTTPStatusError(
                            f"HTTP error! status: {response.status_code}",
                            request=response.request,
                            response=response,
                        )
                    async for text in response.aiter_text():
                        for event in parser.feed(text):
                            dispatch_event(event, routed)
                    for event in parser.flush():
                        dispatch_event(event, routed)
        except httpx.HTTPError as exc:
            logger.warning("Agent stream failed: %s", exc)
            _call(handlers.on_error, str(exc))
            return
        _call(handlers.on_complete)
