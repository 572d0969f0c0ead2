from __future__ import annotations
from dataclasses import dataclass
from functools import lru_cache
import json
import logging
import os
from typing import Any, Awaitable, Callable, Generic, Literal, Optional, Type, TypeVar
from langchain_core.exceptions import OutputParserException
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel, ValidationError
from langchain_openai import ChatOpenAI

T = TypeVar("T", bound=BaseModel)

logger = logging.getLogger(__name__)

RecoverableKind = Literal["truncated", "malformed_json", "schema_invalid", "no_object"]

# Lower-cased fragments of provider/parser messages that mean "the model produced
# unusable output", as opposed to transport or auth failures.
_RECOVERABLE_SIGNATURES: tuple[tuple[str, RecoverableKind], ...] = (
    ("no object generated", "no_object"),
    ("unterminated", "malformed_json"),
    ("json", "malformed_json"),
    ("parse", "malformed_json"),
    ("too_big", "schema_invalid"),
    ("too_small", "schema_invalid"),
    ("schema", "schema_invalid"),
    ("validation error", "schema_invalid"),
)


@dataclass(frozen=True)
class RecoverableError:
    kind: RecoverableKind
    detail: str = ""


@dataclass(frozen=True)
class StructuredResult(Generic[T]):
    """Outcome of one structured generation attempt: a value or a recoverable error."""

    value: Optional[T] = None
    error: Optional[RecoverableError] = None

    @property
    def ok(self) -> bool:
        return self.value is not None and self.error is None

    @classmethod
    def success(cls, value: T) -> "StructuredResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: RecoverableKind, detail: str = "") -> "StructuredResult[T]":
        return cls(error=RecoverableError(kind=kind, detail=detail[:900]))


def _to_message(x: Any) -> BaseMessage:
    if isinstance(x, BaseMessage):
        return x
    if isinstance(x, str):
        return HumanMessage(content=x)
    if isinstance(x, dict):
        role = (x.get("role") or "user").lower()
        content = x.get("content", "")
        if role == "system":
            return SystemMessage(content=str(content))
        if role in ("assistant", "ai"):
            return AIMessage(content=str(content))
        return HumanMessage(content=str(content))
    return HumanMessage(content=str(x))


def normalize_messages(messages: list[Any]) -> list[BaseMessage]:
    return [_to_message(m) for m in (messages or [])]


@lru_cache(maxsize=4)
def make_llm(model: str | None = None) -> ChatOpenAI:
    model_name = model or os.getenv("CHAT_OPENAI_MODEL", "gpt-4o-mini")
    max_out = int(os.getenv("CHAT_OPENAI_MAX_OUTPUT_TOKENS", "4000"))
    temperature = float(os.getenv("CHAT_OPENAI_TEMPERATURE", "0.2"))
    return ChatOpenAI(model=model_name, max_tokens=max_out, temperature=temperature)


def classify_error(exc: BaseException) -> Optional[RecoverableError]:
    """Map an exception to a recoverable error signature, or None if it is fatal."""
    if isinstance(exc, ValidationError):
        return RecoverableError(kind="schema_invalid", detail=str(exc)[:900])
    if isinstance(exc, (json.JSONDecodeError, OutputParserException)):
        return RecoverableError(kind="malformed_json", detail=str(exc)[:900])
    text = f"{type(exc).__name__}: {exc}".lower()
    for fragment, kind in _RECOVERABLE_SIGNATURES:
        if fragment in text:
            return RecoverableError(kind=kind, detail=str(exc)[:900])
    return None


def _finish_reason(raw_msg: Any) -> str:
    meta = getattr(raw_msg, "response_metadata", None) or {}
    return str(meta.get("finish_reason") or "").lower()


async def generate_structured(
    messages: list[Any],
    schema: Type[T],
    *,
    model: str | None = None,
) -> StructuredResult[T]:
    """Run one structured generation attempt.

    Truncated output and parse/validation failures come back as a failed
    ``StructuredResult``; any other exception propagates to the caller.
    """
    ms = normalize_messages(messages)
    llm = make_llm(model=model)
    try:
        runnable = llm.with_structured_output(schema, include_raw=True)
        out = await runnable.ainvoke(ms)
    except Exception as exc:
        recoverable = classify_error(exc)
        if recoverable is None:
            raise
        return StructuredResult(error=recoverable)

    raw_msg = out.get("raw")
    if _finish_reason(raw_msg) == "length":
        return StructuredResult.failure("truncated", "finish_reason=length")

    parsing_error = out.get("parsing_error")
    if parsing_error:
        recoverable = classify_error(parsing_error) or RecoverableError(
            kind="malformed_json", detail=str(parsing_error)[:900]
        )
        return StructuredResult(error=recoverable)

    parsed = out.get("parsed")
    if parsed is None:
        return StructuredResult.failure("no_object", "No object generated")
    if not isinstance(parsed, schema):
        try:
            parsed = schema.model_validate(parsed)
        except ValidationError as exc:
            return StructuredResult.failure("schema_invalid", str(exc))
    return StructuredResult.success(parsed)


async def retry_structured(
    attempt: Callable[[], Awaitable[StructuredResult[T]]],
    *,
    retries: int = 2,
    label: str = "structured",
) -> StructuredResult[T]:
    """Call ``attempt`` until it succeeds, at most ``retries`` extra times.

    Returns the first successful result, or the last failure once the budget is
    spent. Exceptions raised by ``attempt`` are not caught.
    """
    last: StructuredResult[T] = StructuredResult.failure("no_object", "not attempted")
    total = max(1, retries + 1)
    for n in range(total):
        last = await attempt()
        if last.ok:
            return last
        err = last.error
        logger.warning(
            "%s generation attempt %d/%d failed (%s): %s",
            label,
            n + 1,
            total,
            err.kind if err else "unknown",
            err.detail if err else "",
        )
    return last
