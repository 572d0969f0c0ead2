import asyncio
import json

import pytest
from langchain_core.messages import AIMessage
from pydantic import ValidationError

from app.agent import llm
from app.agent.architect.schemas import Decision
from app.agent.llm import StructuredResult, classify_error, generate_structured, retry_structured


class FakeRunnable:
    def __init__(self, out=None, exc=None):
        self.out = out
        self.exc = exc

    async def ainvoke(self, messages):
        if self.exc is not None:
            raise self.exc
        return self.out


class FakeLLM:
    def __init__(self, runnable: FakeRunnable):
        self.runnable = runnable
        self.schemas = []

    def with_structured_output(self, schema, include_raw=False):
        assert include_raw is True
        self.schemas.append(schema)
        return self.runnable


def _use_llm(monkeypatch: pytest.MonkeyPatch, runnable: FakeRunnable) -> FakeLLM:
    fake = FakeLLM(runnable)
    monkeypatch.setattr(llm, "make_llm", lambda model=None: fake)
    return fake


def test_classify_error_signatures() -> None:
    with pytest.raises(ValidationError) as info:
        Decision.model_validate({"topic": "db"})

    assert classify_error(info.value).kind == "schema_invalid"
    assert classify_error(json.JSONDecodeError("Expecting value", "", 0)).kind == "malformed_json"
    assert classify_error(RuntimeError("No object generated: response did not match")).kind == "no_object"
    assert classify_error(ConnectionError("connection refused")) is None


def test_retry_structured_returns_first_success() -> None:
    results = [StructuredResult.failure("malformed_json"), StructuredResult.success(Decision(topic="db", choice="pg"))]
    calls = []

    async def attempt():
        calls.append(1)
        return results.pop(0)

    result = asyncio.run(retry_structured(attempt, retries=2, label="test"))

    assert result.ok and result.value.choice == "pg"
    assert len(calls) == 2


def test_retry_structured_returns_last_failure_when_exhausted() -> None:
    kinds = iter(["malformed_json", "truncated", "no_object"])

    async def attempt():
        return StructuredResult.failure(next(kinds))

    result = asyncio.run(retry_structured(attempt, retries=2))

    assert not result.ok
    assert result.error.kind == "no_object"


def test_retry_structured_does_not_catch_fatal_errors() -> None:
    async def attempt():
        raise PermissionError("invalid api key")

    with pytest.raises(PermissionError):
        asyncio.run(retry_structured(attempt, retries=5))


def test_generate_structured_success(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _use_llm(
        monkeypatch,
        FakeRunnable(out={"raw": AIMessage(content=""), "parsed": {"topic": "cache", "choice": "Redis"}, "parsing_error": None}),
    )

    result = asyncio.run(generate_structured(["pick a cache"], Decision))

    assert result.ok
    assert result.value == Decision(topic="cache", choice="Redis")
    assert fake.schemas == [Decision]


def test_generate_structured_flags_truncation(monkeypatch: pytest.MonkeyPatch) -> None:
    raw = AIMessage(content="{", response_metadata={"finish_reason": "length"})
    _use_llm(monkeypatch, FakeRunnable(out={"raw": raw, "parsed": None, "parsing_error": None}))

    result = asyncio.run(generate_structured(["hi"], Decision))

    assert result.error.kind == "truncated"


def test_generate_structured_flags_parsing_error_and_missing_object(monkeypatch: pytest.MonkeyPatch) -> None:
    _use_llm(
        monkeypatch,
        FakeRunnable(out={"raw": AIMessage(content="x"), "parsed": None, "parsing_error": ValueError("bad json")}),
    )
    assert asyncio.run(generate_structured(["hi"], Decision)).error.kind == "malformed_json"

    _use_llm(monkeypatch, FakeRunnable(out={"raw": AIMessage(content=""), "parsed": None, "parsing_error": None}))
    assert asyncio.run(generate_structured(["hi"], Decision)).error.kind == "no_object"


def test_generate_structured_propagates_fatal_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    _use_llm(monkeypatch, FakeRunnable(exc=ConnectionError("connection reset")))

    with pytest.raises(ConnectionError):
        asyncio.run(generate_structured(["hi"], Decision))


def test_normalize_messages_maps_roles() -> None:
    messages = llm.normalize_messages(
        [{"role": "system", "content": "s"}, {"role": "assistant", "content": "a"}, "u"]
    )

    assert [m.type for m in messages] == ["system", "ai", "human"]
