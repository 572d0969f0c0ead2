import asyncio
import json

import httpx
import pytest

from app.agent.architect.research import fallback_research
from app.agent.architect.schemas import ResearchInput
from app.client.session import ChatSession
from app.client.stream_client import AgentStreamClient, StreamHandlers, dispatch_event
from app.services.stream import DONE_FRAME, encode_event

QUESTION = {
    "id": "q-scale",
    "question": "How many users?",
    "options": [
        {"id": "small", "label": "Under 1k", "value": "under 1k users"},
        {"id": "large", "label": "100k+", "value": "100k+ users"},
    ],
    "allowCustom": True,
    "multiSelect": False,
}

STREAM = [
    {"type": "activity", "data": {"id": "a1", "type": "analyzing", "message": "Analyzing", "timestamp": 1}},
    {"type": "activity", "data": {"id": "a2", "type": "clarifying", "message": "Preparing", "timestamp": 2}},
    {"type": "message", "data": {"content": "What scale?", "isComplete": True}},
    {"type": "question", "data": QUESTION},
    {"type": "activity", "data": {"id": "a3", "type": "complete", "message": "Done", "timestamp": 3}},
    {"type": "done", "data": {"success": True}},
]


def _body() -> bytes:
    return ("".join(encode_event(event) for event in STREAM) + DONE_FRAME).encode()


class Recorder:
    def __init__(self):
        self.calls = []

    def handlers(self) -> StreamHandlers:
        def record(name):
            return lambda *args: self.calls.append((name, *args))

        return StreamHandlers(
            on_activity=record("activity"),
            on_message=record("message"),
            on_question=record("question"),
            on_research=record("research"),
            on_design=record("design"),
            on_error=record("error"),
            on_complete=record("complete"),
        )

    def names(self):
        return [call[0] for call in self.calls]


def _research_message(session: ChatSession) -> None:
    research = fallback_research(ResearchInput(topic="database", query="q", context="c"))
    session.add_assistant_message("Compare these", research=research)


def test_dispatch_event_routes_by_type() -> None:
    recorder = Recorder()
    handlers = recorder.handlers()

    dispatch_event({"type": "message", "data": {"content": "hi"}}, handlers)
    dispatch_event({"type": "error", "data": {"message": "boom"}}, handlers)
    dispatch_event({"type": "done", "data": {"success": True}}, handlers)
    dispatch_event({"type": "mystery", "data": {}}, StreamHandlers())

    assert recorder.calls == [("message", "hi"), ("error", "boom")]


def test_stream_client_dispatches_events_and_tracks_activities() -> None:
    seen_payloads = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/chat"
        seen_payloads.append(json.loads(request.content))
        return httpx.Response(200, content=_body(), headers={"Content-Type": "text/event-stream"})

    client = AgentStreamClient("http://architect.test", transport=httpx.MockTransport(handler))
    recorder = Recorder()

    asyncio.run(client.start_stream({"message": "chat app"}, recorder.handlers()))

    assert seen_payloads == [{"message": "chat app"}]
    assert recorder.names() == ["activity", "activity", "message", "question", "activity", "complete"]
    assert [a["id"] for a in client.activities] == ["a1", "a3"]
    assert client.current_activity is None
    assert client.is_processing is False


def test_stream_client_reports_http_errors() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(400, json={"error": "Message is required"}))
    client = AgentStreamClient("http://architect.test", transport=transport)
    recorder = Recorder()

    asyncio.run(client.start_stream({"message": ""}, recorder.handlers()))

    assert recorder.names() == ["error"]
    assert "400" in recorder.calls[0][1]


def test_starting_a_stream_aborts_the_previous_one() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        if json.loads(request.content)["message"] == "slow":
            await asyncio.sleep(10)
        return httpx.Response(200, content=_body())

    async def scenario():
        client = AgentStreamClient("http://architect.test", transport=httpx.MockTransport(handler))
        first, second = Recorder(), Recorder()
        pending = asyncio.create_task(client.start_stream({"message": "slow"}, first.handlers()))
        await asyncio.sleep(0.05)
        await client.start_stream({"message": "fast"}, second.handlers())
        await asyncio.wait_for(pending, timeout=1)
        return first, second

    first, second = asyncio.run(scenario())

    assert first.calls == []
    assert second.names()[-1] == "complete"


def test_session_records_first_message_as_requirement() -> None:
    session = ChatSession(session_id="s-1")

    session.add_user_message("I want a chat app")
    session.add_user_message("with group chats")

    assert session.gathered_state.requirements == ("I want a chat app",)
    assert session.is_ready_for_design() is False


def test_session_answer_question_updates_state_and_message() -> None:
    session = ChatSession()
    session.add_user_message("chat app")
    session.add_assistant_message("What scale?", question=QUESTION)

    selection = session.answer_question("large")

    assert selection.value == "100k+ users"
    assert session.messages[-1].selected_option == selection
    assert session.gathered_state.questions_answered == 1
    assert session.gathered_state.requirements == ("chat app", "100k+ users")
    with pytest.raises(LookupError):
        session.answer_question("small")


def test_session_select_research_option_records_decision() -> None:
    session = ChatSession()
    session.add_user_message("chat app")
    _research_message(session)

    session.select_research_option("postgresql")

    decision = session.gathered_state.decisions[0]
    assert (decision.topic, decision.choice) == ("database", "PostgreSQL")
    assert session.is_ready_for_design() is True
    with pytest.raises(LookupError):
        session.select_research_option("mongodb")


def test_session_turn_request_carries_history_and_state() -> None:
    session = ChatSession(session_id="s-9")
    session.add_user_message("chat app")
    _research_message(session)
    session.select_research_option("postgresql")

    payload = session.to_turn_request("design it")

    assert payload["message"] == "design it"
    assert payload["sessionId"] == "s-9"
    assert payload["isReadyForDesign"] is True
    assert [m["role"] for m in payload["messages"]] == ["user", "assistant"]
    assert payload["messages"][1]["selectedOption"]["value"] == "PostgreSQL"
    assert payload["gatheredState"]["decisions"] == [{"topic": "database", "choice": "PostgreSQL"}]


def test_session_stream_handlers_fold_reply_into_one_message() -> None:
    session = ChatSession()
    handlers = session.stream_handlers()

    handlers.on_message("What scale?")
    handlers.on_question(QUESTION)

    assert len(session.messages) == 1
    assert session.messages[0].question.id == "q-scale"


def test_session_send_posts_history_before_the_new_message() -> None:
    payloads = []

    def handler(request: httpx.Request) -> httpx.Response:
        payloads.append(json.loads(request.content))
        return httpx.Response(200, content=_body())

    session = ChatSession()
    client = AgentStreamClient("http://architect.test", transport=httpx.MockTransport(handler))

    asyncio.run(session.send(client, "I want a chat app"))

    assert payloads[0]["messages"] == []
    assert [m.role for m in session.messages] == ["user", "assistant"]
    assert session.messages[1].question.id == "q-scale"


def test_session_stream_handlers_keep_the_design_in_history() -> None:
    design = {
        "nodes": [
            {"id": "web", "label": "Web", "type": "client", "tier": 1, "position": {"x": 100, "y": 100}},
            {"id": "api", "label": "API", "type": "service", "tier": 4, "position": {"x": 400, "y": 100}},
            {"id": "db", "label": "PostgreSQL", "type": "database", "tier": 5, "position": {"x": 700, "y": 100}},
        ],
        "edges": [{"id": "e1", "source": "web", "target": "api"}],
        "summary": "Three tiers.",
    }
    session = ChatSession()
    handlers = session.stream_handlers()

    handlers.on_message("Here is your architecture.")
    handlers.on_design(design)

    assert len(session.messages) == 1
    assert [node.id for node in session.messages[0].design.nodes] == ["web", "api", "db"]
    replayed = session.to_turn_request("thanks")["messages"][0]
    assert replayed["design"]["edges"] == [{"id": "e1", "source": "web", "target": "api"}]
