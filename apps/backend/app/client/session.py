from __future__ import annotations

from typing import Any, Optional
from uuid import uuid4

from app.agent.architect.activity import now_ms
from app.agent.architect.schemas import (
    AgentMessage,
    ClarifyingQuestion,
    DesignOutput,
    ResearchOutput,
    SelectedOption,
)
from app.agent.architect.state import GatheredState, compute_readiness
from app.client.stream_client import StreamHandlers


class ChatSession:
    """Client-side owner of one conversation's messages and gathered state.

    Nothing here is persisted; the whole state travels with every turn.
    """

    def __init__(self, session_id: Optional[str] = None) -> None:
        self.session_id = session_id or str(uuid4())
        self.messages: list[AgentMessage] = []
        self.gathered_state = GatheredState.empty()

    def is_ready_for_design(self) -> bool:
        return compute_readiness(self.gathered_state).ready

    def _append(self, role: str, content: str, **extra: Any) -> AgentMessage:
        message = AgentMessage(id=str(uuid4()), role=role, content=content, timestamp=now_ms(), **extra)
        self.messages.append(message)
        return message

    def add_user_message(self, content: str, *, selected_option: Optional[SelectedOption] = None) -> AgentMessage:
        if not any(m.role == "user" for m in self.messages):
            self.gathered_state = self.gathered_state.with_requirement(content)
        return self._append("user", content, selected_option=selected_option)

    def add_assistant_message(
        self,
        content: str,
        *,
        question: Optional[ClarifyingQuestion] = None,
        research: Optional[ResearchOutput] = None,
        design: Optional[DesignOutput] = None,
    ) -> AgentMessage:
        return self._append("assistant", content, question=question, research=research, design=design)

    def _latest_open(self, attr: str) -> Optional[int]:
        for index in range(len(self.messages) - 1, -1, -1):
            message = self.messages[index]
            if getattr(message, attr) is not None:
                return index if message.selected_option is None else None
        return None

    def _attach_selection(self, index: int, selection: SelectedOption) -> None:
        self.messages[index] = self.messages[index].model_copy(update={"selected_option": selection})

    def answer_question(self, option_id: str, value: Optional[str] = None) -> SelectedOption:
        """Answer the most recent open question; the answer also becomes a requirement."""
        index = self._latest_open("question")
        if index is None:
            raise LookupError("No open question to answer")
        question = self.messages[index].question
        option = next((o for o in question.options if o.id == option_id), None)
        if option is None and value is None:
            raise LookupError(f"Unknown option {option_id!r} for question {question.id!r}")
        selection = SelectedOption(
            question_id=question.id, option_id=option_id, value=value or option.value
        )
        self._attach_selection(index, selection)
        self.gathered_state = self.gathered_state.with_answer(selection.value)
        return selection

    def select_research_option(self, option_id: str) -> SelectedOption:
        index = self._latest_open("research")
        if index is None:
            raise LookupError("No open research comparison")
        research = self.messages[index].research
        option = next((o for o in research.options if o.id == option_id), None)
        if option is None:
            raise LookupError(f"Unknown option {option_id!r} for topic {research.topic!r}")
        selection = SelectedOption(question_id=research.topic, option_id=option.id, value=option.name)
        self._attach_selection(index, selection)
        self.gathered_state = self.gathered_state.with_decision(research.topic, option.name)
        return selection

    def to_turn_request(self, message: str) -> dict[str, Any]:
        """Body for ``POST /api/chat``; ``messages`` is the history before ``message``."""
        return {
            "message": message,
            "messages": [m.to_wire() for m in self.messages],
            "gatheredState": self.gathered_state.to_wire(),
            "isReadyForDesign": self.is_ready_for_design(),
            "sessionId": self.session_id,
        }

    def stream_handlers(self, **overrides: Any) -> StreamHandlers:
        """Handlers that fold streamed messages, questions, comparisons and designs into the history."""

        def on_message(content: str) -> None:
            self.add_assistant_message(content)

        def on_question(data: dict[str, Any]) -> None:
            self._attach_to_reply("question", ClarifyingQuestion.model_validate(data))

        def on_research(data: dict[str, Any]) -> None:
            self._attach_to_reply("research", ResearchOutput.model_validate(data))

        def on_design(data: dict[str, Any]) -> None:
            self._attach_to_reply("design", DesignOutput.model_validate(data))

        handlers = StreamHandlers(
            on_message=on_message, on_question=on_question, on_research=on_research, on_design=on_design
        )
        for name, callback in overrides.items():
            setattr(handlers, name, callback)
        return handlers

    def _attach_to_reply(self, attr: str, value: Any) -> None:
        last = self.messages[-1] if self.messages else None
        open_reply = last is not None and last.role == "assistant"
        if open_reply and last.question is None and last.research is None and last.design is None:
            self.messages[-1] = last.model_copy(update={attr: value})
        else:
            self.add_assistant_message("", **{attr: value})

    async def send(self, client: Any, message: str, handlers: Optional[StreamHandlers] = None) -> None:
        payload = self.to_turn_request(message)
        self.add_user_message(message)
        await client.start_stream(payload, handlers or self.stream_handlers())
