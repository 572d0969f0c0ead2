from __future__ import annotations

import asyncio
import logging
import os
import re
from typing import Any, AsyncIterator, Optional, Sequence

import sentry_sdk
from langchain_core.messages import HumanMessage, SystemMessage

from app.agent.cancel import check_cancelled, race_cancel
from app.agent.llm import generate_structured, retry_structured

from .activity import activity_chunk, truncate_str
from .design import generate_design
from .research import execute_research
from .schemas import (
    AgentMessage,
    ClarifyingQuestion,
    DonePayload,
    ErrorPayload,
    MessagePayload,
    OrchestratorOutput,
    QuestionOption,
    ResearchInput,
    chunk,
)
from .state import GatheredState, Readiness, compute_readiness

logger = logging.getLogger(__name__)

MAX_MESSAGE_CHARS = 500
MAX_TOPIC_CHARS = 30
MAX_QUERY_CHARS = 150
MAX_CONTEXT_CHARS = 300
DEFAULT_TOPIC = "architecture"
DEFAULT_MESSAGE = "Let me think about your architecture."
USER_SAFE_ERROR = "Sorry, something went wrong while working on your architecture. Please try again."

ORCHESTRATOR_SYSTEM_PROMPT = """You are the orchestrating agent of an architecture assistant that helps users design software systems.
You are the only agent that talks to the user. Each turn you pick exactly one mode.

PHASE 1 - GATHER REQUIREMENTS (mode "clarify")
Ask about: what kind of system, expected scale, latency/throughput needs, team expertise and existing infrastructure, budget or time constraints.
Provide "question" with 3-5 short quick-select options (labels of 2-5 words), allowCustom true, and a one-line context explaining why it matters.

PHASE 2 - TECHNOLOGY DECISIONS (mode "research")
When a critical technology choice appears (database, caching, message queue, authentication, deployment), request a comparison.
Provide researchTopic (ONE word, e.g. "database"), researchQuery (a concise search phrase, max 150 chars) and researchContext (the user's situation, max 300 chars).
If the requirements are otherwise complete, also provide designRequirements so the design can follow immediately.

PHASE 3 - ARCHITECTURE (mode "design")
Once the system type, a scale estimate and the key features are known, provide designRequirements: systemType, scale, requirements, decisions (topic, choice, reasoning) and constraints.

mode "respond": a short acknowledgment or explanation with no further action.

RULES
- One question at a time; never repeat a question that was already answered.
- Never assume scale; ask for it.
- Do not trigger research for trivial decisions.
- Keep "message" under 500 characters and free of jargon.
- Always set readyForDesign and list what is still missing in missingInfo.
"""


def _get_int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def build_context(
    history: Sequence[AgentMessage],
    gathered_state: GatheredState,
    *,
    is_ready_for_design: bool = False,
    readiness: Optional[Readiness] = None,
) -> str:
    if not history:
        return "This is the start of a new conversation. The user wants to design a system architecture."

    lines: list[str] = ["## Conversation History", ""]
    history_decisions: list[tuple[str, str]] = []
    for msg in history:
        if msg.role == "user":
            lines.append(f"User: {msg.content}")
            if msg.selected_option:
                lines.append(f"[Selected: {msg.selected_option.value}]")
        elif msg.role == "assistant":
            lines.append(f"Assistant: {msg.content}")
            if msg.research and msg.selected_option:
                history_decisions.append((msg.research.topic, msg.selected_option.value))
        else:
            continue
        lines.append("")

    # A selection recorded in both the history and the gathered state counts once.
    all_decisions = list(dict.fromkeys(history_decisions + [(d.topic, d.choice) for d in gathered_state.decisions]))
    if all_decisions:
        lines.append("## Decisions Made")
        lines.extend(f"- {topic}: {choice}" for topic, choice in all_decisions)
        lines.append("")

    if gathered_state.requirements:
        lines.append("## Gathered Requirements")
        lines.extend(f"- {req}" for req in gathered_state.requirements)
        lines.append("")

    lines.append("## Readiness Status")
    lines.append(f"- Questions answered: {gathered_state.questions_answered}")
    lines.append(f"- Requirements gathered: {len(gathered_state.requirements)}")
    lines.append(f"- Decisions made: {len(all_decisions)}")
    lines.append(f"- READY_FOR_DESIGN: {'YES' if is_ready_for_design else 'NO'}")
    if readiness and readiness.missing:
        lines.append(f"- Still missing: {', '.join(readiness.missing)}")

    if is_ready_for_design:
        lines.append("")
        lines.append(
            'IMPORTANT: The user has provided enough information. Use mode "design" to generate the '
            "architecture. Do not ask more questions unless absolutely critical."
        )
    return "\n".join(lines)


def build_turn_prompt(user_message: str, context: str, *, is_ready_for_design: bool) -> str:
    prompt = (
        f"{context}\n\n"
        f'User\'s message: "{user_message}"\n\n'
        "Determine the appropriate response mode and content.\n\n"
        'IMPORTANT: researchTopic must be ONE word only (e.g. "database", "auth", "cache").'
    )
    if is_ready_for_design:
        prompt += (
            '\n\nCRITICAL: READY_FOR_DESIGN is TRUE. Use mode "design" and provide designRequirements.'
        )
    return prompt


def sanitize_topic(raw: str) -> str:
    first = re.split(r"[,\s]+", raw.strip())[0] if raw and raw.strip() else ""
    token = re.sub(r"[^a-z0-9]", "", first.lower())[:MAX_TOPIC_CHARS]
    return token or DEFAULT_TOPIC


def sanitize_output(output: OrchestratorOutput) -> OrchestratorOutput:
    """Bound free-text fields and make the populated fields agree with ``mode``."""
    updates: dict[str, Any] = {
        "message": truncate_str((output.message or "").strip() or DEFAULT_MESSAGE, MAX_MESSAGE_CHARS),
    }
    if output.research_topic is not None:
        updates["research_topic"] = sanitize_topic(output.research_topic)
    if output.research_query is not None:
        updates["research_query"] = truncate_str(output.research_query, MAX_QUERY_CHARS)
    if output.research_context is not None:
        updates["research_context"] = truncate_str(output.research_context, MAX_CONTEXT_CHARS)

    mode = output.mode
    if mode == "clarify" and output.question is None:
        logger.warning("clarify output without a question; treating as respond")
        mode = "respond"
    elif mode == "design" and output.design_requirements is None:
        logger.warning("design output without designRequirements; treating as respond")
        mode = "respond"
    updates["mode"] = mode

    if mode != "clarify":
        updates["question"] = None
    if mode != "research":
        updates["research_topic"] = None
        updates["research_query"] = None
        updates["research_context"] = None
    if mode in ("clarify", "respond"):
        updates["design_requirements"] = None
    return output.model_copy(update=updates)


def fallback_output() -> OrchestratorOutput:
    return OrchestratorOutput(
        mode="clarify",
        message=(
            "I'd love to help you design your architecture! Let me start by understanding your project better."
        ),
        question=ClarifyingQuestion(
            id="q-project-type",
            question="What type of application are you building?",
            context="This helps me recommend the right architecture pattern",
            options=[
                QuestionOption(id="web", label="Web Application", value="web-app"),
                QuestionOption(id="mobile", label="Mobile App", value="mobile-app"),
                QuestionOption(id="api", label="API / Backend", value="api-backend"),
                QuestionOption(id="realtime", label="Real-time System", value="realtime-system"),
                QuestionOption(id="other", label="Something else", value="other"),
            ],
            allow_custom=True,
            multi_select=False,
        ),
        ready_for_design=False,
        missing_info=["project type", "scale", "requirements"],
    )


async def get_orchestrator_decision(
    user_message: str,
    context: str,
    *,
    is_ready_for_design: bool = False,
    cancel: Optional[asyncio.Event] = None,
) -> OrchestratorOutput:
    messages = [
        SystemMessage(content=ORCHESTRATOR_SYSTEM_PROMPT),
        HumanMessage(content=build_turn_prompt(user_message, context, is_ready_for_design=is_ready_for_design)),
    ]

    async def _attempt():
        return await race_cancel(generate_structured(messages, OrchestratorOutput), cancel)

    result = await retry_structured(
        _attempt,
        retries=_get_int_env("ORCHESTRATOR_MAX_RETRIES", 2),
        label="orchestrator",
    )
    if not result.ok or result.value is None:
        logger.warning("Orchestrator generation exhausted retries; using fallback question")
        return fallback_output()
    return sanitize_output(result.value)


def _message(content: str) -> dict[str, Any]:
    return chunk("message", MessagePayload(content=content, is_complete=True))


async def handle_clarify(output: OrchestratorOutput) -> AsyncIterator[dict[str, Any]]:
    yield activity_chunk("clarifying", "Preparing question")
    yield _message(output.message)
    if output.question is not None:
        yield chunk("question", output.question)


async def handle_design(
    output: OrchestratorOutput,
    *,
    cancel: Optional[asyncio.Event] = None,
    announce: bool = True,
) -> AsyncIterator[dict[str, Any]]:
    if announce:
        yield activity_chunk("designing", "Generating architecture")
        yield _message(output.message)
    if output.design_requirements is None:
        return
    yield activity_chunk("rendering", "Preparing visualization")
    design = await generate_design(output.design_requirements, cancel=cancel)
    yield chunk("design", design)


async def handle_research(
    output: OrchestratorOutput,
    gathered_state: GatheredState,
    *,
    cancel: Optional[asyncio.Event] = None,
) -> AsyncIterator[dict[str, Any]]:
    yield activity_chunk("researching", f"Researching {output.research_topic or DEFAULT_TOPIC}", output.research_query)
    yield _message(output.message)

    if not (output.research_topic and output.research_query and output.research_context):
        return

    yield activity_chunk("comparing", "Comparing options")
    result = await execute_research(
        ResearchInput(
            topic=output.research_topic,
            query=output.research_query,
            context=output.research_context,
        ),
        cancel=cancel,
    )
    yield chunk("research", result)

    choice = result.recommendation or (result.options[0].name if result.options else "pending")
    local_state = gathered_state.with_decision(output.research_topic, choice)
    readiness = compute_readiness(local_state)
    if readiness.ready and output.design_requirements is not None:
        yield activity_chunk("designing", "Generating architecture")
        async for event in handle_design(output, cancel=cancel, announce=False):
            yield event


async def orchestrate(
    user_message: str,
    history: Sequence[AgentMessage] = (),
    gathered_state: Optional[GatheredState] = None,
    is_ready_for_design: bool = False,
    *,
    cancel: Optional[asyncio.Event] = None,
    turn_id: Optional[str] = None,
) -> AsyncIterator[dict[str, Any]]:
    """Run one conversational turn and yield ``{type, data}`` stream events in order.

    The sequence always ends with a ``done`` event unless the turn is cancelled,
    in which case nothing further is yielded.
    """
    state = gathered_state or GatheredState.empty()
    try:
        yield activity_chunk("analyzing", "Analyzing your request")

        readiness = compute_readiness(state)
        ready = is_ready_for_design or readiness.ready
        context = build_context(history, state, is_ready_for_design=ready, readiness=readiness)
        output = await get_orchestrator_decision(
            user_message,
            context,
            is_ready_for_design=ready,
            cancel=cancel,
        )
        logger.info("Turn %s dispatching mode=%s", turn_id or "-", output.mode)

        if output.mode == "clarify":
            handler = handle_clarify(output)
        elif output.mode == "research":
            handler = handle_research(output, state, cancel=cancel)
        elif output.mode == "design":
            handler = handle_design(output, cancel=cancel)
        elif output.mode == "respond":
            handler = None
        else:
            logger.warning("Unrecognized orchestrator mode %r; responding with message only", output.mode)
            handler = None

        if handler is None:
            yield _message(output.message)
        else:
            async for event in handler:
                check_cancelled(cancel)
                yield event

        yield activity_chunk("complete", "Done")
        yield chunk("done", DonePayload(success=True))
    except Exception as exc:
        logger.exception("Turn %s failed", turn_id or "-")
        _report_exception(exc, turn_id)
        yield activity_chunk("error", "An error occurred")
        yield chunk("error", ErrorPayload(message=USER_SAFE_ERROR, code="turn_failed"))
        yield chunk("done", DonePayload(success=False))


def _report_exception(exc: Exception, turn_id: Optional[str]) -> None:
    # Reporting must never break the failure path.
    try:
        with sentry_sdk.new_scope() as scope:
            if turn_id:
                scope.set_tag("turn_id", turn_id)
            sentry_sdk.capture_exception(exc)
    except Exception:
        logger.debug("Sentry capture failed", exc_info=True)
