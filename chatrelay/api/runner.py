"""Chat runner -- drives the tool-calling loop for one request.

Each request seeds (or resumes) a transcript, then repeatedly calls the
model gateway, executing the tool calls it returns and feeding results
back, until the model answers with plain text, asks the user for
clarification, or the iteration limit is hit.  Non-streaming and
streaming requests share the same loop; only the gateway call differs.

No state survives between requests.  A turn paused on ``clarify`` is
handed back to the client as a PendingContext and resumed from it.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator, Sequence
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from chatrelay.api.errors import ChatRelayError, IncompleteStreamError, LoopLimitExceeded
from chatrelay.api.gateway import ModelGateway, parse_response
from chatrelay.api.models import (
    ClarifyAnswer,
    ClarifyQuestion,
    GatewayResult,
    PendingContext,
    Step,
    ToolCall,
    Turn,
    TurnEvent,
    TurnResult,
    TurnStatus,
)
from chatrelay.api.tools import CLARIFY_TOOL, ToolDispatcher
from chatrelay.api.web_tools import result_count
from chatrelay.config import Settings

logger = logging.getLogger(__name__)

TITLE_PROMPT = (
    "You are a naming expert. Based on the user's message, write a short title "
    "for this conversation (no more than 20 characters). Return only the title "
    "text, without quotes or any other formatting."
)
TITLE_FALLBACK_CHARS = 20


# ---------------------------------------------------------------------------
# Transcript helpers
# ---------------------------------------------------------------------------


def function_call_output(call_id: str, payload: Any) -> dict[str, Any]:
    """A tool result item keyed to the call it answers."""
    return {
        "type": "function_call_output",
        "call_id": call_id,
        "output": json.dumps(payload, ensure_ascii=False),
    }


def build_transcript(system_prompt: str, turns: Sequence[Turn]) -> list[dict[str, Any]]:
    """Seed a transcript: developer instruction followed by the prior turns.

    User turns carry their text plus one input_image part per attached image.
    """
    transcript: list[dict[str, Any]] = [
        {"role": "developer", "content": [{"type": "input_text", "text": system_prompt}]},
    ]
    for turn in turns:
        parts: list[dict[str, Any]] = []
        if turn.role == "user":
            if turn.content:
                parts.append({"type": "input_text", "text": turn.content})
            for image in turn.images:
                parts.append({"type": "input_image", "image_url": image.data_url})
        else:
            parts.append({"type": "output_text", "text": turn.content or ""})
        transcript.append({"role": turn.role, "content": parts})
    return transcript


def resume_transcript(pending: PendingContext, answers: Sequence[ClarifyAnswer]) -> list[dict[str, Any]]:
    """Rebuild the transcript of a paused turn with the user's answers appended.

    The answers are keyed to the recorded clarify call id; the clarify
    function_call in the saved raw items is used only when none was recorded.
    """
    call_id = pending.clarify_call_id or next(
        (
            item["call_id"]
            for item in pending.raw_output_items
            if item.get("type") == "function_call"
            and item.get("name") == CLARIFY_TOOL
            and item.get("call_id")
        ),
        "",
    )
    payload = [answer.to_wire() for answer in answers]
    return [*pending.input, *pending.raw_output_items, function_call_output(call_id, payload)]


def _parse_questions(arguments: dict[str, Any]) -> list[ClarifyQuestion]:
    raw_questions = arguments.get("questions")
    if not isinstance(raw_questions, list):
        logger.warning("clarify call without a questions list: %r", arguments)
        return []
    questions = []
    for raw in raw_questions:
        try:
            questions.append(ClarifyQuestion.model_validate(raw))
        except ValidationError as e:
            logger.warning("Dropping malformed clarify question %r: %s", raw, e)
    return questions


def _describe_call(call: ToolCall) -> str:
    if call.name == "web_search":
        return f"Searching: {call.display_query}"
    if call.name == "web_fetch":
        return f"Fetching page: {call.display_query}"
    return f"Calling {call.name}: {call.display_query}"


def _describe_result(call: ToolCall, payload: dict[str, Any]) -> str:
    if "error" in payload:
        return f"{call.name} failed: {payload['error']}"
    count = result_count(call.name, payload)
    if call.name == "web_search":
        return f"Search complete, {count} results"
    if call.name == "web_fetch":
        return f"Page fetched, content length: {count}"
    return f"{call.name} complete"


# ---------------------------------------------------------------------------
# Turn state
# ---------------------------------------------------------------------------


@dataclass
class _TurnState:
    """Everything one request accumulates while the loop runs."""

    transcript: list[dict[str, Any]]
    model: str
    reasoning_effort: str
    status: TurnStatus = TurnStatus.RUNNING
    response: str = ""
    reasoning: list[str] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    steps: list[Step] = field(default_factory=list)
    questions: list[ClarifyQuestion] = field(default_factory=list)
    pending: PendingContext | None = None

    def to_result(self) -> TurnResult:
        return TurnResult(
            status=self.status,
            response=self.response,
            reasoning=self.reasoning,
            tool_calls=self.tool_calls,
            steps=self.steps,
            questions=self.questions,
            pending_context=self.pending,
            transcript=self.transcript,
        )

    def final_event(self) -> TurnEvent:
        if self.status == TurnStatus.AWAITING_CLARIFICATION and self.pending is not None:
            return TurnEvent("clarify", {
                "questions": [q.to_wire() for q in self.questions],
                "pendingContext": self.pending.to_wire(),
            })
        return TurnEvent("done", {
            "reasoning": self.reasoning,
            "toolCalls": [{"name": tc.name, "query": tc.display_query} for tc in self.tool_calls],
        })


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class ChatRunner:
    """Runs chat turns against the model gateway with tool dispatch."""

    def __init__(
        self,
        gateway: ModelGateway,
        dispatcher: ToolDispatcher,
        settings: Settings,
    ) -> None:
        self._gateway = gateway
        self._dispatcher = dispatcher
        self._settings = settings

    def _new_state(self, turns: Sequence[Turn], model: str | None, reasoning_effort: str | None) -> _TurnState:
        return _TurnState(
            transcript=build_transcript(self._settings.system_prompt, turns),
            model=model or self._settings.default_model,
            reasoning_effort=reasoning_effort or self._settings.default_reasoning_effort,
        )

    @staticmethod
    def _resumed_state(pending: PendingContext, answers: Sequence[ClarifyAnswer]) -> _TurnState:
        return _TurnState(
            transcript=resume_transcript(pending, answers),
            model=pending.model,
            reasoning_effort=pending.reasoning_effort,
        )

    # ------------------------------------------------------------------
    # Non-streaming
    # ------------------------------------------------------------------

    async def run_turn(
        self,
        turns: Sequence[Turn],
        model: str | None = None,
        reasoning_effort: str | None = None,
    ) -> TurnResult:
        """Run a new turn to completion or to a clarification pause.

        Raises ChatRelayError subclasses on fatal errors.
        """
        state = self._new_state(turns, model, reasoning_effort)
        logger.info("Chat turn: model=%s effort=%s turns=%d", state.model, state.reasoning_effort, len(turns))
        async for _ in self._loop(state, streaming=False):
            pass
        return state.to_result()

    async def continue_turn(
        self,
        pending: PendingContext,
        answers: Sequence[ClarifyAnswer],
    ) -> TurnResult:
        """Resume a paused turn with the user's clarify answers."""
        state = self._resumed_state(pending, answers)
        logger.info("Continuing turn after clarification (%d answers)", len(answers))
        async for _ in self._loop(state, streaming=False):
            pass
        return state.to_result()

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream_turn(
        self,
        turns: Sequence[Turn],
        model: str | None = None,
        reasoning_effort: str | None = None,
    ) -> AsyncGenerator[TurnEvent, None]:
        """Run a new turn, yielding client events as they happen."""
        state = self._new_state(turns, model, reasoning_effort)
        logger.info("Stream turn: model=%s effort=%s", state.model, state.reasoning_effort)
        async for event in self._stream(state):
            yield event

    async def stream_continue(
        self,
        pending: PendingContext,
        answers: Sequence[ClarifyAnswer],
    ) -> AsyncGenerator[TurnEvent, None]:
        """Resume a paused turn, yielding client events as they happen."""
        state = self._resumed_state(pending, answers)
        logger.info("Stream continue after clarification (%d answers)", len(answers))
        async for event in self._stream(state):
            yield event

    async def _stream(self, state: _TurnState) -> AsyncGenerator[TurnEvent, None]:
        """Wrap the loop with start and exactly one terminal event."""
        yield TurnEvent("start")
        try:
            async for event in self._loop(state, streaming=True):
                yield event
        except ChatRelayError as e:
            logger.error("Stream error: %s", e)
            yield TurnEvent("error", {"message": str(e)})
            return
        yield state.final_event()

    # ------------------------------------------------------------------
    # Tool loop
    # ------------------------------------------------------------------

    async def _call_model(self, state: _TurnState, streaming: bool) -> AsyncGenerator[TurnEvent | GatewayResult, None]:
        """One model call. Yields delta events (streaming only), then the GatewayResult."""
        tools = self._dispatcher.tool_definitions()

        if not streaming:
            yield await self._gateway.create(state.transcript, state.model, state.reasoning_effort, tools)
            return

        reasoning_parts: list[str] = []
        result: GatewayResult | None = None
        async for event in self._gateway.stream(state.transcript, state.model, state.reasoning_effort, tools):
            if event.type == "reasoning_delta":
                reasoning_parts.append(event.delta)
                yield TurnEvent("reasoning_delta", {"delta": event.delta})
            elif event.type == "content_delta":
                yield TurnEvent("content_delta", {"delta": event.delta})
            elif event.type == "completed":
                result = parse_response(event.response or {})

        if result is None:
            raise IncompleteStreamError("No response from Azure API")
        streamed_reasoning = "".join(reasoning_parts)
        if streamed_reasoning:
            result.reasoning = [streamed_reasoning]
        yield result

    async def _loop(self, state: _TurnState, streaming: bool) -> AsyncGenerator[TurnEvent, None]:
        """Drive the model until DONE or AWAITING_CLARIFICATION.

        Each iteration builds a new transcript list; transcripts already
        handed out (e.g. inside a PendingContext) are never mutated.
        """
        max_iterations = self._settings.max_iterations

        for iteration in range(1, max_iterations + 1):
            result: GatewayResult | None = None
            async for item in self._call_model(state, streaming):
                if isinstance(item, GatewayResult):
                    result = item
                else:
                    yield item
            if result is None:
                raise IncompleteStreamError("No response from Azure API")

            if result.reasoning:
                state.reasoning.extend(result.reasoning)
                state.steps.append(Step("reasoning", "\n".join(result.reasoning)))

            # Preamble text beside tool calls is part of the response too
            state.response += result.text

            if result.is_terminal:
                logger.info("Turn complete after %d model call(s)", iteration)
                state.status = TurnStatus.DONE
                return

            logger.info(
                "Tool calls (iteration %d): %s",
                iteration,
                ", ".join(tc.name for tc in result.tool_calls),
            )

            clarify_call = next((tc for tc in result.tool_calls if tc.name == CLARIFY_TOOL), None)
            if clarify_call is not None:
                logger.info("Clarify requested (call %s), pausing turn", clarify_call.id)
                state.questions = _parse_questions(clarify_call.arguments)
                state.pending = PendingContext(
                    input=state.transcript,
                    raw_output_items=result.raw_items,
                    clarify_call_id=clarify_call.id,
                    model=state.model,
                    reasoning_effort=state.reasoning_effort,
                )
                state.status = TurnStatus.AWAITING_CLARIFICATION
                return

            if iteration == max_iterations:
                # No model call left to consume the results
                logger.warning("Tool loop reached max_iterations=%d", max_iterations)
                raise LoopLimitExceeded(max_iterations)

            transcript = [*state.transcript, *result.raw_items]
            for call in result.tool_calls:
                yield TurnEvent("tool_call", {"name": call.name, "query": call.display_query})
                state.steps.append(Step("tool_call", _describe_call(call)))

                payload = await self._dispatcher.dispatch(call.name, call.arguments)

                state.steps.append(Step("tool_result", _describe_result(call, payload)))
                state.tool_calls.append(call)
                transcript = [*transcript, function_call_output(call.id, payload)]
                yield TurnEvent("tool_result", {"name": call.name, "resultCount": result_count(call.name, payload)})
            state.transcript = transcript

    # ------------------------------------------------------------------
    # Title generation
    # ------------------------------------------------------------------

    async def generate_title(self, message: str) -> str:
        """Ask the title model for a short conversation title.

        Falls back to the head of the message if the model returns no text.
        Raises ChatRelayError subclasses on provider failure.
        """
        transcript = [
            {"role": "developer", "content": [{"type": "input_text", "text": TITLE_PROMPT}]},
            {"role": "user", "content": [{"type": "input_text", "text": message}]},
        ]
        result = await self._gateway.create(
            transcript,
            self._settings.title_model,
            None,
            max_output_tokens=self._settings.title_max_output_tokens,
        )
        return result.text.strip() or message[:TITLE_FALLBACK_CHARS]
