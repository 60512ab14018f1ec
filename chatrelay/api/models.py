"""Data models for the API layer.

Wire DTOs are pydantic models serialized with camelCase aliases, the
shape the browser client sends and expects.  Internal values passed
between the gateway and the runner are plain dataclasses.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from chatrelay.config import ReasoningEffort

QuestionType = Literal["single_choice", "multiple_choice", "text"]


class TurnStatus(StrEnum):
    RUNNING = "running"
    AWAITING_CLARIFICATION = "pending_clarification"
    DONE = "complete"


# ---------------------------------------------------------------------------
# Wire models
# ---------------------------------------------------------------------------


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ImageAttachment(WireModel):
    mime_type: str
    base64: str

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64}"


class Turn(WireModel):
    """One prior conversation message from the client."""

    role: Literal["user", "assistant"]
    content: str | None = None
    images: list[ImageAttachment] = Field(default_factory=list)


class ReasoningConfig(WireModel):
    effort: ReasoningEffort | None = None


class ModelConfig(WireModel):
    model: str | None = None
    reasoning_effort: ReasoningEffort | None = None
    # Older clients send {"reasoning": {"effort": ...}}
    reasoning: ReasoningConfig | None = None

    @property
    def effort(self) -> str | None:
        if self.reasoning_effort:
            return self.reasoning_effort
        return self.reasoning.effort if self.reasoning else None


class ClarifyQuestion(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    question: str
    type: QuestionType
    options: list[str] | None = None
    required: bool = False


class ClarifyAnswer(WireModel):
    question_id: str
    answer: str | list[str]


class PendingContext(WireModel):
    """Resumption token for a turn paused on a clarify call.

    Held by the client between requests.  ``input`` is the transcript as
    it was sent to the model; ``raw_output_items`` are the reasoning and
    function_call items of the response that asked for clarification.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    input: list[dict[str, Any]]
    raw_output_items: list[dict[str, Any]]
    clarify_call_id: str
    model: str
    reasoning_effort: str

    def to_wire(self) -> dict[str, Any]:
        # Raw provider items are replayed verbatim, nulls included
        return self.model_dump(mode="json", by_alias=True)


class ChatRequest(WireModel):
    messages: list[Turn] = Field(min_length=1)
    config: ModelConfig | None = Field(None, alias="modelConfig")


class ContinueRequest(WireModel):
    pending_context: PendingContext
    answers: list[ClarifyAnswer] = Field(default_factory=list)


class StreamRequest(WireModel):
    """Body of /api/chat-stream: a new turn, or a resumed one if pendingContext is set."""

    messages: list[Turn] = Field(default_factory=list)
    config: ModelConfig | None = Field(None, alias="modelConfig")
    pending_context: PendingContext | None = None
    answers: list[ClarifyAnswer] = Field(default_factory=list)


class TitleRequest(WireModel):
    message: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Internal values
# ---------------------------------------------------------------------------


@dataclass
class ToolCall:
    """A function call requested by the model."""

    id: str  # provider call_id
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    @property
    def display_query(self) -> str:
        """Short human label for the call: its query, url, or raw arguments."""
        for key in ("query", "url", "objective"):
            value = self.arguments.get(key)
            if value:
                return str(value)
        if not self.arguments:
            return ""
        return json.dumps(self.arguments)


@dataclass
class GatewayResult:
    """Normalized model response."""

    text: str = ""
    reasoning: list[str] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    raw_items: list[dict[str, Any]] = field(default_factory=list)  # opaque, replayed verbatim

    @property
    def is_terminal(self) -> bool:
        return not self.tool_calls


@dataclass
class Step:
    """One entry of the per-turn activity log shown by the client."""

    type: Literal["reasoning", "tool_call", "tool_result"]
    content: str
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "content": self.content, "timestamp": self.timestamp}


@dataclass
class TurnEvent:
    """A client-facing event of a streamed turn."""

    type: str  # start, reasoning_delta, content_delta, tool_call, tool_result, clarify, done, error
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.data}


@dataclass
class TurnResult:
    """Outcome of one non-streaming request."""

    status: TurnStatus
    response: str = ""
    reasoning: list[str] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    steps: list[Step] = field(default_factory=list)
    questions: list[ClarifyQuestion] = field(default_factory=list)
    pending_context: PendingContext | None = None
    transcript: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        if self.status == TurnStatus.AWAITING_CLARIFICATION:
            tool_calls: list[dict[str, Any]] = [
                {"name": "clarify", "questions": [q.to_wire() for q in self.questions]}
            ]
        else:
            tool_calls = [{"name": tc.name, "query": tc.display_query} for tc in self.tool_calls]
        body: dict[str, Any] = {
            "status": str(self.status),
            "response": self.response,
            "reasoning": self.reasoning,
            "toolCalls": tool_calls,
            "steps": [s.to_dict() for s in self.steps],
        }
        if self.pending_context is not None:
            body["pendingContext"] = self.pending_context.to_wire()
        return body
