"""Tests for the streaming turn: event order, terminal events, equivalence with run_turn().

Reuses ScriptedGateway from test_tool_loop, which splits scripted message
text into content deltas and reasoning summaries into reasoning deltas.
"""

import json

import pytest

from chatrelay.api.errors import ProviderError
from chatrelay.api.models import ClarifyAnswer, PendingContext, Turn
from chatrelay.api.runner import ChatRunner

from test_tool_loop import (
    CLARIFY_QUESTIONS,
    ScriptedGateway,
    function_call,
    message,
    reasoning_item,
    respond,
)


def _user(text: str) -> list[Turn]:
    return [Turn(role="user", content=text)]


async def _collect(agen) -> list[dict]:
    return [event.to_dict() async for event in agen]


def _weather_script() -> list[dict]:
    return [
        respond(reasoning_item("Need current weather"), function_call("web_search", {"query": "weather in Paris"}, "c1")),
        respond(reasoning_item("Summarize"), message("It is sunny and 20 degrees in Paris.")),
    ]


class TestStreamTurn:

    @pytest.mark.asyncio
    async def test_event_order(self, settings, dispatcher):
        runner = ChatRunner(ScriptedGateway(_weather_script()), dispatcher, settings)

        events = await _collect(runner.stream_turn(_user("Weather in Paris?")))
        types = [e["type"] for e in events]

        assert types[0] == "start"
        assert types[-1] == "done"
        assert types.count("done") == 1
        assert "error" not in types
        assert types.index("tool_call") < types.index("tool_result") < types.index("content_delta")

        tool_call = next(e for e in events if e["type"] == "tool_call")
        assert tool_call == {"type": "tool_call", "name": "web_search", "query": "weather in Paris"}
        tool_result = next(e for e in events if e["type"] == "tool_result")
        assert tool_result == {"type": "tool_result", "name": "web_search", "resultCount": 1}

        done = events[-1]
        assert done["toolCalls"] == [{"name": "web_search", "query": "weather in Paris"}]
        assert done["reasoning"] == ["Need current weather", "Summarize"]

    @pytest.mark.asyncio
    async def test_content_matches_non_streaming(self, settings, dispatcher):
        """Concatenated content deltas equal the non-streaming response text."""
        streamed = await _collect(
            ChatRunner(ScriptedGateway(_weather_script()), dispatcher, settings).stream_turn(_user("Weather?"))
        )
        plain = await ChatRunner(ScriptedGateway(_weather_script()), dispatcher, settings).run_turn(_user("Weather?"))

        text = "".join(e["delta"] for e in streamed if e["type"] == "content_delta")
        assert text == plain.response == "It is sunny and 20 degrees in Paris."

    @pytest.mark.asyncio
    async def test_preamble_beside_tool_call_matches_non_streaming(self, settings, dispatcher):
        """Text sent next to a function_call is part of both responses."""
        def script():
            return [
                respond(message("Let me check. "), function_call("web_search", {"query": "weather in Paris"}, "c1")),
                respond(message("Sunny.")),
            ]

        streamed = await _collect(ChatRunner(ScriptedGateway(script()), dispatcher, settings).stream_turn(_user("Weather?")))
        plain = await ChatRunner(ScriptedGateway(script()), dispatcher, settings).run_turn(_user("Weather?"))

        text = "".join(e["delta"] for e in streamed if e["type"] == "content_delta")
        assert text == plain.response == "Let me check. Sunny."

    @pytest.mark.asyncio
    async def test_clarify_event(self, settings, dispatcher):
        gateway = ScriptedGateway([respond(function_call("clarify", {"questions": CLARIFY_QUESTIONS}, "c1"))])
        runner = ChatRunner(gateway, dispatcher, settings)

        events = await _collect(runner.stream_turn(_user("Plan a trip")))

        assert [e["type"] for e in events] == ["start", "clarify"]
        clarify = events[-1]
        assert [q["id"] for q in clarify["questions"]] == ["q1", "q2"]
        assert clarify["questions"][0]["options"] == ["Paris", "Lyon"]
        pending = PendingContext.model_validate(json.loads(json.dumps(clarify["pendingContext"])))
        assert pending.clarify_call_id == "c1"
        assert dispatcher.calls == []

    @pytest.mark.asyncio
    async def test_stream_continue(self, settings, dispatcher):
        gateway = ScriptedGateway([
            respond(function_call("clarify", {"questions": CLARIFY_QUESTIONS}, "c1")),
            respond(message("Paris it is.")),
        ])
        runner = ChatRunner(gateway, dispatcher, settings)

        paused = await _collect(runner.stream_turn(_user("Plan a trip")))
        pending = PendingContext.model_validate(paused[-1]["pendingContext"])
        events = await _collect(runner.stream_continue(pending, [ClarifyAnswer(question_id="q1", answer="Paris")]))

        assert events[0]["type"] == "start"
        assert events[-1]["type"] == "done"
        assert "".join(e["delta"] for e in events if e["type"] == "content_delta") == "Paris it is."
        assert gateway.calls[1]["transcript"][-1]["call_id"] == "c1"

    @pytest.mark.asyncio
    async def test_provider_error_is_terminal(self, settings, dispatcher):
        """A fatal error ends the stream with one error event and no done."""
        gateway = ScriptedGateway([ProviderError("Azure API Error: 503 - unavailable", status_code=503)])
        runner = ChatRunner(gateway, dispatcher, settings)

        events = await _collect(runner.stream_turn(_user("Hi")))

        assert [e["type"] for e in events] == ["start", "error"]
        assert "503" in events[-1]["message"]

    @pytest.mark.asyncio
    async def test_loop_limit_is_terminal(self, settings, dispatcher):
        gateway = ScriptedGateway([
            respond(function_call("web_search", {"query": f"q{i}"}, f"c{i}"))
            for i in range(settings.max_iterations)
        ])
        runner = ChatRunner(gateway, dispatcher, settings)

        events = await _collect(runner.stream_turn(_user("loop")))

        assert events[-1]["type"] == "error"
        assert "4 model calls" in events[-1]["message"]
        assert [e["type"] for e in events].count("tool_call") == settings.max_iterations - 1
        assert len(dispatcher.calls) == settings.max_iterations - 1
