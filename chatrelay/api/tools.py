"""Tool registry and dispatcher.

Provides:
- ToolDispatcher: registers tools, dispatches calls, emits provider tool definitions
- The clarify pseudo-tool schema (declared to the model, never dispatched)

Handlers are async callables taking the tool arguments as keyword
arguments and returning a JSON-serializable dict.  Failures come back
as ``{"error": ...}`` so the model can react to them.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

ToolHandler = Callable[..., Awaitable[dict[str, Any]]]

CLARIFY_TOOL = "clarify"


# ---------------------------------------------------------------------------
# ToolDispatcher
# ---------------------------------------------------------------------------


class ToolDispatcher:
    """Maps tool names to handlers and their JSON schemas.

    A tool registered without a handler is declared to the model but
    handled by the caller (the clarify pseudo-tool).
    """

    def __init__(self) -> None:
        self._handlers: dict[str, ToolHandler | None] = {}
        self._schemas: dict[str, dict[str, Any]] = {}

    def register(self, name: str, handler: ToolHandler | None, schema: dict[str, Any]) -> None:
        """Register a tool handler with its JSON schema."""
        self._handlers[name] = handler
        self._schemas[name] = schema

    def __contains__(self, name: str) -> bool:
        return name in self._schemas

    @property
    def names(self) -> list[str]:
        return list(self._schemas)

    async def dispatch(self, name: str, args: dict[str, Any]) -> dict[str, Any]:
        """Run a tool call and return its payload. Never raises."""
        handler = self._handlers.get(name)
        if handler is None:
            if name in self._schemas:
                return {"error": f"Tool {name} cannot be executed directly"}
            return {"error": f"Unknown tool: {name}"}
        try:
            inspect.signature(handler).bind(**args)
        except TypeError as e:
            logger.warning("Bad arguments for %s: %s", name, e)
            return {"error": f"Invalid arguments for {name}: {e}"}
        try:
            return await handler(**args)
        except Exception as e:
            logger.exception("Tool dispatch error for %s", name)
            return {"error": f"Tool error: {e}"}

    def tool_definitions(self) -> list[dict[str, Any]]:
        """Return all tool definitions in Responses API function format."""
        definitions = []
        for name, schema in self._schemas.items():
            parameters = {k: v for k, v in schema.items() if k != "description"}
            definitions.append({
                "type": "function",
                "name": name,
                "description": schema.get("description", ""),
                "parameters": parameters,
            })
        return definitions


# ---------------------------------------------------------------------------
# Clarify pseudo-tool
# ---------------------------------------------------------------------------


_CLARIFY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": (
        "IMPORTANT: You should actively use this tool to ask clarifying questions "
        "before providing answers. Use this tool when:\n"
        "1. The user's request is vague, ambiguous, or could be interpreted in multiple ways\n"
        "2. You need specific details like: preferences, constraints, context, use case, "
        "target audience, technical requirements, budget, timeline, etc.\n"
        "3. The user asks for recommendations without specifying their needs or situation\n"
        "4. The request involves personal choices where user preferences matter "
        "(e.g., travel, shopping, career advice)\n"
        "5. You're unsure about the scope or depth of response the user expects\n"
        "6. The user's question could have different answers depending on their "
        "specific circumstances\n\n"
        "DO NOT assume or guess when you can ask. It's better to ask 2-3 targeted "
        "questions than to provide a generic or potentially irrelevant answer."
    ),
    "properties": {
        "questions": {
            "type": "array",
            "description": (
                "List of questions to ask the user. Keep questions concise and focused. "
                "Use single_choice for simple preferences, multiple_choice when multiple "
                "options can apply, and text for open-ended details."
            ),
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string", "description": "Unique identifier for this question"},
                    "question": {"type": "string", "description": "The question text to display"},
                    "type": {
                        "type": "string",
                        "enum": ["single_choice", "multiple_choice", "text"],
                        "description": (
                            "Type of input: single_choice (radio), multiple_choice "
                            "(checkbox), or text (free input)"
                        ),
                    },
                    "options": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Options for single_choice or multiple_choice questions",
                    },
                    "required": {"type": "boolean", "description": "Whether this question must be answered"},
                },
                "required": ["id", "question", "type"],
            },
        },
    },
    "required": ["questions"],
}


def register_clarify_tool(dispatcher: ToolDispatcher) -> None:
    """Declare the clarify pseudo-tool. The runner intercepts its calls."""
    dispatcher.register(CLARIFY_TOOL, None, _CLARIFY_SCHEMA)
