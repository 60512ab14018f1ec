"""REST API for the chat client.

Endpoints:
  POST /api/chat            - Run a turn, get the full response
  POST /api/chat/continue   - Resume a turn paused on clarify, with answers
  POST /api/chat-stream     - SSE streaming turn (new, or resumed if pendingContext is set)
  POST /api/generate-title  - Short title for a conversation
  GET  /health              - Health check (upstream configuration)
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator
from typing import Any

from pydantic import BaseModel, ValidationError
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from chatrelay.api.errors import ChatRelayError, ConfigurationError
from chatrelay.api.models import (
    ChatRequest,
    ContinueRequest,
    StreamRequest,
    TitleRequest,
    TurnEvent,
)
from chatrelay.api.runner import ChatRunner
from chatrelay.config import Settings

logger = logging.getLogger(__name__)


async def _parse_body(request: Request, model: type[BaseModel]) -> BaseModel | JSONResponse:
    """Validate a JSON body against a wire model, or build the 400 response."""
    try:
        body = await request.json()
    except Exception:
        return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
    try:
        return model.model_validate(body)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in e.errors()
        )
        return JSONResponse({"error": f"Invalid request: {errors}"}, status_code=400)


def _sse(event: TurnEvent | dict[str, Any]) -> str:
    data = event.to_dict() if isinstance(event, TurnEvent) else event
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"


def create_app(
    runner: ChatRunner,
    settings: Settings,
    lifespan: Any | None = None,
) -> Starlette:
    """Create the Starlette ASGI app with all routes."""

    async def chat(request: Request) -> Response:
        """POST /api/chat - Run a new turn."""
        parsed = await _parse_body(request, ChatRequest)
        if isinstance(parsed, JSONResponse):
            return parsed

        config = parsed.config
        try:
            result = await runner.run_turn(
                parsed.messages,
                model=config.model if config else None,
                reasoning_effort=config.effort if config else None,
            )
            return JSONResponse(result.to_dict())
        except ChatRelayError as e:
            logger.error("Chat error: %s", e)
            return JSONResponse({"error": str(e)}, status_code=500)
        except Exception as e:
            logger.exception("Unexpected chat error")
            return JSONResponse({"error": str(e)}, status_code=500)

    async def chat_continue(request: Request) -> Response:
        """POST /api/chat/continue - Resume after clarification."""
        parsed = await _parse_body(request, ContinueRequest)
        if isinstance(parsed, JSONResponse):
            return parsed

        try:
            result = await runner.continue_turn(parsed.pending_context, parsed.answers)
            return JSONResponse(result.to_dict())
        except ChatRelayError as e:
            logger.error("Continue error: %s", e)
            return JSONResponse({"error": str(e)}, status_code=500)
        except Exception as e:
            logger.exception("Unexpected continue error")
            return JSONResponse({"error": str(e)}, status_code=500)

    async def chat_stream(request: Request) -> Response:
        """POST /api/chat-stream - SSE streaming turn."""
        parsed = await _parse_body(request, StreamRequest)
        if isinstance(parsed, JSONResponse):
            return parsed

        if parsed.pending_context is not None:
            logger.info("Stream mode: continue after clarify")
            events = runner.stream_continue(parsed.pending_context, parsed.answers)
        elif parsed.messages:
            logger.info("Stream mode: new chat")
            config = parsed.config
            events = runner.stream_turn(
                parsed.messages,
                model=config.model if config else None,
                reasoning_effort=config.effort if config else None,
            )
        else:
            return JSONResponse(
                {"error": "Invalid request: messages or pendingContext is required"},
                status_code=400,
            )

        async def event_generator() -> AsyncGenerator[str, None]:
            if not settings.provider_configured:
                yield _sse({"type": "error", "message": "Azure API configuration missing"})
                return
            try:
                async for event in events:
                    yield _sse(event)
            except Exception as e:
                logger.exception("Stream error")
                yield _sse({"type": "error", "message": str(e)})

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    async def generate_title(request: Request) -> Response:
        """POST /api/generate-title - Short conversation title."""
        parsed = await _parse_body(request, TitleRequest)
        if isinstance(parsed, JSONResponse):
            return parsed

        try:
            title = await runner.generate_title(parsed.message)
            return JSONResponse({"title": title})
        except ConfigurationError as e:
            logger.error("Title generation error: %s", e)
            return JSONResponse({"error": str(e)}, status_code=500)
        except Exception as e:
            logger.error("Title generation error: %s", e)
            return JSONResponse({"error": "Failed to generate title"}, status_code=500)

    async def health(request: Request) -> JSONResponse:
        """GET /health - Health check."""
        body = {
            "status": "healthy" if settings.provider_configured else "unconfigured",
            "provider_configured": settings.provider_configured,
            "search_configured": bool(settings.parallel_api_key),
            "fetch_configured": bool(settings.jina_api_key),
        }
        return JSONResponse(body, status_code=200 if settings.provider_configured else 503)

    routes = [
        Route("/api/chat", chat, methods=["POST"]),
        Route("/api/chat/continue", chat_continue, methods=["POST"]),
        Route("/api/chat-stream", chat_stream, methods=["POST"]),
        Route("/api/generate-title", generate_title, methods=["POST"]),
        Route("/health", health),
    ]

    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_methods=["*"],
            allow_headers=["*"],
        ),
    ]

    kwargs: dict[str, Any] = {"routes": routes, "middleware": middleware}
    if lifespan is not None:
        kwargs["lifespan"] = lifespan
    return Starlette(**kwargs)
