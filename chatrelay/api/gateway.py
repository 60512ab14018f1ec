"""Model gateway -- Azure OpenAI Responses API over direct httpx calls.

Builds the request (deployment, transcript, reasoning effort, tools),
sends it, and normalizes the response into a GatewayResult.  The
streaming variant parses the server-sent event body into StreamEvents.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Any

import httpx

from chatrelay.api.errors import ConfigurationError, IncompleteStreamError, ProviderError
from chatrelay.api.models import GatewayResult, ToolCall
from chatrelay.config import Settings

logger = logging.getLogger(__name__)

_REASONING_DELTA_EVENTS = frozenset({
    "response.reasoning_summary_text.delta",
    "response.reasoning_summary_part.delta",
    "response.summary_text.delta",
})
_CONTENT_DELTA_EVENTS = frozenset({"response.output_text.delta"})
_FINAL_EVENTS = frozenset({"response.completed", "response.done"})
_ERROR_EVENTS = frozenset({"error", "response.failed"})


@dataclass
class StreamEvent:
    """A classified event from the provider's SSE stream."""

    type: str  # reasoning_delta, content_delta, completed, error
    delta: str = ""
    response: dict[str, Any] | None = None
    message: str = ""


def _parse_tool_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        logger.warning("Unparsable function_call arguments: %.200s", raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def parse_response(data: dict[str, Any]) -> GatewayResult:
    """Normalize a Responses API payload.

    One pass over ``output``: reasoning items contribute summary text,
    function_call items become ToolCalls, the first message item with
    output_text is the final text.  Reasoning and function_call items
    are kept verbatim for replay on the next request.
    """
    result = GatewayResult()
    found_message = False

    for item in data.get("output") or []:
        item_type = item.get("type")

        if item_type == "reasoning":
            result.raw_items.append(item)
            for part in item.get("summary") or []:
                text = part.get("text") if isinstance(part, dict) else part
                if text:
                    result.reasoning.append(text)

        elif item_type == "function_call":
            result.raw_items.append(item)
            result.tool_calls.append(ToolCall(
                id=item.get("call_id", ""),
                name=item.get("name", ""),
                arguments=_parse_tool_arguments(item.get("arguments")),
            ))

        elif item_type == "message" and not found_message:
            for part in item.get("content") or []:
                if part.get("type") == "output_text":
                    result.text = part.get("text", "")
                    found_message = True
                    break

    return result


def _parse_sse_event(data: dict[str, Any]) -> StreamEvent | None:
    """Classify a Responses API stream event. Returns None for events we ignore."""
    event_type = data.get("type")

    if event_type in _REASONING_DELTA_EVENTS:
        return StreamEvent(type="reasoning_delta", delta=data.get("delta") or "")

    if event_type in _CONTENT_DELTA_EVENTS:
        return StreamEvent(type="content_delta", delta=data.get("delta") or "")

    if event_type in _FINAL_EVENTS:
        return StreamEvent(type="completed", response=data.get("response") or {})

    if event_type in _ERROR_EVENTS:
        error = data.get("error") or (data.get("response") or {}).get("error") or {}
        if isinstance(error, dict):
            message = error.get("message") or error.get("code") or "unknown error"
        else:
            message = str(error)
        return StreamEvent(type="error", message=message)

    return None


class ModelGateway:
    """Sends transcripts to the Responses API.

    One httpx client is shared by all turns; create it with start() and
    release it with close().
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._http: httpx.AsyncClient | None = None

    async def start(self) -> None:
        """Initialize the httpx client with auth and timeout settings."""
        settings = self._settings
        if not settings.provider_configured:
            logger.warning(
                "AZURE_API_KEY or AZURE_ENDPOINT is not set -- chat requests will fail"
            )

        timeout = httpx.Timeout(
            connect=settings.api_timeout_connect,
            read=settings.api_timeout_read,
            write=10.0,
            pool=10.0,
        )
        limits = httpx.Limits(max_connections=10, max_keepalive_connections=5)
        self._http = httpx.AsyncClient(
            base_url=settings.azure_endpoint.rstrip("/") if settings.azure_endpoint else "",
            headers={"Content-Type": "application/json", "api-key": settings.azure_api_key},
            timeout=timeout,
            limits=limits,
        )
        logger.info("Model gateway initialized (endpoint: %s)", settings.azure_endpoint or "<unset>")

    async def close(self) -> None:
        """Clean up httpx client."""
        if self._http:
            await self._http.aclose()
            self._http = None

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    @property
    def _path(self) -> str:
        return f"/openai/responses?api-version={self._settings.azure_api_version}"

    def build_payload(
        self,
        transcript: list[dict[str, Any]],
        model: str,
        reasoning_effort: str | None,
        tools: list[dict[str, Any]] | None = None,
        stream: bool = False,
        max_output_tokens: int | None = None,
    ) -> dict[str, Any]:
        """Build the Responses API request body.

        Shared by create() and stream() to avoid divergence.
        """
        payload: dict[str, Any] = {
            "model": self._settings.deployment_for(model),
            "input": transcript,
            "max_output_tokens": max_output_tokens or self._settings.max_output_tokens,
        }
        if reasoning_effort:
            payload["reasoning"] = {
                "effort": reasoning_effort,
                "summary": self._settings.reasoning_summary,
            }
        if tools:
            payload["tools"] = tools
        if stream:
            payload["stream"] = True
        return payload

    def _client(self) -> httpx.AsyncClient:
        if not self._settings.provider_configured:
            raise ConfigurationError("Azure API configuration missing")
        if not self._http:
            raise RuntimeError("httpx client not initialized -- call start() first")
        return self._http

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def create(
        self,
        transcript: list[dict[str, Any]],
        model: str,
        reasoning_effort: str | None,
        tools: list[dict[str, Any]] | None = None,
        max_output_tokens: int | None = None,
    ) -> GatewayResult:
        """One non-streaming model call. Raises ProviderError on failure, no retry."""
        http = self._client()
        payload = self.build_payload(
            transcript, model, reasoning_effort, tools, max_output_tokens=max_output_tokens,
        )

        try:
            response = await http.post(self._path, json=payload)
        except httpx.HTTPError as e:
            raise ProviderError(f"Azure API request failed: {e}") from e

        logger.debug("Azure response status: %d", response.status_code)
        if not response.is_success:
            logger.error("Azure API error (%d): %s", response.status_code, response.text[:500])
            raise ProviderError(
                f"Azure API Error: {response.status_code} - {response.text[:500]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(f"Azure API returned invalid JSON: {e}") from e
        return parse_response(data)

    async def stream(
        self,
        transcript: list[dict[str, Any]],
        model: str,
        reasoning_effort: str | None,
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncGenerator[StreamEvent, None]:
        """One streaming model call.

        Yields reasoning_delta and content_delta events in arrival order,
        then exactly one completed event.  Unparsable chunks are logged
        and skipped.  Raises IncompleteStreamError if the stream ends
        without a final response.
        """
        http = self._client()
        payload = self.build_payload(transcript, model, reasoning_effort, tools, stream=True)

        completed = False
        try:
            async with http.stream("POST", self._path, json=payload) as response:
                if not response.is_success:
                    error_body = (await response.aread()).decode(errors="replace")[:500]
                    logger.error("Azure API error (%d): %s", response.status_code, error_body)
                    raise ProviderError(
                        f"Azure API Error: {response.status_code} - {error_body}",
                        status_code=response.status_code,
                    )

                async for line in response.aiter_lines():
                    if not line.startswith("data: "):
                        continue
                    raw = line[6:].strip()
                    if not raw or raw == "[DONE]":
                        continue
                    try:
                        data = json.loads(raw)
                    except json.JSONDecodeError:
                        logger.warning("Failed to parse SSE event: %.200s", raw)
                        continue
                    if not isinstance(data, dict):
                        logger.warning("Ignoring non-object SSE event: %.200s", raw)
                        continue

                    event = _parse_sse_event(data)
                    if event is None:
                        continue
                    if event.type == "error":
                        raise ProviderError(f"Azure stream error: {event.message}")
                    if event.type == "completed":
                        completed = True
                    yield event
                    if completed:
                        break
        except httpx.HTTPError as e:
            raise ProviderError(f"Azure API request failed: {e}") from e

        if not completed:
            raise IncompleteStreamError("No response from Azure API")
