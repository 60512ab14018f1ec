"""Web tools for the chat model: web_search and web_fetch.

web_search goes through the Parallel AI search API, web_fetch through
the Jina Reader content-extraction API.  Both return JSON payloads and
never raise: failures come back as ``{"error": ...}`` tool output.
Uses a separate httpx client from the model gateway (no provider auth).
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from chatrelay.api.tools import ToolDispatcher
from chatrelay.config import Settings

logger = logging.getLogger(__name__)

PARALLEL_SEARCH_URL = "https://api.parallel.ai/v1beta/search"
JINA_READER_URL = "https://r.jina.ai/"


def result_count(name: str, payload: dict[str, Any]) -> int:
    """Size of a tool payload as reported to the client: results or characters."""
    if "error" in payload:
        return 0
    if name == "web_search":
        return len(payload.get("results") or [])
    if name == "web_fetch":
        return len(payload.get("content") or "")
    return 0


# ---------------------------------------------------------------------------
# Tool handlers
# ---------------------------------------------------------------------------


async def _web_search(
    query: str,
    *,
    _settings: Settings,
    _http: httpx.AsyncClient,
) -> dict[str, Any]:
    """Search via Parallel AI."""
    if not _settings.parallel_api_key:
        logger.error("PARALLEL_API_KEY not set")
        return {"error": "Search API not configured"}

    logger.info("Performing web search for: %s", query)
    try:
        response = await _http.post(
            PARALLEL_SEARCH_URL,
            json={"objective": query, "processor": _settings.search_processor},
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {_settings.parallel_api_key}",
            },
        )

        if not response.is_success:
            logger.error("Parallel search error (HTTP %d): %s", response.status_code, response.text[:500])
            return {"error": f"Search failed: {response.status_code}"}

        data = response.json()
        if not isinstance(data, dict):
            return {"error": "Search returned an unexpected payload"}

        logger.info("Search for %r returned %d results", query, len(data.get("results") or []))
        return data

    except httpx.TimeoutException:
        logger.warning("web_search timed out for: %s", query)
        return {"error": "Web search timed out"}
    except httpx.HTTPError as e:
        logger.warning("web_search transport error: %s", e)
        return {"error": f"Could not connect to search service: {e}"}
    except ValueError as e:
        logger.warning("web_search returned invalid JSON: %s", e)
        return {"error": "Search returned invalid JSON"}


async def _web_fetch(
    url: str,
    *,
    _settings: Settings,
    _http: httpx.AsyncClient,
) -> dict[str, Any]:
    """Fetch a page's readable content via Jina Reader."""
    if not _settings.jina_api_key:
        logger.error("JINA_API_KEY not set")
        return {"error": "Web fetch API not configured"}

    if not url.startswith(("http://", "https://")):
        return {"error": "URL must start with http:// or https://"}

    logger.info("Fetching URL: %s", url)
    try:
        response = await _http.get(
            f"{JINA_READER_URL}{url}",
            headers={"Authorization": f"Bearer {_settings.jina_api_key}"},
        )

        if not response.is_success:
            logger.error("Jina fetch error (HTTP %d): %s", response.status_code, response.text[:500])
            return {"error": f"Fetch failed: {response.status_code}"}

        content = response.text
        if len(content) > _settings.web_fetch_max_chars:
            content = content[: _settings.web_fetch_max_chars] + "\n\n[... truncated]"

        logger.info("Fetched content length: %d", len(content))
        return {"url": url, "content": content}

    except httpx.TimeoutException:
        logger.warning("web_fetch timed out for: %s", url)
        return {"error": f"Fetch timed out for: {url}"}
    except httpx.HTTPError as e:
        logger.warning("web_fetch transport error: %s", e)
        return {"error": f"Could not fetch {url}: {e}"}


# ---------------------------------------------------------------------------
# Tool schemas
# ---------------------------------------------------------------------------


_WEB_SEARCH_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": (
        "Search the web for current information. Use this when you need "
        "up-to-date information or facts you don't know."
    ),
    "properties": {
        "query": {"type": "string", "description": "The search query to look up on the web"},
    },
    "required": ["query"],
}

_WEB_FETCH_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": (
        "Fetch and extract content from a specific URL. Use this when you need "
        "to read the content of a webpage, article, or document from a given URL."
    ),
    "properties": {
        "url": {"type": "string", "description": "The URL of the webpage to fetch and extract content from"},
    },
    "required": ["url"],
}


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def register_web_tools(
    dispatcher: ToolDispatcher,
    settings: Settings,
    http_client: httpx.AsyncClient,
) -> None:
    """Register web_search and web_fetch with the dispatcher.

    Creates closure wrappers that inject settings and the httpx client.
    """
    async def _search(query: str) -> dict[str, Any]:
        return await _web_search(query, _settings=settings, _http=http_client)

    async def _fetch(url: str) -> dict[str, Any]:
        return await _web_fetch(url, _settings=settings, _http=http_client)

    dispatcher.register("web_search", _search, _WEB_SEARCH_SCHEMA)
    dispatcher.register("web_fetch", _fetch, _WEB_FETCH_SCHEMA)
