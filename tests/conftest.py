"""Shared fixtures: settings with fake credentials and a wired tool dispatcher."""

import pytest

from chatrelay.api.tools import ToolDispatcher, register_clarify_tool
from chatrelay.config import Settings


@pytest.fixture
def settings():
    """Settings with every upstream configured and a small loop limit."""
    return Settings(
        AZURE_API_KEY="test-azure-key",
        AZURE_ENDPOINT="https://example-resource.openai.azure.com",
        PARALLEL_API_KEY="test-parallel-key",
        JINA_API_KEY="test-jina-key",
        max_iterations=4,
        system_prompt="You are a test assistant.",
    )


@pytest.fixture
def unconfigured_settings():
    """Settings with no upstream credentials at all."""
    return Settings(
        AZURE_API_KEY="",
        AZURE_ENDPOINT="",
        PARALLEL_API_KEY="",
        JINA_API_KEY="",
    )


@pytest.fixture
def dispatcher():
    """ToolDispatcher with counting web_search/web_fetch stubs and clarify."""
    d = ToolDispatcher()
    d.calls = []

    async def web_search(query: str) -> dict:
        d.calls.append(("web_search", query))
        return {"results": [{"title": f"Result for {query}", "url": "https://example.com"}]}

    async def web_fetch(url: str) -> dict:
        d.calls.append(("web_fetch", url))
        return {"url": url, "content": "page body"}

    d.register("web_search", web_search, {
        "type": "object",
        "description": "Search the web",
        "properties": {"query": {"type": "string"}},
        "required": ["query"],
    })
    d.register("web_fetch", web_fetch, {
        "type": "object",
        "description": "Fetch a page",
        "properties": {"url": {"type": "string"}},
        "required": ["url"],
    })
    register_clarify_tool(d)
    return d
