"""chatrelay entry point.

Initializes all components and starts the server:
  Settings -> ModelGateway -> ToolDispatcher (+ web tools) -> ChatRunner -> App -> Uvicorn

Uses Starlette lifespan to manage component lifecycle on the same
event loop as uvicorn.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
import uvicorn
from starlette.applications import Starlette

from chatrelay.api.gateway import ModelGateway
from chatrelay.api.rest import create_app
from chatrelay.api.runner import ChatRunner
from chatrelay.api.tools import ToolDispatcher, register_clarify_tool
from chatrelay.api.web_tools import register_web_tools
from chatrelay.config import Settings

logger = logging.getLogger(__name__)


async def create_components(settings: Settings) -> dict:
    """Initialize all components in dependency order.

    1. ModelGateway - provider httpx client
    2. Web tools httpx client - separate, no provider auth headers
    3. ToolDispatcher - web_search, web_fetch, clarify
    4. ChatRunner - tool loop
    """
    gateway = ModelGateway(settings)
    await gateway.start()

    web_http = httpx.AsyncClient(
        timeout=httpx.Timeout(connect=10, read=settings.tool_timeout_read, write=10, pool=10),
        limits=httpx.Limits(max_connections=5, max_keepalive_connections=2),
    )

    dispatcher = ToolDispatcher()
    register_web_tools(dispatcher, settings, web_http)
    register_clarify_tool(dispatcher)

    runner = ChatRunner(gateway, dispatcher, settings)

    return {
        "gateway": gateway,
        "web_http": web_http,
        "dispatcher": dispatcher,
        "runner": runner,
    }


async def shutdown_components(components: dict) -> None:
    """Graceful shutdown in reverse order."""
    logger.info("Shutting down chatrelay...")

    web_http = components.get("web_http")
    if web_http:
        await web_http.aclose()

    gateway = components.get("gateway")
    if gateway:
        await gateway.close()

    logger.info("chatrelay shutdown complete.")


def build_app(settings: Settings) -> Starlette:
    """Build the Starlette app.

    Uses Starlette lifespan for component lifecycle management.
    """
    # Closure to share components between lifespan and app
    components: dict = {}

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        components.update(await create_components(settings))

        # Store on app.state for access in tests
        app.state.components = components

        logger.info(
            "chatrelay started: default model=%s, max_iterations=%d",
            settings.default_model,
            settings.max_iterations,
        )
        yield

        await shutdown_components(components)

    return create_app(
        runner=_Deferred(components, "runner"),
        settings=settings,
        lifespan=lifespan,
    )


class _Deferred:
    """Stands in for a component until the lifespan has created it."""

    def __init__(self, components: dict, key: str) -> None:
        self._components = components
        self._key = key

    def __getattr__(self, name):
        try:
            target = self._components[self._key]
        except KeyError:
            raise RuntimeError(f"{self._key} used before application startup") from None
        return getattr(target, name)


def main() -> None:
    """Entry point -- parse settings, build app, run server."""
    settings = Settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    logger.info("Starting chatrelay on %s:%d", settings.host, settings.port)
    logger.info("Endpoint: %s (api-version %s)", settings.azure_endpoint or "<unset>", settings.azure_api_version)

    if not settings.provider_configured:
        logger.warning("AZURE_API_KEY or AZURE_ENDPOINT not set; chat requests will fail")
    if not settings.parallel_api_key:
        logger.warning("PARALLEL_API_KEY not set; web_search will return errors")
    if not settings.jina_api_key:
        logger.warning("JINA_API_KEY not set; web_fetch will return errors")

    app = build_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
