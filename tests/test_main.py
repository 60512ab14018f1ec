"""Tests for chatrelay/main.py -- component wiring and lifespan."""

import pytest

from chatrelay.api.gateway import ModelGateway
from chatrelay.api.runner import ChatRunner
from chatrelay.main import _Deferred, build_app, create_components, shutdown_components


class TestComponents:

    @pytest.mark.asyncio
    async def test_create_components(self, settings):
        components = await create_components(settings)
        try:
            assert isinstance(components["gateway"], ModelGateway)
            assert isinstance(components["runner"], ChatRunner)
            assert components["dispatcher"].names == ["web_search", "web_fetch", "clarify"]
        finally:
            await shutdown_components(components)
        assert components["web_http"].is_closed

    @pytest.mark.asyncio
    async def test_lifespan_populates_state(self, settings):
        app = build_app(settings)
        async with app.router.lifespan_context(app):
            assert isinstance(app.state.components["runner"], ChatRunner)


class TestDeferred:

    def test_before_startup(self):
        deferred = _Deferred({}, "runner")
        with pytest.raises(RuntimeError, match="before application startup"):
            deferred.run_turn

    def test_forwards_after_startup(self):
        components: dict = {}
        deferred = _Deferred(components, "runner")
        components["runner"] = type("R", (), {"value": 42})()
        assert deferred.value == 42
