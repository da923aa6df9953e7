"""
Step-type, handler and tool registries; extension loading
"""
import sys
import types

import pytest
from pydantic import BaseModel

from contentflow.app.bootstrap import load_extensions
from contentflow.app.pipeline.models import AIStepConfig, FetchStepConfig, decode_step_config
from contentflow.core.di_container import DependencyContainer
from contentflow.core.exceptions import ConfigError, HandlerNotFound, StepTypeNotFound
from contentflow.core.registry import GenericStepConfig, Registries, ToolRegistry


class Greeter:
    def __init__(self, container: DependencyContainer):
        self.container = container


class TestStepTypeRegistry:

    def test_register_and_get(self):
        registries = Registries()
        factory = lambda c: object()  # noqa: E731

        registries.steps.register("transform", factory, label="Transform", uses_handler=False)

        entry = registries.steps.get("transform")
        assert entry.factory is factory
        assert entry.config_model is GenericStepConfig
        assert entry.uses_handler is False
        assert registries.steps.step_types() == ["transform"]

    def test_unknown_step_type(self):
        with pytest.raises(StepTypeNotFound):
            Registries().steps.get("nope")

    def test_empty_step_type(self):
        with pytest.raises(ConfigError):
            Registries().steps.register("", lambda c: None)


class TestHandlerRegistry:

    def test_decorator_and_create_with_container(self):
        registries = Registries()
        registries.handlers.handler("greeter", "publish", label="Greeter")(Greeter)
        container = DependencyContainer()

        handler = registries.handlers.create("greeter", container)

        assert isinstance(handler, Greeter)
        assert handler.container is container
        assert [e.slug for e in registries.handlers.for_step_type("publish")] == ["greeter"]
        assert registries.handlers.for_step_type("fetch") == []

    def test_unknown_handler(self):
        with pytest.raises(HandlerNotFound):
            Registries().handlers.get("nope")


class TestToolRegistry:

    def test_register_tool_derives_schema(self):
        tools = ToolRegistry()

        @tools.register_tool(category="Research")
        def web_search(query: str, limit: int = 5, job_id: str = ""):
            """Search the web"""
            return [query, limit, job_id]

        tool = tools.get("web_search")
        assert tool.description == "Search the web"
        assert tool.category == "Research"
        assert set(tool.parameters["properties"]) == {"query", "limit"}
        assert tool.parameters["required"] == ["query"]
        assert "title" not in tool.parameters
        # the decorated function stays callable
        assert web_search("x") == ["x", 5, ""]

    def test_function_tool_merges_context_and_wraps_result(self):
        tools = ToolRegistry()

        @tools.register_tool()
        def web_search(query: str, limit: int = 5, job_id: str = ""):
            """Search the web"""
            return [query, limit, job_id]

        result = tools.get("web_search").implementation.handle_tool_call(
            {"query": "python", "job_id": "job-1", "engine_data": {"source_url": "x"}})

        assert result == {"success": True, "data": ["python", 5, "job-1"]}

    def test_invalid_arguments_raise(self):
        tools = ToolRegistry()

        @tools.register_tool()
        def count(n: int):
            """Count"""
            return n

        with pytest.raises(Exception):
            tools.get("count").implementation.handle_tool_call({"n": "not a number"})

    def test_explicit_input_model(self):
        class Args(BaseModel):
            city: str

        tools = ToolRegistry()

        @tools.register_tool(name="weather", description="Current weather", input_model=Args)
        def get_weather(city):
            return {"success": True, "city": city}

        assert tools.get("weather").parameters["required"] == ["city"]
        assert tools.get("weather").implementation.handle_tool_call({"city": "Oslo"}) == \
            {"success": True, "city": "Oslo"}

    def test_configured_filter(self):
        tools = ToolRegistry()

        @tools.register_tool(requires_config=True, is_configured=lambda: False)
        def needs_key():
            """Needs an API key"""

        @tools.register_tool(requires_config=True, is_configured=lambda: 1 / 0)
        def broken_check():
            """Configuration check raises"""

        @tools.register_tool()
        def free():
            """Always available"""

        assert [t.name for t in tools.configured()] == ["free"]
        assert set(tools.get_all_tools()) == {"needs_key", "broken_check", "free"}


class TestProviders:

    def test_missing_provider(self):
        with pytest.raises(ConfigError):
            Registries().get_provider("anthropic")


class TestStepConfigDecoding:

    def test_builtin_union(self):
        config = decode_step_config("fetch", {"handler": "rss", "max_items": 3, "unknown": 1})
        assert isinstance(config, FetchStepConfig)
        assert config.max_items == 3

        assert isinstance(decode_step_config("ai", None), AIStepConfig)

    def test_invalid_builtin_config(self):
        with pytest.raises(ConfigError):
            decode_step_config("fetch", {"max_items": 0})

    def test_extension_step_uses_its_model(self):
        class TransformConfig(BaseModel):
            step_type: str
            pattern: str

        config = decode_step_config("transform", {"pattern": "x"}, TransformConfig)
        assert config.pattern == "x"

        generic = decode_step_config("custom", {"anything": True})
        assert isinstance(generic, GenericStepConfig)


class TestExtensions:

    def test_load_extension_calls_hook(self, monkeypatch):
        module = types.ModuleType("contentflow_test_extension")

        def register_extension(registries):
            registries.handlers.register("ext_handler", "publish", Greeter)

        module.register_extension = register_extension
        monkeypatch.setitem(sys.modules, "contentflow_test_extension", module)
        registries = Registries()

        load_extensions(["contentflow_test_extension"], registries)

        assert registries.handlers.has("ext_handler")

    def test_missing_extension(self):
        with pytest.raises(ConfigError):
            load_extensions(["contentflow_no_such_extension"], Registries())

    def test_extension_without_hook(self, monkeypatch):
        monkeypatch.setitem(sys.modules, "contentflow_hookless", types.ModuleType("contentflow_hookless"))
        with pytest.raises(ConfigError):
            load_extensions(["contentflow_hookless"], Registries())
