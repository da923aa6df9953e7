"""
Registries - explicit step-type, handler and tool registration

Populated at bootstrap (built-in step types) and by extension modules through
their `register_extension(registries)` hook.
"""

import inspect
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, create_model

from .exceptions import ConfigError, HandlerNotFound, StepTypeNotFound
from .logging import LoggerManager


logger = LoggerManager.get_logger(__name__)

# Payload keys the tool executor merges into every tool call
CONTEXT_PARAMETERS = ("job_id", "flow_step_id", "engine_data", "data", "flow_step_config")


class GenericStepConfig(BaseModel):
    """Config model used for step types that do not register their own"""
    model_config = ConfigDict(extra="allow")

    step_type: str
    handler: Optional[str] = None
    handler_config: Dict[str, Any] = {}


# -------------------------
# Step types
# -------------------------

@dataclass
class StepTypeEntry:
    step_type: str
    factory: Callable[..., Any]
    config_model: Type[BaseModel] = GenericStepConfig
    label: str = ""
    uses_handler: bool = True


class StepTypeRegistry:
    """step_type -> step factory + config model"""

    def __init__(self):
        self._entries: Dict[str, StepTypeEntry] = {}

    def register(self, step_type: str, factory: Callable[..., Any], *,
                 config_model: Type[BaseModel] = GenericStepConfig,
                 label: str = "", uses_handler: bool = True) -> StepTypeEntry:
        """
        Register a step type

        Args:
            step_type: the flow-step `step_type` value
            factory: called with the DependencyContainer, returns a Step
            config_model: pydantic model used to decode the step's config
            label: display name
            uses_handler: whether the step delegates to a registered handler
        """
        if not step_type:
            raise ConfigError("step_type must not be empty", config_key="step_type")
        if step_type in self._entries:
            logger.warning(f"Step type '{step_type}' re-registered, previous registration replaced")
        entry = StepTypeEntry(step_type, factory, config_model, label or step_type, uses_handler)
        self._entries[step_type] = entry
        return entry

    def get(self, step_type: str) -> StepTypeEntry:
        entry = self._entries.get(step_type)
        if entry is None:
            raise StepTypeNotFound(f"No step type registered for '{step_type}'", step_type=step_type)
        return entry

    def has(self, step_type: str) -> bool:
        return step_type in self._entries

    def step_types(self) -> List[str]:
        return list(self._entries)


# -------------------------
# Handlers
# -------------------------

@dataclass
class HandlerEntry:
    slug: str
    step_type: str
    handler_class: Type[Any]
    label: str = ""


class HandlerRegistry:
    """handler slug -> handler class, grouped by step type"""

    def __init__(self):
        self._entries: Dict[str, HandlerEntry] = {}

    def register(self, slug: str, step_type: str, handler_class: Type[Any], label: str = "") -> HandlerEntry:
        if not slug:
            raise ConfigError("handler slug must not be empty", config_key="handler")
        entry = HandlerEntry(slug, step_type, handler_class, label or slug)
        self._entries[slug] = entry
        return entry

    def handler(self, slug: str, step_type: str, label: str = ""):
        """Class decorator form of register()"""
        def decorator(cls):
            self.register(slug, step_type, cls, label)
            return cls
        return decorator

    def get(self, slug: str) -> HandlerEntry:
        entry = self._entries.get(slug)
        if entry is None:
            raise HandlerNotFound(f"No handler registered for '{slug}'", handler=slug)
        return entry

    def has(self, slug: str) -> bool:
        return slug in self._entries

    def for_step_type(self, step_type: str) -> List[HandlerEntry]:
        return [e for e in self._entries.values() if e.step_type == step_type]

    def create(self, slug: str, container=None) -> Any:
        """Instantiate a handler, injecting services when a container is given"""
        entry = self.get(slug)
        if container is not None:
            return container.build(entry.handler_class)
        return entry.handler_class()


# -------------------------
# General (chat) tools
# -------------------------

class FunctionTool:
    """Adapts a plain function to the `handle_tool_call(parameters, tool_meta)` contract"""

    def __init__(self, func: Callable, input_model: Optional[Type[BaseModel]], context_params: List[str]):
        self.func = func
        self.input_model = input_model
        self.context_params = context_params

    def handle_tool_call(self, parameters: Dict[str, Any], tool_meta: Any = None) -> Dict[str, Any]:
        args = {k: v for k, v in parameters.items() if k not in CONTEXT_PARAMETERS}
        if self.input_model is not None:
            args = self.input_model(**args).model_dump()
        for name in self.context_params:
            if name in parameters:
                args[name] = parameters[name]

        result = self.func(**args)
        if isinstance(result, dict) and "success" in result:
            return result
        return {"success": True, "data": result}


@dataclass
class GeneralTool:
    name: str
    description: str
    implementation: Any
    parameters: Dict[str, Any] = field(default_factory=dict)
    category: str = "Uncategorized"
    requires_config: bool = False
    is_configured: Optional[Callable[[], bool]] = None

    def configured(self) -> bool:
        if not self.requires_config:
            return True
        if self.is_configured is None:
            return False
        try:
            return bool(self.is_configured())
        except Exception as e:
            logger.warning(f"Configuration check for tool '{self.name}' failed: {e}")
            return False


def _input_schema(model: Optional[Type[BaseModel]]) -> Dict[str, Any]:
    if model is None:
        return {"type": "object", "properties": {}}
    schema = model.model_json_schema()
    schema.pop("title", None)
    for prop in schema.get("properties", {}).values():
        prop.pop("title", None)
    return schema


class ToolRegistry:
    """General tools available to AI steps (when enabled) and to chat agents"""

    def __init__(self):
        self._tools: Dict[str, GeneralTool] = {}

    def register_tool(self, name: str = None, description: str = None, category: str = "Uncategorized",
                      input_model: Type[BaseModel] = None, requires_config: bool = False,
                      is_configured: Optional[Callable[[], bool]] = None):
        """
        Decorator: register a function as a general tool

        Args:
            name: tool name (defaults to the function name)
            description: tool description (defaults to the docstring)
            category: tool category
            input_model: optional pydantic model for argument validation; generated
                from the signature when omitted
            requires_config: the tool is only offered when is_configured() is true
            is_configured: configuration check for requires_config tools
        """
        def decorator(func: Callable):
            func_name = name or func.__name__
            doc = description or func.__doc__ or "No description provided."

            sig = inspect.signature(func)
            fields = {}
            context_params = []
            for k, v in sig.parameters.items():
                if k in ('self', 'cls') or v.kind in (v.VAR_POSITIONAL, v.VAR_KEYWORD):
                    continue
                if k in CONTEXT_PARAMETERS:
                    context_params.append(k)
                    continue
                annotation = v.annotation if v.annotation is not inspect.Parameter.empty else Any
                default = v.default if v.default is not inspect.Parameter.empty else ...
                fields[k] = (annotation, default)

            model = input_model
            if model is None and fields:
                model = create_model(f"{func_name}Input", **fields)

            self._tools[func_name] = GeneralTool(
                name=func_name,
                description=inspect.cleandoc(doc),
                implementation=FunctionTool(func, model, context_params),
                parameters=_input_schema(model),
                category=category,
                requires_config=requires_config,
                is_configured=is_configured,
            )

            @wraps(func)
            def wrapper(*args, **kwargs):
                return func(*args, **kwargs)
            return wrapper
        return decorator

    def add(self, tool: GeneralTool) -> None:
        """Register a tool backed by a handler class or import path"""
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[GeneralTool]:
        return self._tools.get(name)

    def all(self) -> List[GeneralTool]:
        return list(self._tools.values())

    def configured(self) -> List[GeneralTool]:
        return [t for t in self._tools.values() if t.configured()]

    def get_all_tools(self) -> Dict[str, Dict[str, Any]]:
        """Metadata of every registered tool (without implementations)"""
        return {
            t.name: {"name": t.name, "description": t.description, "category": t.category,
                     "parameters": t.parameters, "requires_config": t.requires_config}
            for t in self._tools.values()
        }


@dataclass
class Registries:
    """Everything extensions can register into"""
    steps: StepTypeRegistry = field(default_factory=StepTypeRegistry)
    handlers: HandlerRegistry = field(default_factory=HandlerRegistry)
    tools: ToolRegistry = field(default_factory=ToolRegistry)
    providers: Dict[str, Any] = field(default_factory=dict)   # provider name -> ModelProvider

    def get_provider(self, name: str) -> Any:
        provider = self.providers.get(name)
        if provider is None:
            raise ConfigError(f"Model provider '{name}' is not configured", config_key="ai.default_provider",
                              available=sorted(self.providers))
        return provider


# Process-wide tool registry for module-level @register_tool usage
default_tool_registry = ToolRegistry()
register_tool = default_tool_registry.register_tool
