"""
Tool declarations for AI steps and chat agents.

Declarations are rebuilt on every invocation from the current flow-step
configuration:
- handler tools come from the handlers of the steps before and after the AI step
- general tools are offered when enabled for the step and configured
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ...core.logging import LoggerManager
from ...core.registry import GeneralTool, Registries
from ...ports.model_provider import ToolDeclaration
from ...ports.store import FlowStep
from ..pipeline.context import StepPayload


@dataclass
class ToolMetadata:
    """
    Execution binding of a tool.

    `binding` is a callable, a class or instance exposing
    handle_tool_call(parameters, tool_meta), or a "module:Attr" import path.
    """
    name: str
    binding: Any
    is_handler_tool: bool = False
    handler: Optional[str] = None
    handler_config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolSet:
    declarations: List[ToolDeclaration] = field(default_factory=list)
    metadata: Dict[str, ToolMetadata] = field(default_factory=dict)

    def add(self, declaration: ToolDeclaration, meta: ToolMetadata) -> None:
        if declaration.name in self.metadata:
            # first registration wins; handler tools are added before general tools
            return
        self.declarations.append(declaration)
        self.metadata[declaration.name] = meta

    @property
    def names(self) -> List[str]:
        return [d.name for d in self.declarations]

    @property
    def handler_tool_names(self) -> List[str]:
        return [name for name, meta in self.metadata.items() if meta.is_handler_tool]


class ToolManager:

    def __init__(self, registries: Registries):
        self.registries = registries
        self.logger = LoggerManager.get_logger(__name__)

    def _add_handler_tools(self, tools: ToolSet, step: Optional[FlowStep]) -> None:
        if step is None or not step.handler:
            return
        if not self.registries.handlers.has(step.handler):
            self.logger.warning(f"Step {step.flow_step_id} uses unregistered handler '{step.handler}'")
            return
        entry = self.registries.handlers.get(step.handler)
        definitions = getattr(entry.handler_class, "tool_definitions", None)
        if definitions is None:
            return
        handler_config = dict(step.config.get("handler_config") or {})
        for name, tool_def in definitions(entry.slug, handler_config).items():
            tools.add(
                ToolDeclaration(name=name, description=tool_def.get("description", ""),
                                parameters=tool_def.get("parameters") or {"type": "object", "properties": {}}),
                ToolMetadata(name=name, binding=entry.handler_class, is_handler_tool=True,
                             handler=entry.slug, handler_config=handler_config),
            )

    @staticmethod
    def _add_general_tool(tools: ToolSet, tool: GeneralTool) -> None:
        tools.add(
            ToolDeclaration(name=tool.name, description=tool.description, parameters=tool.parameters),
            ToolMetadata(name=tool.name, binding=tool.implementation),
        )

    def build_for_step(self, payload: StepPayload) -> ToolSet:
        """Tools available to one AI step invocation"""
        tools = ToolSet()
        self._add_handler_tools(tools, payload.previous_step)
        self._add_handler_tools(tools, payload.next_step)

        for name in getattr(payload.config, "enabled_tools", None) or []:
            tool = self.registries.tools.get(name)
            if tool is None:
                self.logger.warning(f"Enabled tool '{name}' is not registered (step {payload.flow_step_id})")
            elif not tool.configured():
                self.logger.info(f"Tool '{name}' requires configuration, not offered to step {payload.flow_step_id}")
            else:
                self._add_general_tool(tools, tool)

        self.logger.debug(f"Tools for step {payload.flow_step_id}: {tools.names}")
        return tools

    def build_for_chat(self) -> ToolSet:
        """All configured general tools"""
        tools = ToolSet()
        for tool in self.registries.tools.configured():
            self._add_general_tool(tools, tool)
        return tools
