"""
Tool executor: runs the implementation bound to a tool call.

Never raises. Lookup failures and handler exceptions come back as
{"success": False, "error": ...} so the conversation can feed them to the model.
"""
from __future__ import annotations

import importlib
import inspect
from typing import Any, Dict, Optional

from ...core.di_container import DependencyContainer
from ...core.exceptions import ErrorHandler, ToolClassMissing, ToolNotFound
from ...core.logging import LoggerManager
from ...ports.model_provider import FunctionCall
from ..pipeline.context import StepPayload
from .tools import ToolMetadata, ToolSet


class ToolExecutor:

    def __init__(self, container: Optional[DependencyContainer] = None):
        self.container = container
        self.logger = LoggerManager.get_logger(__name__)
        self.error_handler = ErrorHandler(self.logger)

    def _instantiate(self, cls: type) -> Any:
        if self.container is not None:
            return self.container.build(cls)
        return cls()

    def resolve(self, meta: ToolMetadata) -> Any:
        """
        Turn a tool binding into something callable

        Raises:
            ToolClassMissing: the binding cannot be resolved
        """
        binding = meta.binding
        if isinstance(binding, str):
            module_name, _, attr = binding.partition(":")
            try:
                binding = getattr(importlib.import_module(module_name), attr)
            except (ImportError, AttributeError, ValueError) as e:
                raise ToolClassMissing(f"Tool '{meta.name}' is bound to missing '{meta.binding}'",
                                       tool_name=meta.name, binding=meta.binding) from e

        if inspect.isclass(binding):
            if not hasattr(binding, "handle_tool_call"):
                raise ToolClassMissing(f"Class {binding.__name__} bound to tool '{meta.name}' has no handle_tool_call",
                                       tool_name=meta.name, binding=binding.__name__)
            return self._instantiate(binding)
        if binding is not None and (hasattr(binding, "handle_tool_call") or callable(binding)):
            return binding
        raise ToolClassMissing(f"Tool '{meta.name}' has no usable binding", tool_name=meta.name,
                               binding=repr(binding))

    @staticmethod
    def build_parameters(call: FunctionCall, meta: ToolMetadata, payload: Optional[StepPayload]) -> Dict[str, Any]:
        """Call arguments scoped with the step context; context keys win over model-supplied ones"""
        parameters = dict(call.args)
        if meta.is_handler_tool:
            parameters["handler_config"] = dict(meta.handler_config)
        if payload is not None:
            parameters.update({
                "job_id": payload.job_id,
                "flow_step_id": payload.flow_step_id,
                "engine_data": payload.engine_data.to_dict(),
                "data": [p.to_dict() for p in payload.data],
                "flow_step_config": payload.flow_step_config,
            })
        return parameters

    def execute(self, call: FunctionCall, tools: ToolSet, payload: Optional[StepPayload] = None) -> Dict[str, Any]:
        context = {"tool_name": call.name}
        if payload is not None:
            context.update(payload.log_context())

        try:
            meta = tools.metadata.get(call.name)
            if meta is None:
                raise ToolNotFound(f"Tool '{call.name}' not found", tool_name=call.name)
            implementation = self.resolve(meta)
            parameters = self.build_parameters(call, meta, payload)

            if hasattr(implementation, "handle_tool_call"):
                result = implementation.handle_tool_call(parameters, meta)
            else:
                result = implementation(parameters, meta)
        except Exception as e:
            self.error_handler.handle_and_log(e, context)
            response = self.error_handler.create_error_response(e)
            response["tool_name"] = call.name
            return response

        if not isinstance(result, dict):
            result = {"success": bool(result), "data": result}
        result.setdefault("success", True)
        result.setdefault("tool_name", call.name)
        self.logger.info(f"Tool '{call.name}' executed: success={result['success']}")
        return result
