"""
AI conversation loop.

Drives a bounded multi-turn exchange with a model provider:

    send history + tools -> append response -> no calls? done
    otherwise, for each call in order:
        duplicate of an earlier call -> synthetic error response, not executed
        else execute and append the response
        pipeline mode + handler tool succeeded -> done

The turn count never exceeds max_turns. Reaching it is a warning, not a
failure; the content produced so far is returned. Provider errors stop the
loop immediately and are reported in `error`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ...core.config import clamp_max_turns
from ...core.exceptions import ContentFlowError
from ...core.logging import LoggerManager
from ...ports.model_provider import FunctionCall, FunctionResponse, Message, ModelProvider
from ..pipeline.context import StepPayload
from .conversation import ConversationManager
from .tool_executor import ToolExecutor
from .tools import ToolSet


class AgentMode(str, Enum):
    PIPELINE = "pipeline"   # a successful handler tool ends the conversation
    CHAT = "chat"


@dataclass
class ToolExecutionResult:
    call: FunctionCall
    result: Dict[str, Any]
    turn: int
    is_handler_tool: bool = False
    handler: Optional[str] = None

    @property
    def success(self) -> bool:
        return bool(self.result.get("success"))


@dataclass
class LoopResult:
    messages: List[Message]
    final_content: str = ""
    turn_count: int = 0
    completed: bool = False
    tool_execution_results: List[ToolExecutionResult] = field(default_factory=list)
    error: Optional[str] = None
    max_turns_reached: bool = False

    @property
    def handler_result(self) -> Optional[ToolExecutionResult]:
        """The successful handler tool execution, if any"""
        for record in self.tool_execution_results:
            if record.is_handler_tool and record.success:
                return record
        return None


class AIConversationLoop:

    def __init__(self, executor: ToolExecutor, conversation: Optional[ConversationManager] = None):
        self.executor = executor
        self.conversation = conversation or ConversationManager()
        self.logger = LoggerManager.get_logger(__name__)

    def execute(self, messages: List[Message], tools: ToolSet, provider: ModelProvider, *,
                model: Optional[str] = None, mode: AgentMode = AgentMode.PIPELINE,
                payload: Optional[StepPayload] = None, max_turns: Any = None,
                **provider_options: Any) -> LoopResult:
        """
        Run the conversation

        Args:
            messages: initial history (system directives, prior context)
            tools: declarations and bindings for this invocation
            provider: model client
            model: model name passed to the provider
            mode: pipeline or chat
            payload: step payload merged into tool calls (None for chat)
            max_turns: turn bound, clamped to [1, 50]
        """
        max_turns = clamp_max_turns(max_turns if max_turns is not None else 12)
        result = LoopResult(messages=list(messages))
        history = result.messages
        log_ctx = payload.log_context() if payload is not None else {"mode": mode.value}

        while not result.completed:
            if result.turn_count >= max_turns:
                result.max_turns_reached = True
                self.logger.warning(f"AI conversation reached max turns ({max_turns}) without completing {log_ctx}")
                break
            result.turn_count += 1

            try:
                response = provider.generate(history, tools.declarations, model=model, **provider_options)
            except ContentFlowError as e:
                result.error = e.message
                self.logger.error(f"Provider request failed on turn {result.turn_count}: {e.message} {log_ctx}")
                break
            except Exception as e:
                result.error = f"Provider request failed: {e}"
                self.logger.error(f"Provider request failed on turn {result.turn_count}: {e} {log_ctx}",
                                  exc_info=True)
                break

            seen = self.conversation.call_signatures(history)
            history.append(response)
            if response.text:
                result.final_content = response.text

            calls = response.function_calls
            if not calls:
                result.completed = True
                break

            for call in calls:
                signature = self.conversation.call_signature(call)
                if signature in seen:
                    self.logger.info(f"Rejected duplicate call to '{call.name}' on turn {result.turn_count} {log_ctx}")
                    history.append(self.conversation.function_response_message(
                        self.conversation.duplicate_response(call)))
                    continue
                seen.add(signature)

                tool_result = self.executor.execute(call, tools, payload)
                meta = tools.metadata.get(call.name)
                record = ToolExecutionResult(
                    call=call,
                    result=tool_result,
                    turn=result.turn_count,
                    is_handler_tool=bool(meta and meta.is_handler_tool),
                    handler=meta.handler if meta else None,
                )
                result.tool_execution_results.append(record)
                history.append(self.conversation.function_response_message(
                    FunctionResponse(call_id=call.id, name=call.name, result=tool_result)))

                if mode == AgentMode.PIPELINE and record.is_handler_tool and record.success:
                    self.logger.info(f"Handler tool '{call.name}' succeeded, conversation complete {log_ctx}")
                    result.completed = True
                    break

        return result
