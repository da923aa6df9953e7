from __future__ import annotations

from typing import List

from ...core.exceptions import StepFailure
from ...core.logging import LoggerManager
from ...core.registry import Registries
from ...core.serialization import Serializer
from ...ports.model_provider import Message, Role
from ...ports.packets import DataPacket
from ..ai.conversation_loop import AgentMode, AIConversationLoop, LoopResult
from ..ai.tools import ToolManager, ToolSet
from ..pipeline.context import StepPayload
from ..pipeline.models import AIStepConfig
from .base import Step


PIPELINE_DIRECTIVE = (
    "You are one step of an automated content pipeline. Process the input packets "
    "and finish by calling exactly one of these handler tools: {handler_tools}. "
    "Do not repeat a tool call with the same parameters."
)


class AIStep(Step):
    """Runs the AI conversation loop in pipeline mode and turns its outcome into packets"""

    def __init__(self, registries: Registries, tool_manager: ToolManager, loop: AIConversationLoop):
        self.registries = registries
        self.tool_manager = tool_manager
        self.loop = loop
        self.logger = LoggerManager.get_logger(__name__)

    def build_messages(self, payload: StepPayload, tools: ToolSet) -> List[Message]:
        config: AIStepConfig = payload.config
        directives = []
        if config.system_prompt:
            directives.append(config.system_prompt)
        if tools.handler_tool_names:
            directives.append(PIPELINE_DIRECTIVE.format(handler_tools=", ".join(tools.handler_tool_names)))

        messages = []
        if directives:
            messages.append(Message(role=Role.SYSTEM, parts=["\n\n".join(directives)]))
        if config.user_message:
            messages.append(Message(role=Role.USER, parts=[config.user_message]))
        if payload.data:
            # engine data is deliberately absent here
            visible = [{"type": p.type, "content": p.content, "metadata": p.metadata,
                        "attachments": p.attachments} for p in payload.data]
            messages.append(Message(role=Role.USER, parts=[
                "Input packets (newest first):\n" + Serializer.safe_json_dumps(visible)]))
        return messages

    def execute(self, payload: StepPayload) -> List[DataPacket]:
        config: AIStepConfig = payload.config
        settings = payload.settings
        provider = self.registries.get_provider(config.provider or settings.default_provider)
        tools = self.tool_manager.build_for_step(payload)
        messages = self.build_messages(payload, tools)
        if not messages:
            self.logger.info(f"AI step {payload.flow_step_id} has no prompt and no input, nothing to do")
            return []

        result = self.loop.execute(
            messages, tools, provider,
            model=config.model or settings.default_model,
            mode=AgentMode.PIPELINE,
            payload=payload,
            max_turns=config.max_turns if config.max_turns is not None else settings.max_turns,
        )
        if result.error:
            raise StepFailure(f"AI processing failed: {result.error}", reason="ai_processing_failed")
        if result.max_turns_reached:
            self.logger.warning(f"AI step {payload.flow_step_id} stopped after {result.turn_count} turns, "
                                f"returning partial output")

        return self.build_packets(payload, result) + payload.data

    def build_packets(self, payload: StepPayload, result: LoopResult) -> List[DataPacket]:
        """Packets produced by the conversation, newest first"""
        produced: List[DataPacket] = []
        source_url = payload.engine_data.get("source_url")

        if result.final_content:
            packet = DataPacket.create(title="AI Response", body=result.final_content, source_type="ai",
                                       packet_type="ai_response", source_url=source_url)
            packet.processing["turn_count"] = result.turn_count
            packet.add_processing_step("ai")
            produced.append(packet)

        for record in result.tool_execution_results:
            if record.is_handler_tool and record.success:
                packet = DataPacket.create(
                    title=f"Handler complete: {record.call.name}",
                    body=str(record.result.get("message") or ""),
                    source_type="ai",
                    packet_type="ai_handler_complete",
                    tool_name=record.call.name,
                    handler=record.handler,
                    tool_parameters=dict(record.call.args),
                    tool_result=record.result,
                    source_url=source_url,
                )
            else:
                packet = DataPacket.create(
                    title=f"Tool result: {record.call.name}",
                    body=Serializer.safe_json_dumps(record.result.get("data", record.result)),
                    source_type="ai",
                    packet_type="tool_result",
                    tool_name=record.call.name,
                    tool_parameters=dict(record.call.args),
                    success=record.success,
                )
            packet.add_processing_step("ai")
            produced.append(packet)

        produced.reverse()
        return produced
