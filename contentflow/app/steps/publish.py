from __future__ import annotations

from typing import Any, Dict, List, Optional

from ...core.di_container import DependencyContainer
from ...core.exceptions import ConfigError, StepFailure
from ...core.logging import LoggerManager
from ...core.registry import Registries
from ...ports.packets import DataPacket
from ..pipeline.context import StepPayload
from .base import DestinationHandler, Step


class PublishStep(Step):
    """
    Sends content to a destination handler.

    If an AI step already ran this handler as its handler tool, the
    `ai_handler_complete` packet is recorded and passed on. Otherwise the handler
    is called directly with the newest packet.
    """

    packet_type = "publish"

    def __init__(self, registries: Registries, container: DependencyContainer):
        self.registries = registries
        self.container = container
        self.logger = LoggerManager.get_logger(__name__)

    @staticmethod
    def find_handler_completion(payload: StepPayload, handler: str) -> Optional[DataPacket]:
        for packet in payload.data:
            if packet.type == "ai_handler_complete" and packet.metadata.get("handler") == handler:
                return packet
        return None

    def direct_parameters(self, payload: StepPayload, packet: DataPacket) -> Dict[str, Any]:
        return {
            "title": packet.title,
            "content": packet.body,
            "source_url": packet.metadata.get("source_url") or payload.engine_data.get("source_url"),
            "image_url": payload.engine_data.get("image_url"),
            "job_id": payload.job_id,
            "flow_step_id": payload.flow_step_id,
            "engine_data": payload.engine_data.to_dict(),
            "flow_step_config": payload.flow_step_config,
            "handler_config": dict(payload.config.handler_config),
        }

    def validate_target(self, payload: StepPayload) -> None:
        pass

    def execute(self, payload: StepPayload) -> List[DataPacket]:
        slug = payload.config.handler
        entry = self.registries.handlers.get(slug)
        self.validate_target(payload)

        completion = self.find_handler_completion(payload, slug)
        if completion is not None:
            completion.add_processing_step(self.packet_type)
            self.logger.info(f"Handler '{slug}' already ran via AI tool call for job {payload.job_id}")
            return list(payload.data)

        if not payload.data:
            self.logger.info(f"Nothing to {self.packet_type} for job {payload.job_id}")
            return []

        handler = self.registries.handlers.create(slug, self.container)
        if not isinstance(handler, DestinationHandler):
            raise ConfigError(f"Handler '{slug}' ({entry.step_type}) cannot be used in a {self.packet_type} step",
                              config_key="handler")

        newest = payload.data[0]
        result = handler.handle_tool_call(self.direct_parameters(payload, newest), None)
        if not isinstance(result, dict) or not result.get("success"):
            error = result.get("error") if isinstance(result, dict) else None
            raise StepFailure(f"Handler '{slug}' failed: {error or 'unsuccessful result'}", reason="handler_failed")

        packet = DataPacket.create(title=newest.title, body=newest.body, source_type=slug,
                                   packet_type=self.packet_type, handler=slug, handler_result=result)
        packet.add_processing_step(self.packet_type)
        self.logger.info(f"{self.packet_type.capitalize()} via '{slug}' succeeded for job {payload.job_id}")
        return [packet] + payload.data


class UpdateStep(PublishStep):
    """Publish variant that modifies existing content; needs a target to update"""

    packet_type = "update"

    def validate_target(self, payload: StepPayload) -> None:
        if payload.engine_data.get("source_url"):
            return
        if any(p.metadata.get("original_id") for p in payload.data):
            return
        raise StepFailure("Update step has no source_url in engine data and no original_id in packet metadata",
                          reason="missing_update_target")

    def direct_parameters(self, payload: StepPayload, packet: DataPacket) -> Dict[str, Any]:
        parameters = super().direct_parameters(payload, packet)
        original_id = next((p.metadata.get("original_id") for p in payload.data if p.metadata.get("original_id")),
                           None)
        parameters["original_id"] = original_id
        return parameters
