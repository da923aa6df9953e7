from __future__ import annotations

from typing import List

from ...core.di_container import DependencyContainer
from ...core.exceptions import ConfigError
from ...core.logging import LoggerManager
from ...core.registry import Registries
from ...ports.packets import DataPacket
from ...ports.store import ProcessedItemStore
from ..pipeline.context import StepPayload
from ..pipeline.models import FetchStepConfig
from .base import FetchHandler, Step


class FetchStep(Step):
    """
    Takes up to `max_items` unprocessed items from the handler.

    Items are only claimed on the payload here; the engine marks them processed
    after the packets have been handed to the next step.
    """

    def __init__(self, registries: Registries, processed_items: ProcessedItemStore,
                 container: DependencyContainer):
        self.registries = registries
        self.processed_items = processed_items
        self.container = container
        self.logger = LoggerManager.get_logger(__name__)

    def execute(self, payload: StepPayload) -> List[DataPacket]:
        config: FetchStepConfig = payload.config
        entry = self.registries.handlers.get(config.handler)
        handler = self.registries.handlers.create(config.handler, self.container)
        if not isinstance(handler, FetchHandler):
            raise ConfigError(f"Handler '{config.handler}' ({entry.step_type}) cannot be used in a fetch step",
                              config_key="handler")
        source_type = handler.source_type or entry.slug

        taken: List[DataPacket] = []
        for item in handler.fetch_items(config.handler_config, payload):
            identifier = str(item.item_identifier)
            if self.processed_items.is_processed(payload.flow_step_id, source_type, identifier):
                continue
            if any(c.source_type == source_type and c.item_identifier == identifier
                   for c in payload.pending_claims):
                continue

            errors = item.packet.validate()
            if errors:
                self.logger.warning(f"Skipping item {identifier} from {source_type}: {'; '.join(errors)}")
                continue

            packet = item.packet
            packet.type = "fetch"
            packet.metadata.setdefault("original_id", identifier)
            packet.add_processing_step("fetch")
            payload.engine_data.merge(item.engine_data)
            payload.defer_processed(source_type, identifier)
            taken.append(packet)
            if len(taken) >= config.max_items:
                break

        if not taken:
            self.logger.info(f"No unprocessed items from {source_type} for step {payload.flow_step_id}")
            return []
        self.logger.info(f"Fetched {len(taken)} item(s) from {source_type} for job {payload.job_id}")
        return taken + payload.data
