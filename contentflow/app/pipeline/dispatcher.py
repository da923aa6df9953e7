"""
Step dispatcher.

Resolves a flow step's `step_type` to a registered Step, builds its payload and
invokes it. It never touches job status; failures propagate to the engine.
"""
from __future__ import annotations

from typing import List

from ...core.config import EngineSettings
from ...core.di_container import DependencyContainer
from ...core.exceptions import StepExecutionError
from ...core.logging import LoggerManager
from ...core.registry import Registries
from ...ports.packets import DataPacket
from ...ports.store import EngineDataStore, FlowStep, FlowStore, Job
from .context import EngineData, StepPayload
from .models import decode_step_config


class StepDispatcher:

    def __init__(self, container: DependencyContainer, registries: Registries, settings: EngineSettings,
                 flows: FlowStore, engine_data: EngineDataStore):
        self.container = container
        self.registries = registries
        self.settings = settings
        self.flows = flows
        self.engine_data = engine_data
        self.logger = LoggerManager.get_logger(__name__)

    def build_payload(self, job: Job, index: int, flow_step: FlowStep, data: List[DataPacket]) -> StepPayload:
        """
        Assemble the step payload

        Raises:
            StepTypeNotFound: step_type is not registered
            ConfigError: the step config does not decode
        """
        entry = self.registries.steps.get(flow_step.step_type)
        config = decode_step_config(flow_step.step_type, flow_step.config, entry.config_model)

        previous_step = next_step = None
        if index > 0:
            previous_step = self.flows.get_flow_step(job.flow_step_ids[index - 1])
        if index + 1 < len(job.flow_step_ids):
            next_step = self.flows.get_flow_step(job.flow_step_ids[index + 1])

        return StepPayload(
            job_id=job.job_id,
            flow_id=job.flow_id,
            flow_step=flow_step,
            config=config,
            data=list(data),
            engine_data=EngineData(self.engine_data, job.job_id),
            settings=self.settings,
            previous_step=previous_step,
            next_step=next_step,
        )

    def dispatch(self, payload: StepPayload) -> List[DataPacket]:
        """
        Run the step for a payload

        Returns:
            the step's packets; an empty list means "no items"
        """
        entry = self.registries.steps.get(payload.step_type)
        step = entry.factory(self.container)
        self.logger.info(f"Executing {payload.step_type} step {payload.flow_step_id} for job {payload.job_id}")

        result = step.execute(payload)
        if result is None:
            return []
        if not isinstance(result, list) or not all(isinstance(p, DataPacket) for p in result):
            raise StepExecutionError(
                f"Step {payload.flow_step_id} returned {type(result).__name__}, expected a list of DataPacket",
                flow_step_id=payload.flow_step_id, reason="invalid_step_result",
            )
        return result
