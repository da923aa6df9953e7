"""
Flow scheduling: manual, one-time and recurring runs.

A periodic beat task calls run_due(); each due flow is claimed with a
compare-and-set on next_run_at so concurrent beats never double-run it.
"""
from __future__ import annotations

import time
from typing import List, Optional, Union

from ...core.config import EngineSettings
from ...core.exceptions import ConfigError, FlowNotFound
from ...core.logging import LoggerManager
from ...ports.store import FlowStore
from .engine import PipelineEngine


MANUAL = "manual"
ONCE = "once"


class FlowScheduler:

    def __init__(self, settings: EngineSettings, flows: FlowStore, engine: PipelineEngine):
        self.settings = settings
        self.flows = flows
        self.engine = engine
        self.logger = LoggerManager.get_logger(__name__)

    def schedule_flow(self, flow_id: str, when: Union[str, int, float], now: Optional[float] = None) -> Optional[float]:
        """
        Set a flow's schedule

        Args:
            flow_id: flow to schedule
            when: "manual" (clear), a unix timestamp (one-time run) or an interval key
            now: reference time, defaults to time.time()

        Returns:
            the next run time, None for manual

        Raises:
            FlowNotFound: unknown flow
            ConfigError: unknown interval key
        """
        if self.flows.get_flow(flow_id) is None:
            raise FlowNotFound(f"Flow {flow_id} does not exist", flow_id=flow_id)
        now = time.time() if now is None else now

        if when == MANUAL:
            self.flows.set_schedule(flow_id, None, None)
            self.logger.info(f"Flow {flow_id} set to manual runs")
            return None

        if isinstance(when, (int, float)) and not isinstance(when, bool):
            self.flows.set_schedule(flow_id, ONCE, float(when))
            self.logger.info(f"Flow {flow_id} scheduled once at {when}")
            return float(when)

        seconds = self.settings.scheduler_intervals.get(str(when))
        if seconds is None:
            raise ConfigError(f"Unknown schedule interval '{when}'", config_key="scheduler_intervals",
                              available=sorted(self.settings.scheduler_intervals))
        next_run_at = now + seconds
        self.flows.set_schedule(flow_id, str(when), next_run_at)
        self.logger.info(f"Flow {flow_id} scheduled every {seconds}s ({when}), next run at {next_run_at}")
        return next_run_at

    def run_due(self, now: Optional[float] = None) -> List[str]:
        """Start a job for every flow whose next run is due; returns the created job ids"""
        now = time.time() if now is None else now
        job_ids: List[str] = []

        for flow in self.flows.list_due_flows(now):
            interval = flow.schedule_interval
            seconds = self.settings.scheduler_intervals.get(interval) if interval else None
            if interval and interval != ONCE and seconds is None:
                self.logger.error(f"Flow {flow.flow_id} has unknown interval '{interval}', clearing its schedule")
                self.flows.set_schedule(flow.flow_id, None, None)
                continue

            new_next_run_at = now + seconds if seconds is not None else None
            if not self.flows.claim_scheduled_run(flow.flow_id, flow.next_run_at, new_next_run_at):
                self.logger.debug(f"Scheduled run of flow {flow.flow_id} claimed elsewhere")
                continue
            if new_next_run_at is None:
                self.flows.set_schedule(flow.flow_id, None, None)

            try:
                job_ids.append(self.engine.create_and_run(flow.flow_id, context="scheduled"))
            except FlowNotFound as e:
                self.logger.warning(f"Skipping scheduled run of flow {flow.flow_id}: {e.message}")
        return job_ids
