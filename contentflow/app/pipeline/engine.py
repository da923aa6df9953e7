"""
Pipeline engine (job/step scheduler).

Owns the job lifecycle. Each step runs as an independent queued task; the
engine loads the job, guards against redelivery, runs the step through the
dispatcher and then either hands off to the next step or finishes the job.

State machine: pending -> running -> {completed, completed_no_items, failed}
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from ...core.config import EngineSettings
from ...core.exceptions import (
    ContentFlowError,
    ErrorHandler,
    FlowNotFound,
    FlowStepNotFound,
    JobNotFound,
    StepFailure,
    StepNotReady,
)
from ...core.logging import LoggerManager
from ...ports.packets import DataPacket, PacketRepository
from ...ports.store import FlowStore, Job, JobStatus, JobStore, ProcessedItemStore
from ...ports.task_queue import StepTask, TaskQueue
from .context import ProcessedClaim
from .dispatcher import StepDispatcher
from .models import StepOutcome


class PipelineEngine:

    def __init__(self, settings: EngineSettings, flows: FlowStore, jobs: JobStore,
                 processed_items: ProcessedItemStore, packets: PacketRepository, queue: TaskQueue,
                 dispatcher: StepDispatcher):
        self.settings = settings
        self.flows = flows
        self.jobs = jobs
        self.processed_items = processed_items
        self.packets = packets
        self.queue = queue
        self.dispatcher = dispatcher
        self.logger = LoggerManager.get_logger(__name__)
        self.error_handler = ErrorHandler(self.logger)

    # -------------------------
    # Triggering
    # -------------------------

    def create_job(self, flow_id: str, context: str = "") -> str:
        """
        Create a pending job for a flow

        Raises:
            FlowNotFound: the flow does not exist or has no steps
        """
        steps = self.flows.get_flow_steps(flow_id)
        if not steps:
            raise FlowNotFound(f"Flow {flow_id} has no steps", flow_id=flow_id)
        job = self.jobs.create_job(flow_id, [s.flow_step_id for s in steps], context)
        self.logger.info(f"Created job {job.job_id} for flow {flow_id} ({len(steps)} steps)")
        return job.job_id

    def enqueue_step(self, job_id: str, flow_step_id: str, data: List[DataPacket]) -> str:
        """Persist `data` as the step's input and queue the step. Does not wait for it to run."""
        job = self._require_job(job_id)
        data_ref = self.packets.store(job.flow_id, job_id, flow_step_id, data)
        task_id = self.queue.enqueue(StepTask(job_id=job_id, flow_step_id=flow_step_id, data_ref=data_ref))
        self.logger.debug(f"Enqueued step {flow_step_id} of job {job_id} as task {task_id}")
        return task_id

    def create_and_run(self, flow_id: str, context: str = "") -> str:
        """
        Create a job and queue its first step

        A job whose first step cannot be queued is failed with `handoff_failed`
        before the error is re-raised.
        """
        job_id = self.create_job(flow_id, context)
        job = self._require_job(job_id)
        try:
            self.enqueue_step(job_id, job.flow_step_ids[0], [])
        except Exception as e:
            log_ctx = {"job_id": job_id, "flow_step_id": job.flow_step_ids[0]}
            self.error_handler.handle_and_log(e, log_ctx)
            self.fail_job(job_id, "handoff_failed", log_ctx)
            raise
        return job_id

    # -------------------------
    # Execution
    # -------------------------

    def execute_step(self, job_id: str, flow_step_id: str, data_ref: str = "") -> StepOutcome:
        """
        Execute one step of a job (called by the queue runner)

        Redelivered tasks are harmless: terminal jobs and already-passed steps are
        skipped; a step whose predecessor has not advanced the job yet raises
        StepNotReady so the queue retries it later.

        Raises:
            JobNotFound: no such job
            StepNotReady: the job has not reached this step yet
        """
        job = self._require_job(job_id)
        log_ctx = {"job_id": job_id, "flow_step_id": flow_step_id}

        if job.is_terminal:
            self.logger.info(f"Job {job_id} is already {job.status.value}, ignoring step {flow_step_id}")
            return StepOutcome(job_id, flow_step_id, "skipped", reason="job_terminal")

        index = job.step_index(flow_step_id)
        if index < 0:
            self.fail_job(job_id, "unknown_step", log_ctx)
            return StepOutcome(job_id, flow_step_id, "failed", reason="unknown_step")
        if index < job.current_step_index:
            self.logger.info(f"Step {flow_step_id} of job {job_id} already executed, ignoring redelivery")
            return StepOutcome(job_id, flow_step_id, "skipped", reason="already_executed")
        if index > job.current_step_index:
            raise StepNotReady(
                f"Job {job_id} is at step {job.current_step_index}, not {index}",
                job_id=job_id, flow_step_id=flow_step_id,
            )

        self.jobs.mark_running(job_id)

        try:
            flow_step = self.flows.get_flow_step(flow_step_id)
            if flow_step is None:
                raise FlowStepNotFound(f"Flow step {flow_step_id} not found", flow_step_id=flow_step_id)
            data = self.packets.load(data_ref) if data_ref else []
            payload = self.dispatcher.build_payload(job, index, flow_step, data)
            log_ctx["step_type"] = flow_step.step_type
            result = self.dispatcher.dispatch(payload)
        except StepFailure as e:
            self.error_handler.handle_and_log(e, log_ctx)
            self.fail_job(job_id, e.reason, log_ctx)
            return StepOutcome(job_id, flow_step_id, "failed", reason=e.reason)
        except Exception as e:
            self.error_handler.handle_and_log(e, log_ctx)
            reason = self._failure_reason(e)
            self.fail_job(job_id, reason, log_ctx)
            return StepOutcome(job_id, flow_step_id, "failed", reason=reason)

        # the job may have been failed (cancelled) while the step ran
        current = self.jobs.get_job(job_id)
        if current is None or current.is_terminal:
            state = current.status.value if current else "deleted"
            self.logger.info(f"Job {job_id} became {state} during step {flow_step_id}, dropping its output")
            return StepOutcome(job_id, flow_step_id, "skipped", reason="job_terminal")

        if not result:
            self._finish(job, JobStatus.COMPLETED_NO_ITEMS, [])
            return StepOutcome(job_id, flow_step_id, JobStatus.COMPLETED_NO_ITEMS.value)

        if index == len(job.flow_step_ids) - 1:
            self._finish(job, JobStatus.COMPLETED, payload.pending_claims, flow_step_id)
            return StepOutcome(job_id, flow_step_id, JobStatus.COMPLETED.value, packet_count=len(result))

        # enqueue precedes advance_step; a worker that picks up the next task first gets
        # StepNotReady and waits one step_retry_countdown
        next_step_id = job.flow_step_ids[index + 1]
        try:
            self.enqueue_step(job_id, next_step_id, result)
        except Exception as e:
            self.error_handler.handle_and_log(e, {**log_ctx, "next_flow_step_id": next_step_id})
            self.fail_job(job_id, "handoff_failed", log_ctx)
            return StepOutcome(job_id, flow_step_id, "failed", reason="handoff_failed")

        if self.jobs.advance_step(job_id, index):
            self._commit_claims(job_id, flow_step_id, payload.pending_claims)
        else:
            self.logger.warning(f"Job {job_id} was not advanced past step {index}; another execution "
                                f"or a terminal transition got there first")
        return StepOutcome(job_id, flow_step_id, "advanced", next_flow_step_id=next_step_id,
                           packet_count=len(result))

    @staticmethod
    def _failure_reason(error: Exception) -> str:
        if isinstance(error, ContentFlowError):
            return str(error.details.get("reason") or error.error_code.lower())
        return "exception"

    def _commit_claims(self, job_id: str, flow_step_id: str, claims: List[ProcessedClaim]) -> None:
        for claim in claims:
            if not self.processed_items.mark_processed(flow_step_id, claim.source_type,
                                                       claim.item_identifier, job_id):
                self.logger.info(f"Item {claim.source_type}/{claim.item_identifier} was already marked "
                                 f"processed for step {flow_step_id}")

    def _finish(self, job: Job, status: JobStatus, claims: List[ProcessedClaim],
                flow_step_id: Optional[str] = None) -> None:
        if self.jobs.complete_job(job.job_id, status):
            if flow_step_id:
                self._commit_claims(job.job_id, flow_step_id, claims)
            self.logger.info(f"Job {job.job_id} {status.value}")
        else:
            self.logger.warning(f"Job {job.job_id} was already terminal, not marking {status.value}")
        self.packets.delete_job(job.flow_id, job.job_id)

    # -------------------------
    # Failure and housekeeping
    # -------------------------

    def fail_job(self, job_id: str, reason: str, context: Optional[Dict[str, Any]] = None) -> bool:
        """Mark a job failed. Returns False if the job was already terminal."""
        job = self.jobs.get_job(job_id)
        if job is None:
            self.logger.error(f"Cannot fail unknown job {job_id} (reason={reason})")
            return False

        changed = self.jobs.fail_job(job_id, reason)
        if changed:
            self.logger.error(f"Job {job_id} failed: reason={reason} context={context or {}}")
        else:
            self.logger.warning(f"Job {job_id} already {job.status.value}, failure '{reason}' not recorded")

        if changed and self.settings.cleanup_job_data_on_failure:
            self.packets.delete_job(job.flow_id, job_id)
        return changed

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.jobs.get_job(job_id)

    def delete_jobs(self, failed_only: bool = False) -> int:
        """Delete job rows (and their engine data and packet files)"""
        doomed = self.jobs.list_jobs(status=JobStatus.FAILED if failed_only else None)
        deleted = set(self.jobs.delete_jobs(failed_only))
        for job in doomed:
            if job.job_id in deleted:
                self.packets.delete_job(job.flow_id, job.job_id)
        self.logger.info(f"Deleted {len(deleted)} job(s){' (failed only)' if failed_only else ''}")
        return len(deleted)

    def run_housekeeping(self) -> Dict[str, int]:
        """Retention cleanup of packet files and processed-item records"""
        files_removed = self.packets.cleanup_older_than(self.settings.file_retention_days)
        items_removed = self.processed_items.cleanup_processed_items(self.settings.processed_items_retention_days)
        return {"job_directories_removed": files_removed, "processed_items_removed": items_removed}

    def _require_job(self, job_id: str) -> Job:
        job = self.jobs.get_job(job_id)
        if job is None:
            raise JobNotFound(f"Job {job_id} not found", job_id=job_id)
        return job
