"""
Celery worker - durable step execution

    celery -A contentflow.app.pipeline.celery_worker worker -Q steps,flows
    celery -A contentflow.app.pipeline.celery_worker beat

Each step of a job is its own task; a worker crash mid-step redelivers the
task (acks_late) and the engine's redelivery guard makes the replay safe.
"""
from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional

from celery.schedules import crontab

from ...core.config import ConfigManager
from ...core.di_container import DependencyContainer
from ...core.exceptions import JobNotFound, StepNotReady
from ...core.logging import LoggerManager
from .engine import PipelineEngine
from .models import StepOutcome
from .scheduling import FlowScheduler
from .task_queue import (
    CLEANUP_TASK,
    EXECUTE_STEP_TASK,
    RUN_DUE_FLOWS_TASK,
    RUN_FLOW_TASK,
    CeleryTaskQueue,
    create_celery_app,
)


settings = ConfigManager().build_settings()
celery_app = create_celery_app(settings)

# StepNotReady retries before the job is failed
STEP_NOT_READY_MAX_RETRIES = 12

logger = LoggerManager.get_logger(__name__)

_container: Optional[DependencyContainer] = None
_container_lock = threading.Lock()


def get_container() -> DependencyContainer:
    """Worker-wide container, built on first use"""
    global _container
    if _container is None:
        with _container_lock:
            if _container is None:
                from ..bootstrap import build_container
                _container = build_container(settings, queue=CeleryTaskQueue(celery_app))
    return _container


@celery_app.task(bind=True, name=EXECUTE_STEP_TASK, max_retries=STEP_NOT_READY_MAX_RETRIES)
def execute_step(self, job_id: str, flow_step_id: str, data_ref: str = "") -> Dict[str, Any]:
    """
    Execute one step of a job

    Returns:
        the StepOutcome as a dict
    """
    engine = get_container().resolve(PipelineEngine)
    try:
        return engine.execute_step(job_id, flow_step_id, data_ref).to_dict()
    except JobNotFound as e:
        logger.error(f"Dropping step task {flow_step_id}: {e.message}")
        return StepOutcome(job_id, flow_step_id, "skipped", reason="job_not_found").to_dict()
    except StepNotReady as e:
        if self.request.retries >= self.max_retries:
            engine.fail_job(job_id, "step_not_ready", {"flow_step_id": flow_step_id, "retries": self.request.retries})
            return StepOutcome(job_id, flow_step_id, "failed", reason="step_not_ready").to_dict()
        logger.info(f"Step {flow_step_id} of job {job_id} not ready, retry {self.request.retries + 1}")
        raise self.retry(exc=e, countdown=settings.step_retry_countdown)


@celery_app.task(name=RUN_FLOW_TASK)
def run_flow(flow_id: str, context: str = "manual") -> str:
    """Create a job for a flow and queue its first step; returns the job id"""
    return get_container().resolve(PipelineEngine).create_and_run(flow_id, context)


@celery_app.task(name=RUN_DUE_FLOWS_TASK)
def run_due_flows() -> List[str]:
    job_ids = get_container().resolve(FlowScheduler).run_due()
    if job_ids:
        logger.info(f"Started {len(job_ids)} scheduled job(s)")
    return job_ids


@celery_app.task(name=CLEANUP_TASK)
def cleanup() -> Dict[str, int]:
    result = get_container().resolve(PipelineEngine).run_housekeeping()
    logger.info(f"Housekeeping: {result}")
    return result


# Periodic tasks
celery_app.conf.beat_schedule = {
    'run-due-flows': {
        'task': RUN_DUE_FLOWS_TASK,
        'schedule': 60.0,
    },
    'cleanup': {
        'task': CLEANUP_TASK,
        'schedule': crontab(hour=3, minute=0),
    },
}


if __name__ == '__main__':
    celery_app.start()
