"""
Task queue implementations.

- CeleryTaskQueue: durable, broker-backed hand-off (production)
- InlineTaskQueue: in-memory FIFO drained in-process (tests, local runs)
"""
from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Deque, List, Optional, Tuple
from uuid import uuid4

from celery import Celery

from ...core.config import EngineSettings
from ...core.exceptions import StepNotReady
from ...core.logging import LoggerManager
from ...ports.task_queue import StepTask, TaskQueue
from .models import StepOutcome

if TYPE_CHECKING:
    from .engine import PipelineEngine


EXECUTE_STEP_TASK = "contentflow.execute_step"
RUN_FLOW_TASK = "contentflow.run_flow"
RUN_DUE_FLOWS_TASK = "contentflow.run_due_flows"
CLEANUP_TASK = "contentflow.cleanup"

STEPS_QUEUE = "steps"
FLOWS_QUEUE = "flows"


def create_celery_app(settings: EngineSettings, name: str = "contentflow") -> Celery:
    """Celery app for producers and workers; at-least-once delivery, one task per worker slot"""
    app = Celery(name)
    app.conf.update(
        broker_url=settings.broker_url,
        result_backend=settings.result_backend,
        task_serializer='json',
        accept_content=['json'],
        result_serializer='json',
        timezone='UTC',
        enable_utc=True,
        task_routes={
            EXECUTE_STEP_TASK: {'queue': STEPS_QUEUE},
            RUN_FLOW_TASK: {'queue': FLOWS_QUEUE},
            RUN_DUE_FLOWS_TASK: {'queue': FLOWS_QUEUE},
            CLEANUP_TASK: {'queue': FLOWS_QUEUE},
        },
        worker_prefetch_multiplier=1,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
    )
    return app


class CeleryTaskQueue(TaskQueue):
    """Sends step tasks by name so producers need not import the worker module"""

    def __init__(self, app: Celery, queue: str = STEPS_QUEUE):
        self.app = app
        self.queue = queue
        self.logger = LoggerManager.get_logger(__name__)

    def enqueue(self, task: StepTask) -> str:
        result = self.app.send_task(EXECUTE_STEP_TASK, kwargs=task.to_dict(), queue=self.queue)
        self.logger.debug(f"Sent {EXECUTE_STEP_TASK} for job {task.job_id} step {task.flow_step_id}: {result.id}")
        return result.id


class InlineTaskQueue(TaskQueue):
    """In-process FIFO; nothing runs until drain() is called"""

    def __init__(self, max_not_ready_retries: int = 3):
        self._tasks: Deque[Tuple[str, StepTask, int]] = deque()
        self.max_not_ready_retries = max_not_ready_retries
        self.enqueued: List[StepTask] = []
        self.logger = LoggerManager.get_logger(__name__)

    def enqueue(self, task: StepTask) -> str:
        task_id = uuid4().hex
        self._tasks.append((task_id, task, 0))
        self.enqueued.append(task)
        return task_id

    def __len__(self) -> int:
        return len(self._tasks)

    def drain(self, engine: "PipelineEngine", max_tasks: Optional[int] = 1000) -> List[StepOutcome]:
        """
        Run queued tasks (including ones enqueued while draining) until the queue is empty

        StepNotReady tasks are put back at the end of the queue a limited number of times.
        """
        outcomes: List[StepOutcome] = []
        executed = 0
        while self._tasks and (max_tasks is None or executed < max_tasks):
            task_id, task, attempts = self._tasks.popleft()
            executed += 1
            try:
                outcomes.append(engine.execute_step(task.job_id, task.flow_step_id, task.data_ref))
            except StepNotReady:
                if attempts >= self.max_not_ready_retries:
                    self.logger.error(f"Task {task_id} never became ready, failing job {task.job_id}")
                    engine.fail_job(task.job_id, "step_not_ready", task.to_dict())
                    outcomes.append(StepOutcome(task.job_id, task.flow_step_id, "failed", reason="step_not_ready"))
                else:
                    self._tasks.append((task_id, task, attempts + 1))
        return outcomes
