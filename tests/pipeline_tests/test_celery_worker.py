"""
Celery worker tasks, called directly (no broker)
"""
from unittest.mock import MagicMock

import pytest

from contentflow.app.pipeline import celery_worker
from contentflow.app.pipeline.task_queue import (
    EXECUTE_STEP_TASK,
    STEPS_QUEUE,
    CeleryTaskQueue,
    create_celery_app,
)
from contentflow.core.exceptions import StepNotReady
from contentflow.ports.store import JobStatus
from contentflow.ports.task_queue import StepTask


@pytest.fixture
def worker_container(container, monkeypatch):
    monkeypatch.setattr(celery_worker, "_container", container)
    return container


class TestCeleryTasks:

    def test_run_flow_queues_first_step(self, worker_container, queue, make_flow, fetch_config):
        flow_id, (fetch_id,) = make_flow(("fetch", fetch_config()))

        job_id = celery_worker.run_flow(flow_id)

        assert len(queue.enqueued) == 1
        assert queue.enqueued[0].job_id == job_id
        assert queue.enqueued[0].flow_step_id == fetch_id

    def test_execute_step_returns_outcome(self, worker_container, engine, queue, make_flow, fetch_config):
        flow_id, (fetch_id,) = make_flow(("fetch", fetch_config()))
        job_id = engine.create_and_run(flow_id)
        task = queue.enqueued[0]

        result = celery_worker.execute_step(task.job_id, task.flow_step_id, task.data_ref)

        assert result["status"] == "completed_no_items"
        assert engine.get_job(job_id).status == JobStatus.COMPLETED_NO_ITEMS

    def test_execute_step_unknown_job_is_dropped(self, worker_container):
        result = celery_worker.execute_step("missing-job", "step-1")
        assert result["status"] == "skipped"
        assert result["reason"] == "job_not_found"

    def test_not_ready_step_is_retried(self, worker_container, engine, make_flow, fetch_config):
        flow_id, (_, publish_id) = make_flow(
            ("fetch", fetch_config("a1")),
            ("publish", {"handler": "test_publisher"}),
        )
        job_id = engine.create_job(flow_id)

        # called directly, Celery's retry re-raises the original exception
        with pytest.raises(StepNotReady):
            celery_worker.execute_step(job_id, publish_id)
        assert engine.get_job(job_id).status == JobStatus.PENDING

    def test_not_ready_step_fails_job_when_retries_exhausted(self, worker_container, engine, make_flow,
                                                               fetch_config, monkeypatch):
        flow_id, (_, publish_id) = make_flow(
            ("fetch", fetch_config("a1")),
            ("publish", {"handler": "test_publisher"}),
        )
        job_id = engine.create_job(flow_id)
        monkeypatch.setattr(celery_worker.execute_step, "max_retries", 0)

        result = celery_worker.execute_step(job_id, publish_id)

        assert result["reason"] == "step_not_ready"
        assert engine.get_job(job_id).failure_reason == "step_not_ready"

    def test_run_due_flows_and_cleanup(self, worker_container):
        assert celery_worker.run_due_flows() == []
        assert celery_worker.cleanup() == {"job_directories_removed": 0, "processed_items_removed": 0}


class TestCeleryTaskQueue:

    def test_enqueue_sends_task_by_name(self):
        app = MagicMock()
        app.send_task.return_value.id = "task-123"
        queue = CeleryTaskQueue(app)

        task_id = queue.enqueue(StepTask(job_id="j1", flow_step_id="s1", data_ref="flow_f/job_j1/s1.json"))

        assert task_id == "task-123"
        app.send_task.assert_called_once_with(
            EXECUTE_STEP_TASK,
            kwargs={"job_id": "j1", "flow_step_id": "s1", "data_ref": "flow_f/job_j1/s1.json"},
            queue=STEPS_QUEUE,
        )

    def test_app_configuration(self, settings):
        app = create_celery_app(settings)

        assert app.conf.task_serializer == "json"
        assert app.conf.task_acks_late is True
        assert app.conf.worker_prefetch_multiplier == 1
        assert app.conf.task_routes[EXECUTE_STEP_TASK] == {"queue": STEPS_QUEUE}

    def test_beat_schedule(self):
        schedule = celery_worker.celery_app.conf.beat_schedule
        assert schedule["run-due-flows"]["task"] == "contentflow.run_due_flows"
        assert schedule["cleanup"]["task"] == "contentflow.cleanup"
