"""
Pipeline engine: job lifecycle, hand-off, failure handling and redelivery
"""
import pytest

from contentflow.core.exceptions import FlowNotFound, JobNotFound, StepNotReady
from contentflow.ports.store import JobStatus
from contentflow.ports.task_queue import StepTask


def _job_dir(settings, flow_id, job_id):
    return settings.files_dir / f"flow_{flow_id}" / f"job_{job_id}"


class TestFullRun:

    def test_fetch_ai_publish_completes(self, engine, queue, provider, make_flow, fetch_config, store,
                                        settings, publish_calls, messages):
        flow_id, (fetch_id, ai_id, publish_id) = make_flow(
            ("fetch", fetch_config("a1")),
            ("ai", {"user_message": "Rewrite the item as a post"}),
            ("publish", {"handler": "test_publisher", "handler_config": {"site": "blog"}}),
        )
        provider.responses = [messages.calls(("call_1", "publish_post", {"title": "T", "content": "C"}))]

        job_id = engine.create_and_run(flow_id)
        outcomes = queue.drain(engine)

        assert [o.status for o in outcomes] == ["advanced", "advanced", "completed"]
        job = engine.get_job(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.current_step_index == 2

        # published once, by the AI step's handler tool
        assert len(publish_calls) == 1
        assert publish_calls[0]["title"] == "T"
        assert publish_calls[0]["job_id"] == job_id
        assert publish_calls[0]["handler_config"] == {"site": "blog"}
        assert publish_calls[0]["engine_data"]["source_url"] == "https://example.com/a1"

        assert store.is_processed(fetch_id, "test_source", "a1")
        assert not _job_dir(settings, flow_id, job_id).exists()

    def test_publish_without_ai_calls_handler_directly(self, engine, queue, make_flow, fetch_config, publish_calls):
        flow_id, _ = make_flow(
            ("fetch", fetch_config("a1", "a2", max_items=2)),
            ("publish", {"handler": "test_publisher"}),
        )

        job_id = engine.create_and_run(flow_id)
        queue.drain(engine)

        assert engine.get_job(job_id).status == JobStatus.COMPLETED
        assert len(publish_calls) == 1
        assert publish_calls[0]["title"] == "Item a1"
        assert publish_calls[0]["source_url"] == "https://example.com/a1"

    def test_update_step_uses_original_id(self, engine, queue, make_flow, fetch_config, update_calls):
        flow_id, _ = make_flow(
            ("fetch", fetch_config("p7")),
            ("update", {"handler": "test_updater"}),
        )

        job_id = engine.create_and_run(flow_id)
        queue.drain(engine)

        assert engine.get_job(job_id).status == JobStatus.COMPLETED
        assert update_calls[0]["original_id"] == "p7"


class TestNoItems:

    def test_zero_items_completes_without_enqueuing_more(self, engine, queue, make_flow, fetch_config):
        flow_id, (fetch_id, publish_id) = make_flow(
            ("fetch", fetch_config()),
            ("publish", {"handler": "test_publisher"}),
        )

        job_id = engine.create_and_run(flow_id)
        outcomes = queue.drain(engine)

        assert outcomes[-1].status == "completed_no_items"
        assert engine.get_job(job_id).status == JobStatus.COMPLETED_NO_ITEMS
        assert [t.flow_step_id for t in queue.enqueued] == [fetch_id]

    def test_second_run_skips_processed_items(self, engine, queue, make_flow, fetch_config, publish_calls):
        flow_id, _ = make_flow(
            ("fetch", fetch_config("a1", "a2", "a3", max_items=2)),
            ("publish", {"handler": "test_publisher"}),
        )

        first = engine.create_and_run(flow_id)
        queue.drain(engine)
        second = engine.create_and_run(flow_id)
        queue.drain(engine)
        third = engine.create_and_run(flow_id)
        queue.drain(engine)

        assert engine.get_job(first).status == JobStatus.COMPLETED
        assert engine.get_job(second).status == JobStatus.COMPLETED
        assert engine.get_job(third).status == JobStatus.COMPLETED_NO_ITEMS
        assert [c["title"] for c in publish_calls] == ["Item a1", "Item a3"]


class TestFailures:

    def test_uncaught_exception_fails_job_and_stops_flow(self, engine, queue, make_flow, fetch_config,
                                                         settings, store):
        flow_id, (fetch_id, explode_id, publish_id) = make_flow(
            ("fetch", fetch_config("a1")),
            ("explode", {}),
            ("publish", {"handler": "test_publisher"}),
        )

        job_id = engine.create_and_run(flow_id)
        outcomes = queue.drain(engine)

        job = engine.get_job(job_id)
        assert job.status == JobStatus.FAILED
        assert job.failure_reason == "exception"
        assert outcomes[-1].reason == "exception"
        assert publish_id not in [t.flow_step_id for t in queue.enqueued]
        assert not _job_dir(settings, flow_id, job_id).exists()
        # the fetch step handed off successfully, so its item stays consumed
        assert store.is_processed(fetch_id, "test_source", "a1")

    def test_unsuccessful_handler_fails_with_reason(self, engine, queue, make_flow, fetch_config):
        flow_id, _ = make_flow(
            ("fetch", fetch_config("a1")),
            ("publish", {"handler": "test_publisher", "handler_config": {"fail": True}}),
        )

        job_id = engine.create_and_run(flow_id)
        queue.drain(engine)

        job = engine.get_job(job_id)
        assert job.status == JobStatus.FAILED
        assert job.failure_reason == "handler_failed"

    def test_update_without_target_fails(self, engine, queue, make_flow):
        flow_id, _ = make_flow(("update", {"handler": "test_updater"}))

        job_id = engine.create_and_run(flow_id)
        queue.drain(engine)

        assert engine.get_job(job_id).failure_reason == "missing_update_target"

    def test_ai_provider_failure(self, engine, queue, provider, make_flow, fetch_config):
        from contentflow.core.exceptions import ProviderRequestError

        flow_id, _ = make_flow(
            ("fetch", fetch_config("a1")),
            ("ai", {"user_message": "Summarize"}),
        )
        provider.responses = [ProviderRequestError("upstream timeout", provider="scripted")]

        job_id = engine.create_and_run(flow_id)
        queue.drain(engine)

        job = engine.get_job(job_id)
        assert job.status == JobStatus.FAILED
        assert job.failure_reason == "ai_processing_failed"

    def test_unknown_step_type_fails_job(self, engine, queue, make_flow):
        flow_id, _ = make_flow(("no_such_type", {}))

        job_id = engine.create_and_run(flow_id)
        queue.drain(engine)

        assert engine.get_job(job_id).failure_reason == "step_type_not_found"

    def test_first_step_enqueue_failure_fails_job(self, engine, queue, make_flow, fetch_config, store,
                                                  monkeypatch):
        flow_id, _ = make_flow(("fetch", fetch_config("a1")))

        def broken_enqueue(task):
            raise RuntimeError("broker unavailable")

        monkeypatch.setattr(queue, "enqueue", broken_enqueue)

        with pytest.raises(RuntimeError):
            engine.create_and_run(flow_id)

        jobs = store.list_jobs(flow_id=flow_id)
        assert [(j.status, j.failure_reason) for j in jobs] == [(JobStatus.FAILED, "handoff_failed")]

    def test_job_failed_during_step_drops_its_output(self, engine, queue, make_flow, fetch_config,
                                                     settings, store):
        flow_id, (fetch_id, cancel_id, publish_id) = make_flow(
            ("fetch", fetch_config("a1")),
            ("cancel", {}),
            ("publish", {"handler": "test_publisher"}),
        )

        job_id = engine.create_and_run(flow_id)
        outcomes = queue.drain(engine)

        assert outcomes[-1].flow_step_id == cancel_id
        assert (outcomes[-1].status, outcomes[-1].reason) == ("skipped", "job_terminal")
        job = engine.get_job(job_id)
        assert job.status == JobStatus.FAILED
        assert job.failure_reason == "cancelled"
        assert job.current_step_index == 1
        assert publish_id not in [t.flow_step_id for t in queue.enqueued]
        assert not _job_dir(settings, flow_id, job_id).exists()

    def test_fail_job_is_noop_on_terminal_job(self, engine, queue, make_flow, fetch_config):
        flow_id, _ = make_flow(("fetch", fetch_config()))
        job_id = engine.create_and_run(flow_id)
        queue.drain(engine)

        assert engine.fail_job(job_id, "late_failure") is False
        job = engine.get_job(job_id)
        assert job.status == JobStatus.COMPLETED_NO_ITEMS
        assert job.failure_reason is None


class TestRedelivery:

    def test_terminal_job_is_skipped(self, engine, queue, make_flow, fetch_config):
        flow_id, (fetch_id,) = make_flow(("fetch", fetch_config()))
        job_id = engine.create_and_run(flow_id)
        queue.drain(engine)

        outcome = engine.execute_step(job_id, fetch_id)

        assert outcome.status == "skipped"
        assert outcome.reason == "job_terminal"

    def test_already_executed_step_is_skipped(self, engine, queue, make_flow, fetch_config):
        flow_id, (fetch_id, publish_id) = make_flow(
            ("fetch", fetch_config("a1")),
            ("publish", {"handler": "test_publisher"}),
        )
        job_id = engine.create_and_run(flow_id)
        first_task = queue.enqueued[0]

        assert engine.execute_step(job_id, fetch_id, first_task.data_ref).status == "advanced"
        redelivered = engine.execute_step(job_id, fetch_id, first_task.data_ref)

        assert redelivered.status == "skipped"
        assert redelivered.reason == "already_executed"
        assert engine.get_job(job_id).current_step_index == 1
        # only the original hand-off was enqueued
        assert [t.flow_step_id for t in queue.enqueued] == [fetch_id, publish_id]

    def test_early_step_raises_not_ready(self, engine, make_flow, fetch_config):
        flow_id, (fetch_id, publish_id) = make_flow(
            ("fetch", fetch_config("a1")),
            ("publish", {"handler": "test_publisher"}),
        )
        job_id = engine.create_job(flow_id)

        with pytest.raises(StepNotReady):
            engine.execute_step(job_id, publish_id)
        assert engine.get_job(job_id).status == JobStatus.PENDING

    def test_foreign_step_fails_job(self, engine, make_flow, fetch_config):
        flow_id, _ = make_flow(("fetch", fetch_config()))
        job_id = engine.create_job(flow_id)

        outcome = engine.execute_step(job_id, "not-a-step-of-this-job")

        assert outcome.reason == "unknown_step"
        assert engine.get_job(job_id).failure_reason == "unknown_step"

    def test_inline_queue_gives_up_on_never_ready_task(self, engine, queue, make_flow, fetch_config):
        flow_id, (fetch_id, publish_id) = make_flow(
            ("fetch", fetch_config("a1")),
            ("publish", {"handler": "test_publisher"}),
        )
        job_id = engine.create_job(flow_id)
        queue.enqueue(StepTask(job_id=job_id, flow_step_id=publish_id, data_ref=""))

        outcomes = queue.drain(engine)

        assert outcomes[-1].reason == "step_not_ready"
        assert engine.get_job(job_id).failure_reason == "step_not_ready"

    def test_unknown_job(self, engine):
        with pytest.raises(JobNotFound):
            engine.execute_step("missing", "step")


class TestJobManagement:

    def test_flow_without_steps_cannot_run(self, engine, store):
        flow = store.create_flow("empty")
        with pytest.raises(FlowNotFound):
            engine.create_and_run(flow.flow_id)

    def test_delete_failed_jobs(self, engine, queue, make_flow, fetch_config):
        flow_id, _ = make_flow(("fetch", fetch_config()))
        failed = engine.create_job(flow_id)
        engine.fail_job(failed, "manual_abort")
        kept = engine.create_and_run(flow_id)
        queue.drain(engine)

        assert engine.delete_jobs(failed_only=True) == 1
        assert engine.get_job(failed) is None
        assert engine.get_job(kept) is not None

    def test_housekeeping_reports_counts(self, engine):
        result = engine.run_housekeeping()
        assert result == {"job_directories_removed": 0, "processed_items_removed": 0}
