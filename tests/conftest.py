"""
Shared fixtures: an engine wired with SQLite and packet files under tmp_path,
an in-process task queue, a scripted model provider and recording handlers.
"""
from typing import Any, Dict, List

import pytest

from contentflow.app.bootstrap import build_container
from contentflow.app.pipeline.engine import PipelineEngine
from contentflow.app.pipeline.scheduling import FlowScheduler
from contentflow.app.pipeline.task_queue import InlineTaskQueue
from contentflow.app.steps import FetchedItem, FetchHandler, PublishHandler, UpdateHandler, register_builtin_steps
from contentflow.core.config import EngineSettings
from contentflow.core.registry import Registries
from contentflow.ports.model_provider import FunctionCall, Message, ModelProvider, Role
from contentflow.ports.packets import DataPacket
from contentflow.ports.store import FlowStore


class ScriptedProvider(ModelProvider):
    """Returns queued responses in order; an exception in the queue is raised"""

    name = "scripted"

    def __init__(self, responses=None):
        self.responses: List[Any] = list(responses or [])
        self.requests: List[Dict[str, Any]] = []

    def generate(self, messages, tools, *, model=None, **options):
        self.requests.append({"messages": list(messages), "tools": list(tools), "model": model})
        if not self.responses:
            return Message(role=Role.ASSISTANT, parts=["done"])
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class ListFetchHandler(FetchHandler):
    """Offers the items listed in handler_config["items"]"""

    source_type = "test_source"

    def fetch_items(self, handler_config, payload):
        for item in handler_config.get("items", []):
            packet = DataPacket.create(title=item.get("title", ""), body=item.get("body", ""),
                                       source_type=self.source_type, source_url=item.get("url"))
            engine_data = {}
            if item.get("url"):
                engine_data["source_url"] = item["url"]
            if item.get("image"):
                engine_data["image_url"] = item["image"]
            yield FetchedItem(item_identifier=item["id"], packet=packet, engine_data=engine_data)


class RecordingPublishHandler(PublishHandler):
    tool_name = "publish_post"
    tool_description = "Publish the post"
    tool_parameters = {
        "type": "object",
        "properties": {"title": {"type": "string"}, "content": {"type": "string"}},
        "required": ["title", "content"],
    }
    calls: List[Dict[str, Any]] = []

    def handle_tool_call(self, parameters, tool_meta=None):
        if parameters.get("handler_config", {}).get("fail"):
            return {"success": False, "error": "rejected by destination"}
        self.calls.append(dict(parameters))
        return {"success": True, "message": "published", "post_id": len(self.calls)}


class RecordingUpdateHandler(UpdateHandler):
    tool_name = "update_post"
    calls: List[Dict[str, Any]] = []

    def handle_tool_call(self, parameters, tool_meta=None):
        self.calls.append(dict(parameters))
        return {"success": True, "message": "updated"}


class ExplodingStep:
    def execute(self, payload):
        raise RuntimeError("step blew up")


class SelfCancellingStep:
    """Fails its own job mid-run, then returns its input as if it had succeeded"""

    def __init__(self, engine: PipelineEngine):
        self.engine = engine

    def execute(self, payload):
        self.engine.fail_job(payload.job_id, "cancelled")
        return payload.data


def assistant_calls(*calls, text: str = "") -> Message:
    """Assistant message with (id, name, args) function calls"""
    parts: List[Any] = [text] if text else []
    parts.extend(FunctionCall(id=i, name=n, args=a) for i, n, a in calls)
    return Message(role=Role.ASSISTANT, parts=parts)


def assistant_text(text: str) -> Message:
    return Message(role=Role.ASSISTANT, parts=[text])


@pytest.fixture(autouse=True)
def reset_handler_calls():
    RecordingPublishHandler.calls = []
    RecordingUpdateHandler.calls = []
    yield


@pytest.fixture
def publish_calls():
    return RecordingPublishHandler.calls


@pytest.fixture
def update_calls():
    return RecordingUpdateHandler.calls


@pytest.fixture
def messages():
    """Builders for scripted assistant messages"""
    class _Builders:
        calls = staticmethod(assistant_calls)
        text = staticmethod(assistant_text)
    return _Builders


@pytest.fixture
def settings(tmp_path):
    return EngineSettings(
        db_path=tmp_path / "engine.db",
        files_dir=tmp_path / "files",
        default_provider="scripted",
        default_model="test-model",
    )


@pytest.fixture
def registries():
    r = Registries()
    register_builtin_steps(r)
    r.handlers.register("test_source", "fetch", ListFetchHandler)
    r.handlers.register("test_publisher", "publish", RecordingPublishHandler)
    r.handlers.register("test_updater", "update", RecordingUpdateHandler)
    r.steps.register("explode", lambda c: ExplodingStep(), uses_handler=False)
    r.steps.register("cancel", lambda c: SelfCancellingStep(c.resolve(PipelineEngine)), uses_handler=False)
    return r


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def queue():
    return InlineTaskQueue()


@pytest.fixture
def container(settings, registries, queue, provider):
    return build_container(settings, registries=registries, queue=queue, providers={"scripted": provider})


@pytest.fixture
def engine(container):
    return container.resolve(PipelineEngine)


@pytest.fixture
def scheduler(container):
    return container.resolve(FlowScheduler)


@pytest.fixture
def store(container):
    return container.resolve(FlowStore)


@pytest.fixture
def make_flow(store):
    """make_flow(("fetch", {...}), ("publish", {...})) -> (flow_id, [flow_step_id, ...])"""
    def _make(*steps):
        flow = store.create_flow("test flow")
        step_ids = [store.add_flow_step(flow.flow_id, step_type, config).flow_step_id
                    for step_type, config in steps]
        return flow.flow_id, step_ids
    return _make


@pytest.fixture
def fetch_config():
    def _config(*item_ids, max_items=1, **extra):
        items = [{"id": i, "title": f"Item {i}", "body": f"Body of {i}",
                  "url": f"https://example.com/{i}", **extra} for i in item_ids]
        return {"handler": "test_source", "handler_config": {"items": items}, "max_items": max_items}
    return _config
