"""
Built-in step types: fetch, ai, publish, update.
"""

from ...core.registry import Registries
from ..pipeline.models import AIStepConfig, FetchStepConfig, PublishStepConfig, UpdateStepConfig
from .ai_step import AIStep
from .base import DestinationHandler, FetchedItem, FetchHandler, PublishHandler, Step, UpdateHandler  # noqa: F401
from .fetch import FetchStep
from .publish import PublishStep, UpdateStep


def register_builtin_steps(registries: Registries) -> None:
    """Register the four built-in step types; steps are built per execution with constructor injection"""
    registries.steps.register("fetch", lambda c: c.build(FetchStep), config_model=FetchStepConfig, label="Fetch")
    registries.steps.register("ai", lambda c: c.build(AIStep), config_model=AIStepConfig, label="AI",
                              uses_handler=False)
    registries.steps.register("publish", lambda c: c.build(PublishStep), config_model=PublishStepConfig,
                              label="Publish")
    registries.steps.register("update", lambda c: c.build(UpdateStep), config_model=UpdateStepConfig,
                              label="Update")
