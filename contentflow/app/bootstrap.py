"""
Application bootstrap - service container construction and extension loading.
"""
from __future__ import annotations

import importlib
from typing import Dict, Iterable, Optional

from ..adapters.files import FilePacketRepository
from ..adapters.llm import OpenAIProvider
from ..adapters.sqlite import SQLiteStore, SQLiteStoreConfig
from ..core.config import ConfigManager, EngineSettings
from ..core.di_container import DependencyContainer, ServiceLifetime
from ..core.exceptions import ConfigError
from ..core.logging import LoggerManager
from ..core.registry import Registries, default_tool_registry
from ..ports.model_provider import ModelProvider
from ..ports.packets import PacketRepository
from ..ports.store import EngineDataStore, FlowStore, JobStore, ProcessedItemStore
from ..ports.task_queue import TaskQueue
from .ai import AIConversationLoop, ConversationManager, ToolExecutor, ToolManager
from .pipeline.dispatcher import StepDispatcher
from .pipeline.engine import PipelineEngine
from .pipeline.models import BUILTIN_STEP_TYPES
from .pipeline.scheduling import FlowScheduler
from .pipeline.task_queue import CeleryTaskQueue, create_celery_app
from .steps import register_builtin_steps


logger = LoggerManager.get_logger(__name__)

EXTENSION_HOOK = "register_extension"


def load_extensions(paths: Iterable[str], registries: Registries) -> None:
    """
    Import each extension module and call its `register_extension(registries)` hook

    Raises:
        ConfigError: the module cannot be imported or has no hook
    """
    for path in paths:
        try:
            module = importlib.import_module(path)
        except ImportError as e:
            raise ConfigError(f"Cannot import extension '{path}': {e}", config_key="engine.extensions") from e

        hook = getattr(module, EXTENSION_HOOK, None)
        if not callable(hook):
            raise ConfigError(f"Extension '{path}' has no {EXTENSION_HOOK}(registries) function",
                              config_key="engine.extensions")
        hook(registries)
        logger.info(f"Loaded extension {path}")


def build_container(settings: Optional[EngineSettings] = None, *,
                    registries: Optional[Registries] = None,
                    queue: Optional[TaskQueue] = None,
                    providers: Optional[Dict[str, ModelProvider]] = None) -> DependencyContainer:
    """
    Wire the engine

    Args:
        settings: engine settings, loaded from the config directory when omitted
        registries: pre-populated registries (built-in step types are added if missing)
        queue: task queue, a Celery-backed queue when omitted
        providers: model providers by name; an OpenAI provider is added when an API key is configured

    Returns:
        the container; resolve PipelineEngine / FlowScheduler from it
    """
    settings = settings or ConfigManager().build_settings()
    LoggerManager.configure(settings.log_level, settings.log_file)

    container = DependencyContainer()
    container.register_instance(DependencyContainer, container)
    container.register_instance(EngineSettings, settings)

    # Storage
    store = SQLiteStore(SQLiteStoreConfig(settings.db_path))
    for port in (FlowStore, JobStore, EngineDataStore, ProcessedItemStore):
        container.register_instance(port, store)
    container.register_instance(PacketRepository, FilePacketRepository(settings.files_dir))

    # Queue
    if queue is None:
        queue = CeleryTaskQueue(create_celery_app(settings))
    container.register_instance(TaskQueue, queue)

    # Registries
    if registries is None:
        registries = Registries(tools=default_tool_registry)
    if not all(registries.steps.has(t) for t in BUILTIN_STEP_TYPES):
        register_builtin_steps(registries)
    registries.providers.update(providers or {})
    if OpenAIProvider.name not in registries.providers and settings.openai_api_key:
        registries.providers[OpenAIProvider.name] = OpenAIProvider(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            default_model=settings.default_model,
        )
    load_extensions(settings.extensions, registries)
    container.register_instance(Registries, registries)

    # AI
    container.register(ConversationManager, lifetime=ServiceLifetime.SINGLETON)
    container.register(ToolManager, lifetime=ServiceLifetime.SINGLETON)
    container.register(ToolExecutor, lifetime=ServiceLifetime.SINGLETON)
    container.register(AIConversationLoop, lifetime=ServiceLifetime.SINGLETON)

    # Pipeline
    container.register(StepDispatcher, lifetime=ServiceLifetime.SINGLETON)
    container.register(PipelineEngine, lifetime=ServiceLifetime.SINGLETON)
    container.register(FlowScheduler, lifetime=ServiceLifetime.SINGLETON)

    logger.info(f"Engine ready: db={settings.db_path} providers={sorted(registries.providers)} "
                f"step_types={registries.steps.step_types()}")
    return container
