"""
Core layer: logging, exceptions, configuration, dependency injection, registries.
"""

from .logging import LoggerManager, get_logger  # noqa: F401
from .exceptions import ContentFlowError, ErrorHandler  # noqa: F401
from .config import ConfigManager, EngineSettings  # noqa: F401
from .di_container import DependencyContainer, ServiceLifetime  # noqa: F401
from .registry import Registries, register_tool  # noqa: F401
