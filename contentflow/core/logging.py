"""
LoggerManager - unified logging setup
Provides one-time logging configuration and a logger accessor for every module.
"""

import logging
import sys
from pathlib import Path
from typing import Optional


_LEVELS = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL
}


class LoggerManager:
    """Unified logger manager"""

    _loggers: dict = {}
    _configured: bool = False

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """
        Get (or create) a configured logger

        Args:
            name: logger name, usually __name__

        Returns:
            configured logger instance
        """
        if not cls._configured:
            cls.configure()

        if name not in cls._loggers:
            cls._loggers[name] = logging.getLogger(name)

        return cls._loggers[name]

    @classmethod
    def configure(cls, level: str = 'INFO', log_file: Optional[Path] = None) -> None:
        """Configure the root logger once. Later calls only adjust the level."""
        root_logger = logging.getLogger()
        root_logger.setLevel(_LEVELS.get(str(level).upper(), logging.INFO))

        if cls._configured:
            return

        # Avoid adding handlers twice (pytest/celery install their own)
        if root_logger.handlers:
            cls._configured = True
            return

        console_handler = logging.StreamHandler(sys.stdout)
        console_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] [%(name)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        console_handler.setFormatter(console_formatter)
        root_logger.addHandler(console_handler)

        if log_file:
            cls.add_file_handler(Path(log_file), level)

        cls._configured = True

    @classmethod
    def set_level(cls, level: str):
        """Set the global log level"""
        if level.upper() in _LEVELS:
            logging.getLogger().setLevel(_LEVELS[level.upper()])

    @classmethod
    def add_file_handler(cls, file_path: Path, level: str = 'INFO'):
        """Attach an extra file handler"""
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(file_path, encoding='utf-8')
            file_formatter = logging.Formatter(
                '%(asctime)s [%(levelname)s] [%(name)s:%(lineno)d] %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            file_handler.setLevel(_LEVELS.get(level.upper(), logging.INFO))

            logging.getLogger().addHandler(file_handler)
        except OSError as e:
            logging.getLogger('LoggerManager').warning(f"Failed to add file handler {file_path}: {e}")


def get_logger(name: str) -> logging.Logger:
    return LoggerManager.get_logger(name)
