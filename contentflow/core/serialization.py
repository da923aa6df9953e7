"""
Serializer - JSON helpers
Strict dumps for persisted packets, canonical dumps for comparisons and a lenient dumps for logs/prompts.
"""

import json
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from .logging import LoggerManager


class Serializer:
    """JSON serialization helpers"""

    @staticmethod
    def _lenient_default(o: Any) -> Any:
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        if isinstance(o, Enum):
            return o.value
        if isinstance(o, Path):
            return str(o)
        if isinstance(o, (set, frozenset)):
            return sorted(o, key=str)
        if hasattr(o, "model_dump"):
            return o.model_dump(mode="json")
        if callable(o):
            return f"<Callable: {getattr(o, '__name__', type(o).__name__)}>"
        return f"<Object: {type(o).__name__}>"

    @staticmethod
    def dumps(obj: Any, **kwargs) -> str:
        """Strict dumps: raises TypeError on anything JSON cannot represent"""
        json_kwargs = {'ensure_ascii': False}
        json_kwargs.update(kwargs)
        return json.dumps(obj, **json_kwargs)

    @staticmethod
    def canonical(obj: Any) -> str:
        """
        Order-independent representation of a JSON-like value

        Two argument maps that differ only in key order produce the same string.
        """
        return json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(',', ':'),
                          default=Serializer._lenient_default)

    @staticmethod
    def safe_json_dumps(obj: Any, **kwargs) -> str:
        """
        JSON dumps that never raises; unknown objects are rendered as placeholders

        Args:
            obj: object to serialize
            **kwargs: extra json.dumps arguments

        Returns:
            JSON string
        """
        json_kwargs = {
            'ensure_ascii': False,
            'indent': 2,
            'default': Serializer._lenient_default
        }
        json_kwargs.update(kwargs)

        try:
            return json.dumps(obj, **json_kwargs)
        except (TypeError, ValueError) as e:
            LoggerManager.get_logger(__name__).warning(f"Serialization failed, using fallback: {e}")
            return json.dumps({
                "error": f"Serialization failed: {e}",
                "object_type": type(obj).__name__,
                "fallback": True,
            }, ensure_ascii=False)
