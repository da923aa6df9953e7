"""
Ports - model provider

Provider-neutral conversation messages and the single call the AI loop needs
from a language-model client.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class FunctionCall:
    id: str
    name: str
    args: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "function_call", "id": self.id, "name": self.name, "args": dict(self.args)}


@dataclass(frozen=True)
class FunctionResponse:
    call_id: str
    name: str
    result: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "function_response", "call_id": self.call_id, "name": self.name,
                "result": dict(self.result)}


Part = Union[str, FunctionCall, FunctionResponse]


@dataclass
class Message:
    """A role plus an ordered list of parts (text, function call or function response)"""
    role: Role
    parts: List[Part] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(p for p in self.parts if isinstance(p, str))

    @property
    def function_calls(self) -> List[FunctionCall]:
        return [p for p in self.parts if isinstance(p, FunctionCall)]

    @property
    def function_responses(self) -> List[FunctionResponse]:
        return [p for p in self.parts if isinstance(p, FunctionResponse)]

    def to_dict(self) -> Dict[str, Any]:
        parts = [{"type": "text", "text": p} if isinstance(p, str) else p.to_dict() for p in self.parts]
        return {"role": self.role.value, "parts": parts}


@dataclass(frozen=True)
class ToolDeclaration:
    """What the model sees of a tool"""
    name: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "parameters": dict(self.parameters)}


class ModelProvider(ABC):
    """Language-model client abstraction"""

    name: str = "provider"

    @abstractmethod
    def generate(self, messages: List[Message], tools: List[ToolDeclaration], *,
                 model: Optional[str] = None, **options: Any) -> Message:
        """
        Send the full history and tool list, return the assistant message

        Raises:
            ProviderRequestError: the request failed or the response could not be parsed
        """
        ...
