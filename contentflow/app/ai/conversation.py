"""
Conversation manager: message construction and duplicate tool-call detection.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Set

from ...core.serialization import Serializer
from ...ports.model_provider import FunctionCall, FunctionResponse, Message, Role


DUPLICATE_CALL_ERROR = "duplicate tool call - use different parameters"


class ConversationManager:

    @staticmethod
    def text_message(role: Role, text: str) -> Message:
        return Message(role=Role(role), parts=[text])

    @staticmethod
    def assistant_message(text: str = "", calls: Optional[Iterable[FunctionCall]] = None) -> Message:
        parts: List[Any] = [text] if text else []
        parts.extend(calls or [])
        return Message(role=Role.ASSISTANT, parts=parts)

    @staticmethod
    def function_response_message(response: FunctionResponse) -> Message:
        """Function results go back to the model as a user-role message"""
        return Message(role=Role.USER, parts=[response])

    @staticmethod
    def call_signature(call: FunctionCall) -> str:
        return f"{call.name}:{Serializer.canonical(call.args)}"

    def call_signatures(self, history: List[Message]) -> Set[str]:
        """Signatures of every function call already present in the history"""
        return {
            self.call_signature(part)
            for message in history
            for part in message.parts
            if isinstance(part, FunctionCall)
        }

    def is_duplicate_call(self, history: List[Message], call: FunctionCall) -> bool:
        """True if the history already holds a call with the same name and argument map"""
        return self.call_signature(call) in self.call_signatures(history)

    @staticmethod
    def duplicate_response(call: FunctionCall) -> FunctionResponse:
        return FunctionResponse(
            call_id=call.id,
            name=call.name,
            result={"success": False, "error": DUPLICATE_CALL_ERROR, "duplicate": True},
        )

    @staticmethod
    def last_text(history: List[Message]) -> str:
        for message in reversed(history):
            if message.role == Role.ASSISTANT and message.text:
                return message.text
        return ""

    @staticmethod
    def to_dicts(history: List[Message]) -> List[Dict[str, Any]]:
        return [m.to_dict() for m in history]
