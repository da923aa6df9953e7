"""
OpenAI-compatible model provider.

Converts the provider-neutral Message/ToolDeclaration types to the chat
completions wire format and back.
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from openai import OpenAI, OpenAIError

from ...core.exceptions import ProviderRequestError
from ...core.logging import LoggerManager
from ...ports.model_provider import (
    FunctionCall,
    FunctionResponse,
    Message,
    ModelProvider,
    Role,
    ToolDeclaration,
)


class OpenAIProvider(ModelProvider):
    """Chat completions client with tool calling"""

    name = "openai"

    def __init__(self, api_key: str = "", base_url: Optional[str] = None, default_model: str = "",
                 timeout: float = 120.0, client: Optional[Any] = None):
        self.default_model = default_model
        self.timeout = timeout
        self._client = client or OpenAI(api_key=api_key or None, base_url=base_url)
        self.logger = LoggerManager.get_logger(__name__)

    # -------------------------
    # Outbound
    # -------------------------

    @staticmethod
    def _to_wire_messages(messages: List[Message]) -> List[Dict[str, Any]]:
        wire: List[Dict[str, Any]] = []
        for msg in messages:
            calls = msg.function_calls
            responses = msg.function_responses
            if responses:
                # each function response is its own "tool" message
                for resp in responses:
                    wire.append({
                        "role": "tool",
                        "tool_call_id": resp.call_id,
                        "content": json.dumps(resp.result, ensure_ascii=False, default=str),
                    })
                if msg.text:
                    wire.append({"role": msg.role.value, "content": msg.text})
                continue

            entry: Dict[str, Any] = {"role": msg.role.value, "content": msg.text or None}
            if calls:
                entry["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name,
                                     "arguments": json.dumps(call.args, ensure_ascii=False, default=str)},
                    }
                    for call in calls
                ]
            elif entry["content"] is None:
                entry["content"] = ""
            wire.append(entry)
        return wire

    @staticmethod
    def _to_wire_tools(tools: List[ToolDeclaration]) -> List[Dict[str, Any]]:
        return [{"type": "function", "function": t.to_dict()} for t in tools]

    # -------------------------
    # Inbound
    # -------------------------

    @staticmethod
    def _parse_arguments(raw: Optional[str]) -> Dict[str, Any]:
        if not raw:
            return {}
        try:
            args = json.loads(raw)
        except json.JSONDecodeError:
            return {"_invalid_arguments": raw}
        return args if isinstance(args, dict) else {"_invalid_arguments": raw}

    def _from_wire_message(self, wire_message: Any) -> Message:
        parts: List[Any] = []
        if wire_message.content:
            parts.append(wire_message.content)
        for tool_call in wire_message.tool_calls or []:
            parts.append(FunctionCall(
                id=tool_call.id,
                name=tool_call.function.name,
                args=self._parse_arguments(tool_call.function.arguments),
            ))
        return Message(role=Role.ASSISTANT, parts=parts)

    def generate(self, messages: List[Message], tools: List[ToolDeclaration], *,
                 model: Optional[str] = None, **options: Any) -> Message:
        model_name = model or self.default_model
        if not model_name:
            raise ProviderRequestError("No model configured for the OpenAI provider", provider=self.name)

        request: Dict[str, Any] = {
            "model": model_name,
            "messages": self._to_wire_messages(messages),
            "timeout": options.pop("timeout", self.timeout),
            "stream": False,
        }
        if tools:
            request["tools"] = self._to_wire_tools(tools)
        request.update(options)

        try:
            response = self._client.chat.completions.create(**request)
        except OpenAIError as e:
            self.logger.error(f"[LLM] {self.name} request failed: {e}")
            raise ProviderRequestError(f"OpenAI request failed: {e}", provider=self.name, model=model_name) from e

        if not response.choices:
            raise ProviderRequestError("OpenAI returned no choices", provider=self.name, model=model_name)
        return self._from_wire_message(response.choices[0].message)
