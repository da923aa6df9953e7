"""
Step and handler contracts.

A Step receives a StepPayload and returns the packets for the next step:
- a non-empty list: success, hand the packets on
- an empty list: nothing to do (job completes with no items)
- raise StepFailure(reason=...): explicit failure
Any other exception is treated as an uncaught step error by the engine.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from ...ports.packets import DataPacket
from ..pipeline.context import StepPayload


class Step(ABC):

    @abstractmethod
    def execute(self, payload: StepPayload) -> List[DataPacket]:
        ...


# =============================================================================
# Handlers
# =============================================================================


@dataclass
class FetchedItem:
    """A source item offered by a fetch handler"""
    item_identifier: str
    packet: DataPacket
    engine_data: Dict[str, Any] = field(default_factory=dict)


class FetchHandler(ABC):
    """Source handler. Items it yields are deduplicated by the fetch step."""

    # empty: use the handler slug
    source_type: str = ""

    @abstractmethod
    def fetch_items(self, handler_config: Dict[str, Any], payload: StepPayload) -> Iterable[FetchedItem]:
        """
        Yield candidate items, newest/most relevant first

        Args:
            handler_config: the step's handler settings
            payload: the step payload (read-only use)
        """
        ...

    @classmethod
    def tool_definitions(cls, slug: str, handler_config: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
        return {}


class DestinationHandler(ABC):
    """
    Publish/update handler.

    Exposed to adjacent AI steps as a handler tool; called directly by the
    publish/update step when no AI step already ran it.
    """

    tool_name: str = ""
    tool_description: str = ""
    tool_parameters: Dict[str, Any] = {"type": "object", "properties": {}}

    @classmethod
    def tool_definitions(cls, slug: str, handler_config: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
        """Tool name -> {description, parameters}"""
        return {
            cls.tool_name or slug: {
                "description": cls.tool_description or f"Send the content to {slug}",
                "parameters": cls.tool_parameters,
            }
        }

    @abstractmethod
    def handle_tool_call(self, parameters: Dict[str, Any], tool_meta: Any = None) -> Dict[str, Any]:
        """
        Perform the action

        Args:
            parameters: model-supplied arguments merged with job_id, flow_step_id,
                engine_data, data, flow_step_config and handler_config
            tool_meta: the ToolMetadata, None for direct calls

        Returns:
            {"success": bool, ...}
        """
        ...


class PublishHandler(DestinationHandler):
    pass


class UpdateHandler(DestinationHandler):
    pass
