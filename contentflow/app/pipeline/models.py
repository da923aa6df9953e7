from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ...core.exceptions import ConfigError
from ...core.registry import GenericStepConfig


class _StepConfigBase(BaseModel):
    model_config = ConfigDict(extra="ignore")


class FetchStepConfig(_StepConfigBase):
    step_type: Literal["fetch"] = "fetch"
    handler: str
    handler_config: Dict[str, Any] = Field(default_factory=dict)
    max_items: int = Field(default=1, ge=1)


class AIStepConfig(_StepConfigBase):
    step_type: Literal["ai"] = "ai"
    system_prompt: str = ""
    user_message: str = ""
    provider: Optional[str] = None
    model: Optional[str] = None
    enabled_tools: List[str] = Field(default_factory=list)
    max_turns: Optional[int] = None


class PublishStepConfig(_StepConfigBase):
    step_type: Literal["publish"] = "publish"
    handler: str
    handler_config: Dict[str, Any] = Field(default_factory=dict)


class UpdateStepConfig(_StepConfigBase):
    step_type: Literal["update"] = "update"
    handler: str
    handler_config: Dict[str, Any] = Field(default_factory=dict)


StepConfig = Annotated[
    Union[FetchStepConfig, AIStepConfig, PublishStepConfig, UpdateStepConfig],
    Field(discriminator="step_type"),
]

_step_config_adapter = TypeAdapter(StepConfig)

BUILTIN_STEP_TYPES = ("fetch", "ai", "publish", "update")


def decode_step_config(step_type: str, raw: Optional[Dict[str, Any]],
                       model: Optional[Type[BaseModel]] = None) -> BaseModel:
    """
    Decode a flow step's raw config into its typed variant

    Built-in step types decode through the closed StepConfig union; extension
    step types use the model they registered (GenericStepConfig otherwise).

    Raises:
        ConfigError: the config does not validate
    """
    data = {**(raw or {}), "step_type": step_type}
    try:
        if step_type in BUILTIN_STEP_TYPES:
            return _step_config_adapter.validate_python(data)
        return (model or GenericStepConfig).model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration for '{step_type}' step: {e}", config_key=step_type) from e


@dataclass(frozen=True)
class StepOutcome:
    """What one execute_step invocation did to the job"""
    job_id: str
    flow_step_id: str
    status: str                      # advanced | completed | completed_no_items | failed | skipped
    next_flow_step_id: Optional[str] = None
    reason: Optional[str] = None
    packet_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "flow_step_id": self.flow_step_id,
            "status": self.status,
            "next_flow_step_id": self.next_flow_step_id,
            "reason": self.reason,
            "packet_count": self.packet_count,
        }
