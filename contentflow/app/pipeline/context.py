from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from ...core.config import EngineSettings
from ...ports.packets import DataPacket
from ...ports.store import EngineDataStore, FlowStep


class EngineData:
    """
    Job-scoped side channel (source_url, image_url...).

    Writes go straight to the store so later steps, possibly on other workers,
    see them. Never rendered into AI-visible content.
    """

    def __init__(self, store: EngineDataStore, job_id: str, initial: Optional[Dict[str, str]] = None):
        self._store = store
        self.job_id = job_id
        self._values: Dict[str, str] = dict(initial if initial is not None else store.get_engine_data(job_id))

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def merge(self, values: Dict[str, Any]) -> None:
        if not values:
            return
        self._values = self._store.merge_engine_data(self.job_id, values)

    def to_dict(self) -> Dict[str, str]:
        return dict(self._values)

    def __contains__(self, key: str) -> bool:
        return key in self._values


@dataclass(frozen=True)
class ProcessedClaim:
    """An item a fetch step took; marked processed only after hand-off"""
    source_type: str
    item_identifier: str


@dataclass
class StepPayload:
    """Everything a step receives for one execution"""

    job_id: str
    flow_id: str
    flow_step: FlowStep
    config: BaseModel
    data: List[DataPacket]
    engine_data: EngineData
    settings: EngineSettings
    previous_step: Optional[FlowStep] = None
    next_step: Optional[FlowStep] = None
    pending_claims: List[ProcessedClaim] = field(default_factory=list)

    @property
    def flow_step_id(self) -> str:
        return self.flow_step.flow_step_id

    @property
    def step_type(self) -> str:
        return self.flow_step.step_type

    @property
    def flow_step_config(self) -> Dict[str, Any]:
        return {
            "flow_step_id": self.flow_step.flow_step_id,
            "flow_id": self.flow_id,
            "step_type": self.flow_step.step_type,
            "position": self.flow_step.position,
            **self.config.model_dump(exclude={"step_type"}),
        }

    def defer_processed(self, source_type: str, item_identifier: str) -> None:
        claim = ProcessedClaim(source_type, str(item_identifier))
        if claim not in self.pending_claims:
            self.pending_claims.append(claim)

    def log_context(self) -> Dict[str, Any]:
        return {"job_id": self.job_id, "flow_step_id": self.flow_step_id, "step_type": self.step_type}
