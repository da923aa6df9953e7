"""
Ports - task queue

Durable hand-off of step executions. Delivery is at-least-once; the engine makes
redelivery harmless.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class StepTask:
    """One step execution: which job, which step, where its input lives"""
    job_id: str
    flow_step_id: str
    data_ref: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepTask":
        return cls(job_id=str(data["job_id"]), flow_step_id=str(data["flow_step_id"]),
                   data_ref=str(data.get("data_ref") or ""))


class TaskQueue(ABC):
    """Step task queue"""

    @abstractmethod
    def enqueue(self, task: StepTask) -> str:
        """
        Hand a task to the queue without waiting for it to run

        Returns:
            queue-specific task id
        """
        ...
