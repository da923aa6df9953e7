"""
Ports - persistence interfaces

Flow definitions, job state, the per-job engine-data side channel and the
processed-item (deduplication) ledger.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


# =============================================================================
# Records
# =============================================================================


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_NO_ITEMS = "completed_no_items"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.COMPLETED_NO_ITEMS, JobStatus.FAILED})


@dataclass
class Flow:
    flow_id: str
    name: str
    schedule_interval: Optional[str] = None   # interval key, "once", or None (manual)
    next_run_at: Optional[float] = None       # unix timestamp
    created_at: str = ""


@dataclass(frozen=True)
class FlowStep:
    """Immutable configuration snapshot of one step of a flow"""
    flow_step_id: str
    flow_id: str
    step_type: str
    position: int
    config: Dict[str, Any] = field(default_factory=dict)

    @property
    def handler(self) -> Optional[str]:
        return self.config.get("handler")


@dataclass
class Job:
    job_id: str
    flow_id: str
    flow_step_ids: List[str]
    status: JobStatus = JobStatus.PENDING
    current_step_index: int = 0
    created_at: str = ""
    updated_at: str = ""
    failure_reason: Optional[str] = None
    context: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def step_index(self, flow_step_id: str) -> int:
        """Position of a step in this job, -1 if it does not belong to the job"""
        try:
            return self.flow_step_ids.index(flow_step_id)
        except ValueError:
            return -1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "flow_id": self.flow_id,
            "flow_step_ids": list(self.flow_step_ids),
            "status": self.status.value,
            "current_step_index": self.current_step_index,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "failure_reason": self.failure_reason,
            "context": self.context,
        }


@dataclass(frozen=True)
class ProcessedItem:
    flow_step_id: str
    source_type: str
    item_identifier: str
    job_id: str
    created_at: str = ""


# =============================================================================
# Stores
# =============================================================================


class FlowStore(ABC):
    """Flow definitions and their schedules"""

    @abstractmethod
    def create_flow(self, name: str, flow_id: Optional[str] = None) -> Flow:
        ...

    @abstractmethod
    def get_flow(self, flow_id: str) -> Optional[Flow]:
        ...

    @abstractmethod
    def add_flow_step(self, flow_id: str, step_type: str, config: Dict[str, Any], *,
                      flow_step_id: Optional[str] = None, position: Optional[int] = None) -> FlowStep:
        """Append (or insert at position) a step to a flow"""
        ...

    @abstractmethod
    def get_flow_steps(self, flow_id: str) -> List[FlowStep]:
        """Steps of a flow, ordered by position"""
        ...

    @abstractmethod
    def get_flow_step(self, flow_step_id: str) -> Optional[FlowStep]:
        ...

    @abstractmethod
    def set_schedule(self, flow_id: str, interval: Optional[str], next_run_at: Optional[float]) -> None:
        ...

    @abstractmethod
    def list_due_flows(self, now: float) -> List[Flow]:
        """Flows whose next_run_at is set and <= now"""
        ...

    @abstractmethod
    def claim_scheduled_run(self, flow_id: str, expected_next_run_at: float,
                            new_next_run_at: Optional[float]) -> bool:
        """
        Compare-and-set next_run_at

        Returns:
            True only for the caller whose expected value still matched
        """
        ...


class JobStore(ABC):
    """Job rows. Status changes are conditional so terminal jobs never move again."""

    @abstractmethod
    def create_job(self, flow_id: str, flow_step_ids: List[str], context: str = "") -> Job:
        ...

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[Job]:
        ...

    @abstractmethod
    def mark_running(self, job_id: str) -> bool:
        """pending -> running"""
        ...

    @abstractmethod
    def advance_step(self, job_id: str, from_index: int) -> bool:
        """current_step_index: from_index -> from_index + 1, non-terminal jobs only"""
        ...

    @abstractmethod
    def complete_job(self, job_id: str, status: JobStatus) -> bool:
        ...

    @abstractmethod
    def fail_job(self, job_id: str, reason: str) -> bool:
        ...

    @abstractmethod
    def list_jobs(self, flow_id: Optional[str] = None, status: Optional[JobStatus] = None) -> List[Job]:
        ...

    @abstractmethod
    def delete_jobs(self, failed_only: bool = False) -> List[str]:
        """Delete job rows, returning the deleted job ids"""
        ...


class EngineDataStore(ABC):
    """Job-scoped string map that never reaches AI-visible content"""

    @abstractmethod
    def get_engine_data(self, job_id: str) -> Dict[str, str]:
        ...

    @abstractmethod
    def merge_engine_data(self, job_id: str, values: Dict[str, Any]) -> Dict[str, str]:
        """Upsert keys and return the full map"""
        ...

    @abstractmethod
    def delete_engine_data(self, job_id: str) -> None:
        ...


class ProcessedItemStore(ABC):
    """At-most-once ledger keyed by (flow_step_id, source_type, item_identifier)"""

    @abstractmethod
    def is_processed(self, flow_step_id: str, source_type: str, item_identifier: str) -> bool:
        ...

    @abstractmethod
    def mark_processed(self, flow_step_id: str, source_type: str, item_identifier: str, job_id: str) -> bool:
        """
        Insert the record

        Returns:
            True if this call inserted it, False if it already existed
        """
        ...

    @abstractmethod
    def delete_processed_items(self, *, job_id: Optional[str] = None, flow_step_id: Optional[str] = None,
                               flow_id: Optional[str] = None, source_type: Optional[str] = None) -> int:
        ...

    @abstractmethod
    def cleanup_processed_items(self, older_than_days: int) -> int:
        ...
