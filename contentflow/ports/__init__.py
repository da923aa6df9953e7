"""
Ports layer.

Abstract interfaces for external dependencies, implemented by the adapters layer:
- store: flows, jobs, engine data, processed items
- packets: DataPacket and its repository
- task_queue: durable step task hand-off
- model_provider: conversation messages and the model client
"""

from .store import (
    JobStatus,
    TERMINAL_STATUSES,
    Flow,
    FlowStep,
    Job,
    ProcessedItem,
    FlowStore,
    JobStore,
    EngineDataStore,
    ProcessedItemStore,
)

from .packets import DataPacket, PacketRepository

from .task_queue import StepTask, TaskQueue

from .model_provider import (
    Role,
    FunctionCall,
    FunctionResponse,
    Message,
    ToolDeclaration,
    ModelProvider,
)

__all__ = [
    # Store
    "JobStatus",
    "TERMINAL_STATUSES",
    "Flow",
    "FlowStep",
    "Job",
    "ProcessedItem",
    "FlowStore",
    "JobStore",
    "EngineDataStore",
    "ProcessedItemStore",
    # Packets
    "DataPacket",
    "PacketRepository",
    # Queue
    "StepTask",
    "TaskQueue",
    # Model provider
    "Role",
    "FunctionCall",
    "FunctionResponse",
    "Message",
    "ToolDeclaration",
    "ModelProvider",
]
