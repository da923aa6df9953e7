"""
Pipeline execution (application layer).

- models / context: step configs, payloads, engine data
- engine: job lifecycle and step hand-off
- dispatcher: step_type -> Step
- task_queue / celery_worker: durable step tasks
- scheduling: manual, one-time and recurring flow runs
"""

from .engine import PipelineEngine  # noqa: F401
from .models import StepOutcome  # noqa: F401
