"""
Unified exception module
Standard exception classes and error-to-result conversion for the engine.
"""

from typing import Any, Dict, Optional
from .logging import LoggerManager


class ContentFlowError(Exception):
    """Base exception for the pipeline engine"""

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "UNKNOWN_ERROR"
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }


class ConfigError(ContentFlowError):
    """Invalid or missing configuration"""
    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs) -> None:
        super().__init__(message, "CONFIG_ERROR", {"config_key": config_key, **kwargs})


class FlowNotFound(ContentFlowError):
    """Flow does not exist or has no steps"""
    def __init__(self, message: str, flow_id: Optional[str] = None, **kwargs) -> None:
        super().__init__(message, "FLOW_NOT_FOUND", {"flow_id": flow_id, **kwargs})


class FlowStepNotFound(ContentFlowError):
    def __init__(self, message: str, flow_step_id: Optional[str] = None, **kwargs) -> None:
        super().__init__(message, "FLOW_STEP_NOT_FOUND", {"flow_step_id": flow_step_id, **kwargs})


class JobNotFound(ContentFlowError):
    def __init__(self, message: str, job_id: Optional[str] = None, **kwargs) -> None:
        super().__init__(message, "JOB_NOT_FOUND", {"job_id": job_id, **kwargs})


class StepTypeNotFound(ContentFlowError):
    """No step implementation registered for a step_type"""
    def __init__(self, message: str, step_type: Optional[str] = None, **kwargs) -> None:
        super().__init__(message, "STEP_TYPE_NOT_FOUND", {"step_type": step_type, **kwargs})


class HandlerNotFound(ContentFlowError):
    def __init__(self, message: str, handler: Optional[str] = None, **kwargs) -> None:
        super().__init__(message, "HANDLER_NOT_FOUND", {"handler": handler, **kwargs})


class ToolNotFound(ContentFlowError):
    """No tool binding for the requested name"""
    def __init__(self, message: str, tool_name: Optional[str] = None, **kwargs) -> None:
        super().__init__(message, "TOOL_NOT_FOUND", {"tool_name": tool_name, **kwargs})


class ToolClassMissing(ContentFlowError):
    """Tool binding exists but its implementation cannot be resolved"""
    def __init__(self, message: str, tool_name: Optional[str] = None, binding: Optional[str] = None, **kwargs) -> None:
        super().__init__(message, "TOOL_CLASS_MISSING", {"tool_name": tool_name, "binding": binding, **kwargs})


class StepFailure(ContentFlowError):
    """
    Explicit failure reported by a step.

    `reason` becomes the job's failure_reason; the message is the human-readable part.
    """
    def __init__(self, message: str, reason: str = "step_failed", **kwargs) -> None:
        super().__init__(message, "STEP_FAILURE", {"reason": reason, **kwargs})
        self.reason = reason


class StepExecutionError(ContentFlowError):
    """Uncaught error raised by a step, wrapped at the engine boundary"""
    def __init__(self, message: str, flow_step_id: Optional[str] = None, **kwargs) -> None:
        super().__init__(message, "STEP_EXECUTION_ERROR", {"flow_step_id": flow_step_id, **kwargs})


class ProviderRequestError(ContentFlowError):
    """Model provider request failed"""
    def __init__(self, message: str, provider: Optional[str] = None, **kwargs) -> None:
        super().__init__(message, "PROVIDER_REQUEST_FAILED", {"provider": provider, **kwargs})


class StepNotReady(ContentFlowError):
    """A step task arrived before the job advanced to that step"""
    def __init__(self, message: str, job_id: Optional[str] = None, flow_step_id: Optional[str] = None, **kwargs) -> None:
        super().__init__(message, "STEP_NOT_READY", {"job_id": job_id, "flow_step_id": flow_step_id, **kwargs})


class StorageError(ContentFlowError):
    def __init__(self, message: str, path: Optional[str] = None, operation: Optional[str] = None, **kwargs) -> None:
        super().__init__(message, "STORAGE_ERROR", {"path": path, "operation": operation, **kwargs})


class ErrorHandler:
    """Error handling helper"""

    def __init__(self, logger=None):
        self.logger = logger or LoggerManager.get_logger(__name__)

    def handle_and_log(self, error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
        """
        Log an error with its context

        Args:
            error: the exception
            context: extra context (job_id, flow_step_id, tool_name...)
        """
        context = context or {}

        if isinstance(error, ContentFlowError):
            self.logger.error(f"[{error.error_code}] {error.message} context={context}",
                              extra={"error_details": {**error.details, **context}})
        else:
            self.logger.error(f"Unhandled error: {error} context={context}", exc_info=error)

    def create_error_response(self, error: Exception) -> Dict[str, Any]:
        """
        Build a structured failure result

        Args:
            error: the exception

        Returns:
            {"success": False, "error": <message>, "error_code": ..., "details": ...}
        """
        if isinstance(error, ContentFlowError):
            return {
                "success": False,
                "error": error.message,
                "error_code": error.error_code,
                "details": error.details
            }
        return {
            "success": False,
            "error": str(error) or type(error).__name__,
            "error_code": "SYSTEM_ERROR",
            "details": {"exception_type": type(error).__name__}
        }
