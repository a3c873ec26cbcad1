"""
Exception hierarchy for the adaptive flow engine.

Parse and evaluation problems are normally reported through result objects;
these exceptions describe the failures that travel as ``StepResult.error`` or
that the top-level engine API raises directly.
"""

from typing import Optional, Dict, Any, List
from datetime import datetime, timezone


class AdaptiveFlowError(Exception):
    """Base exception for all adaptive flow errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None
        }


class ExpressionParseError(AdaptiveFlowError):
    """Raised by the lexer and parser on malformed expression text."""

    def __init__(
        self,
        message: str,
        position: Optional[int] = None,
        expression: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.position = position
        self.expression = expression
        self.details.update({
            "position": position,
            "expression": expression
        })


class EvaluationError(AdaptiveFlowError):
    """Error raised while evaluating a condition."""

    def __init__(
        self,
        message: str,
        condition_type: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.condition_type = condition_type
        self.details["condition_type"] = condition_type


class AgentUnavailableError(AdaptiveFlowError):
    """Raised when a locator call is made but no agent is configured."""
    pass


class LoopConfigurationError(AdaptiveFlowError):
    """Error raised when a loop lacks the configuration its type requires."""

    def __init__(
        self,
        message: str,
        loop_type: str,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.loop_type = loop_type
        self.details["loop_type"] = loop_type


class UnsupportedConfigurationError(LoopConfigurationError):
    """Error raised for configurations the engine deliberately refuses to guess."""
    pass


class StepExecutionError(AdaptiveFlowError):
    """Error raised when a step cannot be executed."""

    def __init__(
        self,
        message: str,
        step_id: str,
        step_type: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.step_id = step_id
        self.step_type = step_type
        self.details.update({
            "step_id": step_id,
            "step_type": step_type
        })


class ValidationError(AdaptiveFlowError):
    """Error raised when a test case fails static validation."""

    def __init__(
        self,
        message: str,
        validation_type: str,
        failed_rules: Optional[List[str]] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.validation_type = validation_type
        self.failed_rules = failed_rules or []
        self.details.update({
            "validation_type": validation_type,
            "failed_rules": failed_rules
        })


class ExecutionTimeoutError(AdaptiveFlowError):
    """Error raised when an operation exceeds its time budget."""

    def __init__(
        self,
        message: str,
        operation: str,
        timeout_ms: int,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.operation = operation
        self.timeout_ms = timeout_ms
        self.details.update({
            "operation": operation,
            "timeout_ms": timeout_ms
        })
