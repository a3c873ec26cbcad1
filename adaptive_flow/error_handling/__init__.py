"""
Error types for the adaptive flow engine.
"""

from .exceptions import (
    AdaptiveFlowError,
    AgentUnavailableError,
    EvaluationError,
    ExecutionTimeoutError,
    ExpressionParseError,
    LoopConfigurationError,
    StepExecutionError,
    UnsupportedConfigurationError,
    ValidationError,
)

__all__ = [
    "AdaptiveFlowError",
    "AgentUnavailableError",
    "EvaluationError",
    "ExecutionTimeoutError",
    "ExpressionParseError",
    "LoopConfigurationError",
    "StepExecutionError",
    "UnsupportedConfigurationError",
    "ValidationError",
]
