"""
Core module exports.
"""

from adaptive_flow.core.interfaces import (
    ActionCallback,
    ConfigProvider,
    LocatorAgent,
    NullLocatorAgent,
)
from adaptive_flow.core.types import (
    Action,
    ActionStep,
    ActionType,
    AdaptiveStep,
    AdaptiveTestCase,
    AdaptiveTestConfig,
    CompoundCondition,
    ConditionBlock,
    ConditionExpression,
    ConditionStep,
    ElementCheck,
    ElementCondition,
    EvaluationResult,
    ExecutionContext,
    LocatedElement,
    LoopConfig,
    LoopContext,
    LoopExecutionResult,
    LoopExitReason,
    LoopStep,
    LoopType,
    PageState,
    ParseResult,
    PathBranch,
    PathEntry,
    StateCondition,
    StateDetectionResult,
    StepResult,
    TextCondition,
    ValidationReport,
    VariableCondition,
    VariableOperation,
    VariableStep,
)

__all__ = [
    # Interfaces
    "ActionCallback",
    "ConfigProvider",
    "LocatorAgent",
    "NullLocatorAgent",
    # Types
    "Action",
    "ActionStep",
    "ActionType",
    "AdaptiveStep",
    "AdaptiveTestCase",
    "AdaptiveTestConfig",
    "CompoundCondition",
    "ConditionBlock",
    "ConditionExpression",
    "ConditionStep",
    "ElementCheck",
    "ElementCondition",
    "EvaluationResult",
    "ExecutionContext",
    "LocatedElement",
    "LoopConfig",
    "LoopContext",
    "LoopExecutionResult",
    "LoopExitReason",
    "LoopStep",
    "LoopType",
    "PageState",
    "ParseResult",
    "PathBranch",
    "PathEntry",
    "StateCondition",
    "StateDetectionResult",
    "StepResult",
    "TextCondition",
    "ValidationReport",
    "VariableCondition",
    "VariableOperation",
    "VariableStep",
]
