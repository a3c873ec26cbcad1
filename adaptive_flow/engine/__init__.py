"""
Adaptive control-flow engine: parsing, evaluation, loops, variables and execution.
"""

from adaptive_flow.engine.condition_engine import ConditionEngine
from adaptive_flow.engine.control_flow import ControlFlowExecutor
from adaptive_flow.engine.execution_engine import (
    AdaptiveExecutionEngine,
    AdaptiveExecutionResult,
    ExecutionCallbacks,
    execute_adaptive_test,
)
from adaptive_flow.engine.expression_parser import (
    format_condition_expression,
    parse_condition_expression,
    parse_expression,
    parse_loop_expression,
    parse_natural_language_condition,
    parse_variable_expression,
)
from adaptive_flow.engine.loop_manager import LoopManager
from adaptive_flow.engine.state_detector import StateDetectionRule, StateDetector
from adaptive_flow.engine.syntax_validator import (
    SyntaxValidator,
    ValidationRule,
    format_validation_result,
    get_syntax_suggestions,
    validate_syntax,
)
from adaptive_flow.engine.variable_store import VariableStore

__all__ = [
    "AdaptiveExecutionEngine",
    "AdaptiveExecutionResult",
    "ConditionEngine",
    "ControlFlowExecutor",
    "ExecutionCallbacks",
    "LoopManager",
    "StateDetectionRule",
    "StateDetector",
    "SyntaxValidator",
    "ValidationRule",
    "VariableStore",
    "execute_adaptive_test",
    "format_condition_expression",
    "format_validation_result",
    "get_syntax_suggestions",
    "parse_condition_expression",
    "parse_expression",
    "parse_loop_expression",
    "parse_natural_language_condition",
    "parse_variable_expression",
    "validate_syntax",
]
