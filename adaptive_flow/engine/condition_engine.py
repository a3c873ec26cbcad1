"""
Condition evaluation against the execution context and the locator agent.

``evaluate`` never raises. Anything that prevents a definite answer (parse
failure, missing agent, locator timeout or error, malformed compound)
resolves to the fallback value, with the reason in ``EvaluationResult.error``.
"""

import asyncio
import operator
import re
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from adaptive_flow.config.settings import Settings, get_settings
from adaptive_flow.core.interfaces import LocatorAgent, NullLocatorAgent
from adaptive_flow.core.types import (
    ComparisonOperator,
    CompoundCondition,
    ConditionExpression,
    ElementCheck,
    ElementCondition,
    EvaluationResult,
    ExecutionContext,
    LocatedElement,
    LogicalOperator,
    StateCondition,
    TextCondition,
    TextOperator,
    VariableCondition,
)
from adaptive_flow.engine.expression_parser import format_condition_expression, parse_expression
from adaptive_flow.engine.state_detector import StateDetector
from adaptive_flow.engine.variable_store import is_number
from adaptive_flow.monitoring.logger import get_logger, log_performance_metric

logger = get_logger(__name__)

TEXT_CACHE_PREFIX = "__text_"

ORDERING: Dict[ComparisonOperator, Callable[[Any, Any], bool]] = {
    ComparisonOperator.GT: operator.gt,
    ComparisonOperator.LT: operator.lt,
    ComparisonOperator.GE: operator.ge,
    ComparisonOperator.LE: operator.le,
}


class _Unresolved(Exception):
    """Internal signal: this node cannot be decided, use the fallback."""


class ConditionEngine:
    """Evaluates condition ASTs or raw condition text."""

    def __init__(
        self,
        agent: Optional[LocatorAgent] = None,
        state_detector: Optional[StateDetector] = None,
        timeout: Optional[int] = None,
        fallback: Optional[bool] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            agent: Locator agent used for element, text and state conditions
            state_detector: Detector for state conditions (built from agent if omitted)
            timeout: Default locator budget in milliseconds
            fallback: Default value when a condition cannot be evaluated
            settings: Settings to read defaults from
        """
        settings = settings or get_settings()
        self.agent = agent or NullLocatorAgent()
        self.state_detector = state_detector or StateDetector(self.agent, settings=settings)
        self.timeout = timeout if timeout is not None else settings.condition_evaluation_timeout
        self.fallback = fallback if fallback is not None else settings.default_condition_fallback

    async def evaluate(
        self,
        expression: Union[ConditionExpression, str],
        context: ExecutionContext,
        timeout: Optional[int] = None,
        fallback: Optional[bool] = None,
    ) -> EvaluationResult:
        """
        Evaluate a condition.

        Args:
            expression: Parsed expression, or text to parse first
            context: Execution context providing variables
            timeout: Locator budget in milliseconds for this call
            fallback: Value used when the condition cannot be decided

        Returns:
            EvaluationResult; ``success`` is False only for parse failures
            and unexpected engine errors
        """
        started = time.perf_counter()
        fallback_value = self.fallback if fallback is None else fallback
        budget = self.timeout if timeout is None else timeout

        if isinstance(expression, str):
            parsed = parse_expression(expression)
            if not parsed.success:
                return EvaluationResult(
                    success=False,
                    value=fallback_value,
                    duration=self._elapsed(started),
                    error=parsed.error or "Failed to parse expression",
                )
            expression = parsed.result

        notes: List[str] = []
        try:
            value = await self._evaluate_node(expression, context, budget, fallback_value, notes)
        except Exception as e:
            logger.error(f"Condition evaluation failed: {e}", exc_info=True)
            return EvaluationResult(
                success=False,
                value=fallback_value,
                duration=self._elapsed(started),
                error=str(e),
            )

        duration = self._elapsed(started)
        log_performance_metric(
            "condition_evaluation",
            duration,
            context={"details": {"expression": format_condition_expression(expression), "value": value}},
        )
        return EvaluationResult(
            success=True,
            value=value,
            duration=duration,
            error="; ".join(notes) if notes else None,
        )

    async def evaluate_batch(
        self,
        expressions: Sequence[Union[ConditionExpression, str]],
        context: ExecutionContext,
        timeout: Optional[int] = None,
        fallback: Optional[bool] = None,
    ) -> List[EvaluationResult]:
        """Evaluate independently; results keep the input order."""
        return list(
            await asyncio.gather(
                *(self.evaluate(e, context, timeout, fallback) for e in expressions)
            )
        )

    @staticmethod
    def create_context(initial_variables: Optional[Dict[str, Any]] = None) -> ExecutionContext:
        return ExecutionContext(variables=dict(initial_variables or {}))

    async def _evaluate_node(
        self,
        expression: ConditionExpression,
        context: ExecutionContext,
        budget: int,
        fallback: bool,
        notes: List[str],
    ) -> bool:
        try:
            if isinstance(expression, ElementCondition):
                return await self._evaluate_element(expression, budget)
            if isinstance(expression, TextCondition):
                return await self._evaluate_text(expression, context, budget)
            if isinstance(expression, StateCondition):
                return await self._evaluate_state(expression, budget)
            if isinstance(expression, VariableCondition):
                return self._evaluate_variable(expression, context)
            if isinstance(expression, CompoundCondition):
                return await self._evaluate_compound(expression, context, budget, fallback, notes)
        except _Unresolved as e:
            notes.append(str(e))
            return fallback
        raise TypeError(f"Unknown condition expression: {type(expression).__name__}")

    async def _locate(self, prompt: str, budget: int) -> Optional[LocatedElement]:
        if not self.agent.is_available:
            raise _Unresolved(f"No locator agent available for {prompt!r}")
        try:
            return await asyncio.wait_for(
                self.agent.locate(prompt, deep_think=False), budget / 1000
            )
        except asyncio.TimeoutError:
            raise _Unresolved(f"Locating {prompt!r} timed out after {budget}ms")
        except Exception as e:
            raise _Unresolved(f"Locating {prompt!r} failed: {e}")

    async def _evaluate_element(self, condition: ElementCondition, budget: int) -> bool:
        element = await self._locate(condition.target, budget)
        if element is None:
            return False

        if condition.check is ElementCheck.EXISTS:
            return True
        if condition.check is ElementCheck.VISIBLE:
            rect = element.rect
            return rect is not None and rect.width > 0 and rect.height > 0
        if condition.check is ElementCheck.ENABLED:
            return element.attributes.get("disabled") is not True
        if condition.check is ElementCheck.SELECTED:
            return (
                element.attributes.get("selected") is True
                or element.attributes.get("checked") is True
            )
        raise TypeError(f"Unknown element check: {condition.check}")

    async def _evaluate_text(
        self, condition: TextCondition, context: ExecutionContext, budget: int
    ) -> bool:
        actual = context.variables.get(TEXT_CACHE_PREFIX + condition.target)
        if not actual:
            element = await self._locate(condition.target, budget)
            actual = element.text if element is not None else None
        if not actual:
            return False
        actual = str(actual)

        if condition.operator is TextOperator.EQUALS:
            return actual == condition.value
        if condition.operator is TextOperator.CONTAINS:
            return condition.value in actual
        if condition.operator is TextOperator.MATCHES:
            try:
                return re.search(condition.value, actual, re.IGNORECASE) is not None
            except re.error:
                logger.debug(f"Invalid regex in text condition: {condition.value!r}")
                return False
        raise TypeError(f"Unknown text operator: {condition.operator}")

    async def _evaluate_state(self, condition: StateCondition, budget: int) -> bool:
        if not self.agent.is_available:
            raise _Unresolved(f"No locator agent available for state {condition.state.value}")
        return await self.state_detector.detect(
            condition.state, timeout=budget, custom_description=condition.custom_description
        )

    @staticmethod
    def _evaluate_variable(condition: VariableCondition, context: ExecutionContext) -> bool:
        actual = context.variables.get(condition.name)
        expected = condition.value

        if condition.operator is ComparisonOperator.EQ:
            return actual == expected
        if condition.operator is ComparisonOperator.NE:
            return actual != expected
        if not (is_number(actual) and is_number(expected)):
            return False
        return ORDERING[condition.operator](actual, expected)

    async def _evaluate_compound(
        self,
        condition: CompoundCondition,
        context: ExecutionContext,
        budget: int,
        fallback: bool,
        notes: List[str],
    ) -> bool:
        if not condition.is_well_formed:
            raise _Unresolved(
                f"Malformed {condition.operator.value} condition with "
                f"{len(condition.operands)} operand(s)"
            )

        if condition.operator is LogicalOperator.NOT:
            return not await self._evaluate_node(
                condition.operands[0], context, budget, fallback, notes
            )

        # Children are read-only probes and may run concurrently
        values = await asyncio.gather(
            *(
                self._evaluate_node(operand, context, budget, fallback, notes)
                for operand in condition.operands
            )
        )
        if condition.operator is LogicalOperator.AND:
            return all(values)
        return any(values)

    @staticmethod
    def _elapsed(started: float) -> float:
        return (time.perf_counter() - started) * 1000
