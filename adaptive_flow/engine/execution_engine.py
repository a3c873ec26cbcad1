"""
Runs a whole adaptive test case.

The engine validates the case, builds a fresh execution context and variable
store, then walks the top-level steps through the control-flow executor under
the case's total time budget.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from adaptive_flow.config.settings import Settings, get_settings
from adaptive_flow.core.interfaces import ActionCallback, LocatorAgent, NullLocatorAgent
from adaptive_flow.core.types import (
    ActionStep,
    AdaptiveStep,
    AdaptiveTestCase,
    EvaluationResult,
    ExecutionContext,
    ExecutionStats,
    PathBranch,
    PathEntry,
    StepResult,
    VariableChangeEvent,
)
from adaptive_flow.engine.condition_engine import ConditionEngine
from adaptive_flow.engine.control_flow import ControlFlowExecutor
from adaptive_flow.engine.loop_manager import LoopManager
from adaptive_flow.engine.state_detector import StateDetector
from adaptive_flow.engine.syntax_validator import SyntaxValidator
from adaptive_flow.engine.variable_store import VARIABLE_REFERENCE, VariableStore
from adaptive_flow.error_handling.exceptions import ExecutionTimeoutError, ValidationError
from adaptive_flow.monitoring.logger import get_logger, log_flow_event, log_performance_metric
from adaptive_flow.security.sanitizer import DataSanitizer

logger = get_logger(__name__)


@dataclass
class ExecutionCallbacks:
    """Optional observers for a test run. All are called synchronously."""

    on_step_start: Optional[Callable[[AdaptiveStep], None]] = None
    on_step_complete: Optional[Callable[[AdaptiveStep, StepResult], None]] = None
    on_step_failed: Optional[Callable[[AdaptiveStep, Optional[Exception]], None]] = None
    on_condition_evaluated: Optional[Callable[[AdaptiveStep, EvaluationResult], None]] = None
    on_loop_iteration: Optional[Callable[[AdaptiveStep, int, Any], None]] = None
    on_branch_taken: Optional[Callable[[AdaptiveStep, PathBranch], None]] = None
    on_variable_changed: Optional[Callable[[VariableChangeEvent], None]] = None


@dataclass
class AdaptiveExecutionResult:
    """Outcome of one test case run."""

    test_id: str
    success: bool
    results: List[StepResult]
    stats: ExecutionStats
    variables: Dict[str, Any]
    path_history: List[PathEntry]
    duration: float
    stopped_early: bool = False
    error: Optional[Exception] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_id": self.test_id,
            "success": self.success,
            "duration_ms": round(self.duration, 2),
            "stopped_early": self.stopped_early,
            "error": str(self.error) if self.error else None,
            "stats": {
                "total_steps": self.stats.total_steps,
                "executed_branches": self.stats.executed_branches,
                "loop_iterations": self.stats.loop_iterations,
                "max_depth": self.stats.max_depth,
            },
            "path": [
                {"step_id": e.step_id, "branch": e.branch.value, "depth": e.depth}
                for e in self.path_history
            ],
        }


class AdaptiveExecutionEngine:
    """
    Top-level runner for adaptive test cases.

    Every run gets its own context and variable store, so one engine can run
    several cases one after another.
    """

    def __init__(
        self,
        agent: Optional[LocatorAgent] = None,
        action_executor: Optional[ActionCallback] = None,
        callbacks: Optional[ExecutionCallbacks] = None,
        validator: Optional[SyntaxValidator] = None,
        sanitizer: Optional[DataSanitizer] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            agent: Locator agent for conditions, states and extraction
            action_executor: Performs action steps; without one they are only logged
            callbacks: Run observers
            validator: Static validator run before execution
            sanitizer: Redacts variables before they are logged
            settings: Settings to read defaults from
        """
        self.settings = settings or get_settings()
        self.agent = agent or NullLocatorAgent()
        self.action_executor = action_executor
        self.callbacks = callbacks or ExecutionCallbacks()
        self.validator = validator or SyntaxValidator()
        self.sanitizer = sanitizer or DataSanitizer()

    async def execute(
        self, test_case: AdaptiveTestCase, validate: bool = True
    ) -> AdaptiveExecutionResult:
        """
        Execute a test case.

        Args:
            test_case: Case to run
            validate: Run the syntax validator first

        Returns:
            AdaptiveExecutionResult for the run

        Raises:
            ValidationError: If validation reports errors
        """
        if validate:
            self._validate(test_case)

        config = test_case.config
        started = time.perf_counter()
        context = ExecutionContext(variables=dict(test_case.variables))
        store = VariableStore(
            context.variables,
            enable_snapshots=config.save_variable_snapshots,
            enable_change_events=self.callbacks.on_variable_changed is not None,
            settings=self.settings,
        )
        unsubscribe = (
            store.on_change(self.callbacks.on_variable_changed)
            if self.callbacks.on_variable_changed
            else None
        )
        executor = self._build_executor(test_case, store)

        log_flow_event(
            "test_start",
            test_case.id,
            test_id=test_case.id,
            data={"details": {"steps": len(test_case.steps)}},
        )
        logger.info(
            f"Executing adaptive test case: {test_case.name}",
            extra={
                "test_id": test_case.id,
                "variables": self.sanitizer.sanitize_variables(store.get_all()),
            },
        )

        results: List[StepResult] = []
        stopped_early = False
        error: Optional[Exception] = None
        try:
            stopped_early = await asyncio.wait_for(
                self._run_steps(test_case, context, executor, store, results),
                config.total_timeout / 1000,
            )
        except asyncio.TimeoutError:
            error = ExecutionTimeoutError(
                f"Adaptive test execution timeout ({config.total_timeout}ms)",
                operation="test_case",
                timeout_ms=config.total_timeout,
            )
            logger.error(str(error), extra={"test_id": test_case.id})
        finally:
            if unsubscribe:
                unsubscribe()

        duration = (time.perf_counter() - started) * 1000
        failed = next((r for r in results if not r.success), None)
        if error is None and failed is not None:
            error = failed.error

        result = AdaptiveExecutionResult(
            test_id=test_case.id,
            success=error is None and failed is None and not stopped_early,
            results=results,
            stats=executor.get_execution_stats(context),
            variables=dict(context.variables),
            path_history=list(context.path_history),
            duration=duration,
            stopped_early=stopped_early,
            error=error,
        )

        log_performance_metric("test_case_duration", duration, context={"test_id": test_case.id})
        logger.info(
            f"Adaptive test case {'passed' if result.success else 'failed'}: {test_case.name}",
            extra={
                "test_id": test_case.id,
                "variables": self.sanitizer.sanitize_variables(result.variables),
                "details": result.to_dict()["stats"],
            },
        )
        return result

    def _validate(self, test_case: AdaptiveTestCase) -> None:
        report = self.validator.validate(test_case)
        for warning in report.warnings:
            logger.warning(f"Validation warning: {warning.message}", extra={"step_id": warning.step_id})
        if not report.valid:
            raise ValidationError(
                f"Test case {test_case.id} failed validation: "
                + "; ".join(issue.message for issue in report.errors),
                validation_type="syntax",
                failed_rules=[issue.rule for issue in report.errors],
            )

    def _build_executor(self, test_case: AdaptiveTestCase, store: VariableStore) -> ControlFlowExecutor:
        config = test_case.config
        condition_engine = ConditionEngine(
            self.agent,
            state_detector=StateDetector(self.agent, settings=self.settings),
            timeout=config.condition_evaluation_timeout,
            fallback=config.default_condition_fallback,
            settings=self.settings,
        )
        return ControlFlowExecutor(
            agent=self.agent,
            condition_engine=condition_engine,
            loop_manager=LoopManager(
                condition_engine,
                settings=self.settings,
                default_timeout=config.loop_iteration_timeout,
            ),
            variable_store=store,
            on_step_start=self.callbacks.on_step_start,
            on_step_complete=self.callbacks.on_step_complete,
            on_condition_evaluated=self.callbacks.on_condition_evaluated,
            on_branch_taken=self.callbacks.on_branch_taken,
            on_loop_iteration=self.callbacks.on_loop_iteration,
            settings=self.settings,
        )

    async def _run_steps(
        self,
        test_case: AdaptiveTestCase,
        context: ExecutionContext,
        executor: ControlFlowExecutor,
        store: VariableStore,
        results: List[StepResult],
    ) -> bool:
        """
        Run top-level steps into ``results``; True when the circuit breaker tripped.

        ``should_stop`` is polled only between top-level steps, where
        ``current_depth`` is back to 0, so the depth limit never trips here.
        Nesting is bounded by validator warnings instead.
        """

        async def run_action(step: AdaptiveStep) -> None:
            await self._run_action(step, store)

        for step in test_case.steps:
            if executor.should_stop(context):
                logger.warning(
                    "Execution stopped by safety limits",
                    extra={"test_id": test_case.id, "depth": context.current_depth},
                )
                return True

            result = await executor.execute_step(step, context, run_action)
            results.append(result)
            if not result.success:
                if self.callbacks.on_step_failed:
                    self.callbacks.on_step_failed(step, result.error)
                break
        return False

    async def _run_action(self, step: AdaptiveStep, store: VariableStore) -> None:
        if isinstance(step, ActionStep):
            step = self.resolve_step_variables(step, store)
        if self.action_executor is not None:
            await self.action_executor(step)
        else:
            logger.info(f"Action: {step.description}", extra={"step_id": step.id})

    @staticmethod
    def resolve_step_variables(step: ActionStep, store: VariableStore) -> ActionStep:
        """Copy of the step with ``${name}`` references in its text substituted."""
        update: Dict[str, Any] = {}
        if VARIABLE_REFERENCE.search(step.description):
            update["description"] = store.replace_variables(step.description)
        action = step.action
        if action is not None:
            action_update = {}
            if VARIABLE_REFERENCE.search(action.target):
                action_update["target"] = store.replace_variables(action.target)
            if isinstance(action.value, str) and VARIABLE_REFERENCE.search(action.value):
                action_update["value"] = store.replace_variables(action.value)
            if action_update:
                update["action"] = action.model_copy(update=action_update)
        return step.model_copy(update=update) if update else step


async def execute_adaptive_test(
    test_case: AdaptiveTestCase,
    agent: Optional[LocatorAgent] = None,
    action_executor: Optional[ActionCallback] = None,
    callbacks: Optional[ExecutionCallbacks] = None,
    settings: Optional[Settings] = None,
) -> AdaptiveExecutionResult:
    """Shortcut for a one-off run with a default engine."""
    engine = AdaptiveExecutionEngine(
        agent=agent, action_executor=action_executor, callbacks=callbacks, settings=settings
    )
    return await engine.execute(test_case)
