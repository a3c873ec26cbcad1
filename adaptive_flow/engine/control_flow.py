"""
Tree-walking executor for adaptive steps.

Each step yields a ``StepResult``; no exception escapes ``execute_step``.
A failing child stops its step list (fail-fast) and the failure bubbles up as
a failed result at every enclosing level. The error itself is recorded in
``context.error_stack`` once, where it originated.
"""

import asyncio
import time
from typing import Any, Callable, List, Optional, Sequence

from adaptive_flow.config.settings import Settings, get_settings
from adaptive_flow.core.interfaces import ActionCallback, LocatorAgent, NullLocatorAgent
from adaptive_flow.core.types import (
    ActionStep,
    AdaptiveStep,
    ConditionStep,
    EvaluationResult,
    ExecutionContext,
    ExecutionStats,
    LoopExitReason,
    LoopStep,
    PathBranch,
    PathEntry,
    StepResult,
    VariableOperationType,
    VariableStep,
)
from adaptive_flow.engine.condition_engine import ConditionEngine
from adaptive_flow.engine.loop_manager import LoopManager
from adaptive_flow.engine.variable_store import VariableStore, is_number
from adaptive_flow.error_handling.exceptions import (
    EvaluationError,
    ExecutionTimeoutError,
    StepExecutionError,
)
from adaptive_flow.monitoring.logger import get_logger, log_flow_event

logger = get_logger(__name__)

StepObserver = Callable[[AdaptiveStep], None]
StepCompleteObserver = Callable[[AdaptiveStep, StepResult], None]
ConditionObserver = Callable[[AdaptiveStep, EvaluationResult], None]
BranchObserver = Callable[[AdaptiveStep, PathBranch], None]
IterationObserver = Callable[[AdaptiveStep, int, Any], None]


class _BodyStepFailed(Exception):
    """Raised inside a loop body when a child step failed; carries the child's error."""

    def __init__(self, error: Optional[Exception]):
        super().__init__(str(error) if error else "Loop body step failed")
        self.error = error


class ControlFlowExecutor:
    """Dispatches action, condition, loop and variable steps."""

    def __init__(
        self,
        agent: Optional[LocatorAgent] = None,
        condition_engine: Optional[ConditionEngine] = None,
        loop_manager: Optional[LoopManager] = None,
        variable_store: Optional[VariableStore] = None,
        on_step_start: Optional[StepObserver] = None,
        on_step_complete: Optional[StepCompleteObserver] = None,
        on_condition_evaluated: Optional[ConditionObserver] = None,
        on_branch_taken: Optional[BranchObserver] = None,
        on_loop_iteration: Optional[IterationObserver] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.agent = agent or NullLocatorAgent()
        self.condition_engine = condition_engine or ConditionEngine(
            self.agent, settings=self.settings
        )
        self.loop_manager = loop_manager or LoopManager(
            self.condition_engine, settings=self.settings
        )
        self.variable_store = variable_store
        self.on_step_start = on_step_start
        self.on_step_complete = on_step_complete
        self.on_condition_evaluated = on_condition_evaluated
        self.on_branch_taken = on_branch_taken
        self.on_loop_iteration = on_loop_iteration

    async def execute_step(
        self,
        step: AdaptiveStep,
        context: ExecutionContext,
        execute_action: Optional[ActionCallback] = None,
    ) -> StepResult:
        """
        Execute one step and everything nested under it.

        Args:
            step: Step to execute
            context: Execution context of the current run
            execute_action: Callback performing action steps

        Returns:
            StepResult for the step
        """
        started = time.perf_counter()
        self._notify(self.on_step_start, step)
        log_flow_event("step_start", step.id, data={"step_type": step.type, "depth": context.current_depth})

        try:
            if isinstance(step, ActionStep):
                result = await self._execute_action(step, context, execute_action)
            elif isinstance(step, ConditionStep):
                result = await self._execute_condition(step, context, execute_action)
            elif isinstance(step, LoopStep):
                result = await self._execute_loop(step, context, execute_action)
            elif isinstance(step, VariableStep):
                result = await self._execute_variable(step, context)
            else:
                raise StepExecutionError(
                    f"Unknown step type: {type(step).__name__}", step_id=getattr(step, "id", "?")
                )
        except Exception as e:
            logger.error(f"Step {step.id} failed unexpectedly: {e}", exc_info=True, extra={"step_id": step.id})
            context.error_stack.append(e)
            result = StepResult(step_id=step.id, success=False, duration=0.0, error=e)

        result.duration = self._elapsed(started)
        log_flow_event(
            "step_complete",
            step.id,
            data={"duration_ms": result.duration, "details": {"success": result.success}},
        )
        self._notify(self.on_step_complete, step, result)
        return result

    async def execute_steps(
        self,
        steps: Sequence[AdaptiveStep],
        context: ExecutionContext,
        execute_action: Optional[ActionCallback] = None,
    ) -> List[StepResult]:
        """Execute steps in order, stopping after the first failure."""
        results: List[StepResult] = []
        for step in steps:
            result = await self.execute_step(step, context, execute_action)
            results.append(result)
            if not result.success:
                break
        return results

    def should_stop(self, context: ExecutionContext) -> bool:
        """Circuit breaker for callers to poll between steps."""
        return (
            context.current_depth > self.settings.circuit_breaker_max_depth
            or len(context.error_stack) > self.settings.circuit_breaker_max_errors
        )

    @staticmethod
    def get_execution_stats(context: ExecutionContext) -> ExecutionStats:
        """Summary derived from the path history alone."""
        history = context.path_history
        return ExecutionStats(
            total_steps=len(history),
            executed_branches=sum(
                1 for entry in history if entry.branch in (PathBranch.THEN, PathBranch.ELSE)
            ),
            loop_iterations=sum(1 for entry in history if entry.branch is PathBranch.LOOP),
            max_depth=max([context.current_depth] + [entry.depth + 1 for entry in history]),
        )

    # Step kinds

    async def _execute_action(
        self,
        step: ActionStep,
        context: ExecutionContext,
        execute_action: Optional[ActionCallback],
    ) -> StepResult:
        if execute_action is None:
            logger.debug(f"No action executor; action step {step.id} treated as done")
            return StepResult(step_id=step.id, success=True, duration=0.0)
        try:
            await execute_action(step)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Action step {step.id} failed: {e}", extra={"step_id": step.id})
            context.error_stack.append(e)
            return StepResult(step_id=step.id, success=False, duration=0.0, error=e)
        return StepResult(step_id=step.id, success=True, duration=0.0)

    async def _execute_condition(
        self,
        step: ConditionStep,
        context: ExecutionContext,
        execute_action: Optional[ActionCallback],
    ) -> StepResult:
        block = step.condition
        expression = block.parsed_expression or block.expression
        evaluation = await self.condition_engine.evaluate(expression, context)
        self._notify(self.on_condition_evaluated, step, evaluation)

        if not evaluation.success:
            error = EvaluationError(
                evaluation.error or "Condition evaluation failed",
                details={"step_id": step.id, "expression": block.expression},
            )
            context.error_stack.append(error)
            return StepResult(step_id=step.id, success=False, duration=0.0, error=error)

        branch = PathBranch.THEN if evaluation.value else PathBranch.ELSE
        context.path_history.append(
            PathEntry(
                step_id=step.id,
                branch=branch,
                condition=block.expression,
                depth=context.current_depth,
            )
        )
        self._notify(self.on_branch_taken, step, branch)
        log_flow_event("branch_taken", step.id, data={"branch": branch.value})

        children = block.then_steps if evaluation.value else block.else_steps
        if not children:
            return StepResult(step_id=step.id, success=True, duration=0.0, skipped=True, branch=branch)

        context.current_depth += 1
        try:
            results = await self.execute_steps(children, context, execute_action)
        finally:
            context.current_depth -= 1

        failed = next((r for r in results if not r.success), None)
        return StepResult(
            step_id=step.id,
            success=failed is None,
            duration=0.0,
            error=failed.error if failed else None,
            branch=branch,
            variables=dict(context.variables),
        )

    async def _execute_loop(
        self,
        step: LoopStep,
        context: ExecutionContext,
        execute_action: Optional[ActionCallback],
    ) -> StepResult:
        loop = step.loop

        async def body(iteration: int, item: Any) -> None:
            context.path_history.append(
                PathEntry(step_id=step.id, branch=PathBranch.LOOP, depth=context.current_depth - 1)
            )
            self._notify(self.on_loop_iteration, step, iteration, item)
            log_flow_event("loop_iteration", step.id, data={"iteration": iteration})
            for child in loop.body:
                result = await self.execute_step(child, context, execute_action)
                if not result.success:
                    raise _BodyStepFailed(result.error)

        context.current_depth += 1
        try:
            loop_result = await self.loop_manager.execute(loop, context, body, loop_id=step.id)
        finally:
            context.current_depth -= 1

        error = loop_result.error
        if isinstance(error, _BodyStepFailed):
            error = error.error
        elif error is not None:
            context.error_stack.append(error)
        elif not loop_result.completed:
            error = self._early_exit_error(step, loop_result.reason)
            context.error_stack.append(error)

        return StepResult(
            step_id=step.id,
            success=loop_result.completed,
            duration=0.0,
            error=error,
            branch=PathBranch.LOOP,
            iterations=loop_result.iterations,
            variables=dict(context.variables),
        )

    async def _execute_variable(self, step: VariableStep, context: ExecutionContext) -> StepResult:
        operation = step.variable
        store = self._store_for(context)

        try:
            if operation.operation is VariableOperationType.SET:
                store.set(operation.name, operation.value)
            elif operation.operation is VariableOperationType.INCREMENT:
                amount = operation.value if is_number(operation.value) else 1
                store.increment(operation.name, amount)
            elif operation.operation is VariableOperationType.EXTRACT:
                await self._extract(step, store)
            elif operation.operation is VariableOperationType.GET:
                logger.debug(f"Variable {operation.name} = {store.get(operation.name)!r}")
            else:
                raise StepExecutionError(
                    f"Unknown variable operation: {operation.operation}",
                    step_id=step.id,
                    step_type="variable",
                )
        except Exception as e:
            context.error_stack.append(e)
            return StepResult(step_id=step.id, success=False, duration=0.0, error=e)

        return StepResult(
            step_id=step.id, success=True, duration=0.0, variables=dict(context.variables)
        )

    async def _extract(self, step: VariableStep, store: VariableStore) -> None:
        operation = step.variable
        if operation.value is not None:
            store.extract(operation.name, operation.value)
            return
        if not operation.source or not self.agent.is_available:
            logger.warning(
                f"Cannot extract {operation.name}: no value and no way to read {operation.source!r}",
                extra={"step_id": step.id},
            )
            return

        timeout_ms = self.condition_engine.timeout
        try:
            element = await asyncio.wait_for(
                self.agent.locate(operation.source, deep_think=False), timeout_ms / 1000
            )
        except asyncio.TimeoutError:
            logger.warning(f"Extracting {operation.name} timed out after {timeout_ms}ms", extra={"step_id": step.id})
            return
        except Exception as e:
            logger.warning(f"Extracting {operation.name} failed: {e}", extra={"step_id": step.id})
            return

        if element is None:
            logger.warning(f"Extract source not found: {operation.source!r}", extra={"step_id": step.id})
            return
        if element.text:
            value = element.text
        elif element.attributes.get("value") is not None:
            value = element.attributes["value"]
        else:
            value = True
        store.extract(operation.name, value)

    # Helpers

    def _store_for(self, context: ExecutionContext) -> VariableStore:
        if self.variable_store is not None and self.variable_store.variables is context.variables:
            return self.variable_store
        return VariableStore.from_execution_context(context, settings=self.settings)

    def _early_exit_error(self, step: LoopStep, reason: Optional[LoopExitReason]) -> Exception:
        if reason is LoopExitReason.TIMEOUT:
            return ExecutionTimeoutError(
                f"Loop {step.id} timed out",
                operation="loop",
                timeout_ms=self.loop_manager.timeout_for(step.loop) or 0,
            )
        return StepExecutionError(
            f"Loop {step.id} stopped early: {reason.value if reason else 'unknown'}",
            step_id=step.id,
            step_type="loop",
        )

    @staticmethod
    def _notify(observer: Optional[Callable[..., None]], *args: Any) -> None:
        if observer is None:
            return
        try:
            observer(*args)
        except Exception as e:
            logger.warning(f"Execution observer raised: {e}", exc_info=True)

    @staticmethod
    def _elapsed(started: float) -> float:
        return (time.perf_counter() - started) * 1000
