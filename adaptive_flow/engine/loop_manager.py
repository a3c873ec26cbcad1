"""
Bounded loop execution (count, while, forEach).

Every loop runs inside a frame pushed onto ``context.loop_stack``; the frame is
popped exactly once however the loop ends.
"""

import time
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Iterator, List, Optional
from uuid import uuid4

from adaptive_flow.config.settings import Settings, get_settings
from adaptive_flow.core.types import (
    ExecutionContext,
    LoopConfig,
    LoopContext,
    LoopExecutionResult,
    LoopExitReason,
    LoopType,
)
from adaptive_flow.engine.condition_engine import ConditionEngine
from adaptive_flow.error_handling.exceptions import (
    LoopConfigurationError,
    UnsupportedConfigurationError,
)
from adaptive_flow.monitoring.logger import get_logger

logger = get_logger(__name__)

LoopBody = Callable[[int, Any], Awaitable[None]]

SELECTOR_PREFIXES = (".", "#", "[", "//")


def looks_like_selector(reference: str) -> bool:
    return reference.strip().startswith(SELECTOR_PREFIXES)


class LoopManager:
    """Runs loop constructs, delegating each iteration to a body callback."""

    def __init__(
        self,
        condition_engine: Optional[ConditionEngine] = None,
        settings: Optional[Settings] = None,
        default_timeout: Optional[int] = None,
    ) -> None:
        settings = settings or get_settings()
        self.condition_engine = condition_engine or ConditionEngine(settings=settings)
        # Applies to loops without their own timeout; 0 disables it
        if default_timeout is None:
            default_timeout = settings.loop_iteration_timeout
        self.default_timeout = default_timeout or None

    async def execute(
        self,
        loop: LoopConfig,
        context: ExecutionContext,
        body: LoopBody,
        loop_id: Optional[str] = None,
    ) -> LoopExecutionResult:
        """
        Execute a loop.

        Args:
            loop: Loop configuration
            context: Execution context; its loop stack and variables are updated
            body: Awaited once per iteration with the 1-based iteration number
                and the current item (None outside forEach)
            loop_id: Identifier for the loop frame, usually the step id

        Returns:
            LoopExecutionResult; body exceptions end the loop with reason ``error``
        """
        loop_id = loop_id or f"loop_{loop.type.value}_{uuid4().hex[:8]}"
        started = time.perf_counter()
        invocations = [0]

        async def counted_body(iteration: int, item: Any) -> None:
            invocations[0] += 1
            await body(iteration, item)

        try:
            if loop.type is LoopType.COUNT:
                result = await self._execute_count(loop, context, counted_body, loop_id)
            elif loop.type is LoopType.WHILE:
                result = await self._execute_while(loop, context, counted_body, loop_id)
            elif loop.type is LoopType.FOR_EACH:
                result = await self._execute_for_each(loop, context, counted_body, loop_id)
            else:
                raise LoopConfigurationError(
                    f"Unknown loop type: {loop.type}", loop_type=str(loop.type)
                )
        except Exception as e:
            logger.warning(
                f"Loop {loop_id} aborted after {invocations[0]} iteration(s): {e}",
                extra={"step_id": loop_id},
            )
            return LoopExecutionResult(
                completed=False,
                iterations=invocations[0],
                duration=self._elapsed(started),
                reason=LoopExitReason.ERROR,
                error=e,
            )

        result.duration = self._elapsed(started)
        logger.debug(
            f"Loop {loop_id} finished: {result.iterations} iteration(s), reason={result.reason}",
            extra={"step_id": loop_id, "iteration": result.iterations},
        )
        return result

    @contextmanager
    def _frame(self, context: ExecutionContext, frame: LoopContext) -> Iterator[LoopContext]:
        context.loop_stack.append(frame)
        try:
            yield frame
        finally:
            popped = context.loop_stack.pop()
            if popped is not frame:
                raise RuntimeError(f"Loop stack corrupted: expected {frame.loop_id}, got {popped.loop_id}")

    def timeout_for(self, loop: LoopConfig) -> Optional[int]:
        return loop.timeout if loop.timeout is not None else self.default_timeout

    @staticmethod
    def _timed_out(frame: LoopContext) -> bool:
        return frame.timeout is not None and frame.elapsed_ms > frame.timeout

    async def _execute_count(
        self, loop: LoopConfig, context: ExecutionContext, body: LoopBody, loop_id: str
    ) -> LoopExecutionResult:
        count = 1 if loop.count is None else max(loop.count, 0)
        limit = min(count, loop.max_iterations)
        frame = LoopContext(
            loop_id=loop_id,
            loop_type=loop.type,
            max_iterations=limit,
            timeout=self.timeout_for(loop),
        )

        with self._frame(context, frame):
            for index in range(limit):
                if self._timed_out(frame):
                    return LoopExecutionResult(False, index, 0.0, LoopExitReason.TIMEOUT)
                frame.current_iteration = index + 1
                await body(index + 1, None)

        return LoopExecutionResult(True, limit, 0.0, LoopExitReason.MAX_ITERATIONS)

    async def _execute_while(
        self, loop: LoopConfig, context: ExecutionContext, body: LoopBody, loop_id: str
    ) -> LoopExecutionResult:
        if not loop.condition:
            raise LoopConfigurationError("While loop requires a condition", loop_type=loop.type.value)

        frame = LoopContext(
            loop_id=loop_id,
            loop_type=loop.type,
            max_iterations=loop.max_iterations,
            timeout=self.timeout_for(loop),
        )
        iteration = 0

        with self._frame(context, frame):
            while iteration < loop.max_iterations:
                if self._timed_out(frame):
                    return LoopExecutionResult(False, iteration, 0.0, LoopExitReason.TIMEOUT)

                evaluation = await self.condition_engine.evaluate(loop.condition, context)
                if not evaluation.success or not evaluation.value:
                    return LoopExecutionResult(True, iteration, 0.0, LoopExitReason.CONDITION_FALSE)

                iteration += 1
                frame.current_iteration = iteration
                await body(iteration, None)

        return LoopExecutionResult(False, iteration, 0.0, LoopExitReason.MAX_ITERATIONS)

    async def _execute_for_each(
        self, loop: LoopConfig, context: ExecutionContext, body: LoopBody, loop_id: str
    ) -> LoopExecutionResult:
        collection = self.resolve_collection(loop, context)
        limit = min(len(collection), loop.max_iterations)
        item_var = loop.item_var or "item"
        frame = LoopContext(
            loop_id=loop_id,
            loop_type=loop.type,
            max_iterations=limit,
            timeout=self.timeout_for(loop),
            collection=collection,
            item_var=item_var,
        )

        try:
            with self._frame(context, frame):
                for index in range(limit):
                    if self._timed_out(frame):
                        return LoopExecutionResult(False, index, 0.0, LoopExitReason.TIMEOUT)
                    item = collection[index]
                    frame.current_iteration = index + 1
                    frame.current_item = item
                    context.variables[item_var] = item
                    await body(index + 1, item)
        finally:
            context.variables.pop(item_var, None)

        return LoopExecutionResult(True, limit, 0.0)

    @staticmethod
    def resolve_collection(loop: LoopConfig, context: ExecutionContext) -> List[Any]:
        """
        Materialize a forEach collection from a context variable.

        Missing or null variables give an empty collection; scalars and
        strings are wrapped in a one-item list. Selector references are
        refused rather than silently treated as empty.
        """
        reference = (loop.collection or "").strip()
        if not reference:
            raise LoopConfigurationError("forEach loop requires a collection", loop_type=loop.type.value)
        if looks_like_selector(reference):
            raise UnsupportedConfigurationError(
                f"forEach over page elements is not supported: {reference}",
                loop_type=loop.type.value,
                details={"collection": reference},
            )

        value = context.variables.get(reference)
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        return [value]

    @staticmethod
    def get_current_loop(context: ExecutionContext) -> Optional[LoopContext]:
        return context.loop_stack[-1] if context.loop_stack else None

    @staticmethod
    def get_loop_depth(context: ExecutionContext) -> int:
        return len(context.loop_stack)

    @staticmethod
    def should_continue(frame: LoopContext, loop: LoopConfig) -> bool:
        if frame.current_iteration >= frame.max_iterations:
            return False
        timeout = loop.timeout if loop.timeout is not None else frame.timeout
        return not (timeout is not None and frame.elapsed_ms > timeout)

    @staticmethod
    def _elapsed(started: float) -> float:
        return (time.perf_counter() - started) * 1000
