"""
Mutable variable state for one test run.
"""

import re
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Set

from adaptive_flow.config.settings import Settings, get_settings
from adaptive_flow.core.types import ExecutionContext, VariableChangeEvent, VariableSnapshot
from adaptive_flow.monitoring.logger import get_logger

logger = get_logger(__name__)

ChangeListener = Callable[[VariableChangeEvent], None]

VARIABLE_REFERENCE = re.compile(r"\$\{(\w+)\}")


def is_number(value: Any) -> bool:
    """True for int and float, but not bool."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class VariableStore:
    """Name/value store with optional change events and a bounded snapshot ring.

    The store works directly on the dict it is given, so a store built from an
    ``ExecutionContext`` and the context always see the same variables.
    """

    def __init__(
        self,
        variables: Optional[Dict[str, Any]] = None,
        enable_snapshots: Optional[bool] = None,
        max_snapshots: Optional[int] = None,
        enable_change_events: Optional[bool] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self._variables: Dict[str, Any] = variables if variables is not None else {}
        self.enable_snapshots = (
            settings.save_variable_snapshots if enable_snapshots is None else enable_snapshots
        )
        self.enable_change_events = (
            settings.enable_variable_change_events
            if enable_change_events is None
            else enable_change_events
        )
        self._snapshots: Deque[VariableSnapshot] = deque(
            maxlen=max_snapshots or settings.max_variable_snapshots
        )
        self._listeners: Set[ChangeListener] = set()

    def get(self, name: str, default: Any = None) -> Any:
        return self._variables.get(name, default)

    def set(self, name: str, value: Any) -> None:
        self._write(name, value, "set")

    def extract(self, name: str, value: Any) -> None:
        """Store a value read from the page."""
        self._write(name, value, "extract")

    def increment(self, name: str, amount: float = 1) -> float:
        """
        Add ``amount`` to a numeric variable.

        Absent or non-numeric values count as 0.

        Returns:
            The new value
        """
        old_value = self._variables.get(name)
        base = old_value if is_number(old_value) else 0
        new_value = base + amount
        self._variables[name] = new_value
        self._after_change(name, "increment", old_value, new_value)
        return new_value

    def delete(self, name: str) -> bool:
        if name not in self._variables:
            return False
        old_value = self._variables.pop(name)
        self._after_change(name, "delete", old_value, None)
        return True

    def has(self, name: str) -> bool:
        return name in self._variables

    def get_all(self) -> Dict[str, Any]:
        return dict(self._variables)

    def clear(self) -> None:
        old_variables = dict(self._variables)
        self._variables.clear()
        for name, old_value in old_variables.items():
            self._emit(VariableChangeEvent(name, "delete", old_value, None))
        self._snapshot_if_enabled("clear")

    @property
    def variables(self) -> Dict[str, Any]:
        """The live backing dict (not a copy)."""
        return self._variables

    @property
    def size(self) -> int:
        return len(self._variables)

    def __len__(self) -> int:
        return len(self._variables)

    def __contains__(self, name: str) -> bool:
        return name in self._variables

    # Snapshots

    def create_snapshot(self, operation: Optional[str] = None) -> VariableSnapshot:
        snapshot = VariableSnapshot.capture(self._variables, operation)
        self._snapshots.append(snapshot)
        return snapshot

    def get_snapshots(self) -> List[VariableSnapshot]:
        return list(self._snapshots)

    def restore_snapshot(self, snapshot: VariableSnapshot) -> None:
        """Replace all variables with the snapshot's contents, in place."""
        self._variables.clear()
        self._variables.update(dict(snapshot.variables))
        logger.debug(
            "Variables restored from snapshot",
            extra={"details": {"snapshot_time": snapshot.timestamp.isoformat()}},
        )

    # Change events

    def on_change(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unregisters it."""
        self._listeners.add(listener)

        def unsubscribe() -> None:
            self._listeners.discard(listener)

        return unsubscribe

    # Substitution

    def replace_variables(self, text: str) -> str:
        """Substitute ``${name}`` references; unknown names are left as written."""

        def _replace(match: re.Match) -> str:
            name = match.group(1)
            if name not in self._variables:
                return match.group(0)
            return str(self._variables[name])

        return VARIABLE_REFERENCE.sub(_replace, text)

    # Context hand-off

    def to_execution_context(self) -> ExecutionContext:
        """New context sharing this store's variable dict."""
        return ExecutionContext(variables=self._variables)

    @classmethod
    def from_execution_context(
        cls, context: ExecutionContext, **options: Any
    ) -> "VariableStore":
        """Store operating on ``context.variables`` itself."""
        return cls(context.variables, **options)

    # Internals

    def _write(self, name: str, value: Any, operation: str) -> None:
        old_value = self._variables.get(name)
        self._variables[name] = value
        self._after_change(name, operation, old_value, value)

    def _after_change(self, name: str, operation: str, old_value: Any, new_value: Any) -> None:
        self._emit(VariableChangeEvent(name, operation, old_value, new_value))
        self._snapshot_if_enabled(operation)

    def _snapshot_if_enabled(self, operation: str) -> None:
        if self.enable_snapshots:
            self.create_snapshot(operation)

    def _emit(self, event: VariableChangeEvent) -> None:
        if not self.enable_change_events:
            return
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    f"Variable change listener failed: {e}",
                    exc_info=True,
                    extra={"details": {"variable": event.name, "operation": event.operation}},
                )
