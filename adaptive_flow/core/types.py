"""
Core data models and types for the adaptive flow engine.
"""

import time
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


class ConditionType(str, Enum):
    """Kinds of condition expressions."""

    ELEMENT = "element"
    TEXT = "text"
    STATE = "state"
    VARIABLE = "variable"
    COMPOUND = "compound"


class ElementCheck(str, Enum):
    """Checks that can be performed on a located element."""

    EXISTS = "exists"
    VISIBLE = "visible"
    ENABLED = "enabled"
    SELECTED = "selected"


class TextOperator(str, Enum):
    """Operators for text conditions."""

    EQUALS = "equals"
    CONTAINS = "contains"
    MATCHES = "matches"


class ComparisonOperator(str, Enum):
    """Operators for variable conditions."""

    EQ = "=="
    NE = "!="
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="


class LogicalOperator(str, Enum):
    """Operators for compound conditions."""

    AND = "and"
    OR = "or"
    NOT = "not"


class PageState(str, Enum):
    """Semantic page states understood by the state detector."""

    LOGGED_IN = "logged_in"
    LOADING = "loading"
    ERROR = "error"
    EMPTY = "empty"
    CUSTOM = "custom"


class LoopType(str, Enum):
    """Supported loop constructs."""

    COUNT = "count"
    WHILE = "while"
    FOR_EACH = "forEach"


class VariableOperationType(str, Enum):
    """Operations a variable step can perform."""

    SET = "set"
    GET = "get"
    INCREMENT = "increment"
    EXTRACT = "extract"


class ActionType(str, Enum):
    """Browser interactions an action step can request."""

    CLICK = "click"
    INPUT = "input"
    ASSERT = "assert"
    WAIT = "wait"
    NAVIGATE = "navigate"
    SCROLL = "scroll"
    HOVER = "hover"
    DRAG = "drag"


class PathBranch(str, Enum):
    """Branch recorded in the execution path."""

    THEN = "then"
    ELSE = "else"
    LOOP = "loop"


class LoopExitReason(str, Enum):
    """Why a loop stopped iterating."""

    MAX_ITERATIONS = "max_iterations"
    TIMEOUT = "timeout"
    CONDITION_FALSE = "condition_false"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Condition expressions
# ---------------------------------------------------------------------------


class _Expression(BaseModel):
    model_config = ConfigDict(frozen=True)


class ElementCondition(_Expression):
    """Checks the presence or state of a page element."""

    type: Literal["element"] = "element"
    target: str = Field(..., description="Locator prompt or selector")
    check: ElementCheck = ElementCheck.EXISTS


class TextCondition(_Expression):
    """Compares the text of a page element."""

    type: Literal["text"] = "text"
    target: str
    operator: TextOperator = TextOperator.CONTAINS
    value: str = ""


class StateCondition(_Expression):
    """Asks whether the page is in a semantic state."""

    type: Literal["state"] = "state"
    state: PageState
    custom_description: Optional[str] = Field(
        None, description="Rule key for custom states"
    )


class VariableCondition(_Expression):
    """Compares a context variable with a literal."""

    type: Literal["variable"] = "variable"
    name: str
    operator: ComparisonOperator
    value: Union[bool, int, float, str, None] = None


class CompoundCondition(_Expression):
    """Logical combination of child expressions."""

    type: Literal["compound"] = "compound"
    operator: LogicalOperator
    operands: Tuple["ConditionExpression", ...] = ()

    @property
    def is_well_formed(self) -> bool:
        if self.operator == LogicalOperator.NOT:
            return len(self.operands) == 1
        return len(self.operands) > 0


ConditionExpression = Annotated[
    Union[
        ElementCondition,
        TextCondition,
        StateCondition,
        VariableCondition,
        CompoundCondition,
    ],
    Field(discriminator="type"),
]

CompoundCondition.model_rebuild()


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


class Action(BaseModel):
    """Browser interaction forwarded to the action executor."""

    model_config = ConfigDict(frozen=True)

    type: ActionType = ActionType.CLICK
    target: str = ""
    value: Optional[str] = None


class VariableOperation(BaseModel):
    """Mutation performed by a variable step."""

    model_config = ConfigDict(frozen=True)

    operation: VariableOperationType
    name: str = ""
    value: Any = None
    source: Optional[str] = Field(None, description="Where to extract the value from")


class LoopConfig(BaseModel):
    """Configuration of a loop step."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: LoopType
    count: Optional[int] = None
    condition: Optional[str] = None
    collection: Optional[str] = None
    item_var: str = Field("item", alias="itemVar")
    body: Tuple["AdaptiveStep", ...] = ()
    max_iterations: int = Field(50, alias="maxIterations")
    timeout: Optional[int] = Field(None, description="Wall-clock budget in milliseconds")


class ConditionBlock(BaseModel):
    """Expression and branches of a condition step."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    expression: str = ""
    parsed_expression: Optional[ConditionExpression] = Field(
        None, alias="parsedExpression"
    )
    then_steps: Tuple["AdaptiveStep", ...] = Field((), alias="thenSteps")
    else_steps: Tuple["AdaptiveStep", ...] = Field((), alias="elseSteps")


class _Step(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    description: str = ""
    line_number: Optional[int] = Field(None, alias="lineNumber")


class ActionStep(_Step):
    type: Literal["action"] = "action"
    action: Optional[Action] = None


class ConditionStep(_Step):
    type: Literal["condition"] = "condition"
    condition: ConditionBlock


class LoopStep(_Step):
    type: Literal["loop"] = "loop"
    loop: LoopConfig


class VariableStep(_Step):
    type: Literal["variable"] = "variable"
    variable: VariableOperation


AdaptiveStep = Annotated[
    Union[ActionStep, ConditionStep, LoopStep, VariableStep],
    Field(discriminator="type"),
]

LoopConfig.model_rebuild()
ConditionBlock.model_rebuild()
ConditionStep.model_rebuild()
LoopStep.model_rebuild()


class AdaptiveTestConfig(BaseModel):
    """Per-test-case limits and evaluation defaults."""

    model_config = ConfigDict(populate_by_name=True)

    max_loop_iterations: int = Field(50, ge=1, alias="maxLoopIterations")
    max_nested_depth: int = Field(3, ge=1, alias="maxNestedDepth")
    loop_iteration_timeout: int = Field(30000, ge=0, alias="loopIterationTimeout")
    total_timeout: int = Field(300000, ge=0, alias="totalTimeout")
    condition_evaluation_timeout: int = Field(
        10000, ge=0, alias="conditionEvaluationTimeout"
    )
    default_condition_fallback: bool = Field(False, alias="defaultConditionFallback")
    save_variable_snapshots: bool = Field(False, alias="saveVariableSnapshots")


class AdaptiveTestCase(BaseModel):
    """A test case whose steps may branch, loop and mutate variables."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    description: Optional[str] = None
    steps: List[AdaptiveStep] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    config: AdaptiveTestConfig = Field(default_factory=AdaptiveTestConfig)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Locator agent payloads
# ---------------------------------------------------------------------------


class ElementRect(BaseModel):
    """Bounding box of a located element."""

    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0


class LocatedElement(BaseModel):
    """Element descriptor returned by the locator agent."""

    rect: Optional[ElementRect] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)
    text: Optional[str] = None


# ---------------------------------------------------------------------------
# Runtime state
# ---------------------------------------------------------------------------


@dataclass
class LoopContext:
    """Bookkeeping for one open loop frame."""

    loop_id: str
    loop_type: LoopType
    max_iterations: int
    current_iteration: int = 0
    start_time: float = field(default_factory=time.monotonic)
    timeout: Optional[int] = None
    collection: Optional[List[Any]] = None
    current_item: Any = None
    item_var: Optional[str] = None

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.start_time) * 1000


@dataclass(frozen=True)
class PathEntry:
    """One recorded branch or loop decision."""

    step_id: str
    branch: PathBranch
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    condition: Optional[str] = None
    depth: int = 0


@dataclass(frozen=True)
class VariableSnapshot:
    """Read-only copy of all variables at one point in time."""

    timestamp: datetime
    variables: Mapping[str, Any]
    operation: Optional[str] = None

    @classmethod
    def capture(
        cls, variables: Dict[str, Any], operation: Optional[str] = None
    ) -> "VariableSnapshot":
        return cls(
            timestamp=datetime.now(timezone.utc),
            variables=MappingProxyType(deepcopy(variables)),
            operation=operation,
        )


@dataclass
class ExecutionContext:
    """Mutable state threaded through a single test run."""

    variables: Dict[str, Any] = field(default_factory=dict)
    loop_stack: List[LoopContext] = field(default_factory=list)
    path_history: List[PathEntry] = field(default_factory=list)
    error_stack: List[Exception] = field(default_factory=list)
    current_depth: int = 0


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class EvaluationResult:
    """Outcome of evaluating a condition."""

    success: bool
    value: bool
    duration: float
    error: Optional[str] = None


class StateDetectionResult(BaseModel):
    """Outcome of probing for a page state."""

    detected: bool
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    description: str = ""
    tier: Optional[Literal["dom", "text", "ai"]] = None
    details: Dict[str, Any] = Field(default_factory=dict)


@dataclass
class LoopExecutionResult:
    """Outcome of running a loop."""

    completed: bool
    iterations: int
    duration: float
    reason: Optional[LoopExitReason] = None
    error: Optional[Exception] = None


@dataclass
class StepResult:
    """Uniform result of executing one step."""

    step_id: str
    success: bool
    duration: float
    skipped: bool = False
    error: Optional[Exception] = None
    branch: Optional[PathBranch] = None
    iterations: Optional[int] = None
    variables: Optional[Dict[str, Any]] = None


@dataclass
class ExecutionStats:
    """Read-side summary derived from the execution path."""

    total_steps: int
    executed_branches: int
    loop_iterations: int
    max_depth: int


@dataclass
class ParseResult:
    """Outcome of parsing a condition expression.

    ``strict`` tells whether the grammar parser produced the result or the
    natural-language heuristics did.
    """

    success: bool
    result: Optional[Any] = None
    error: Optional[str] = None
    position: Optional[int] = None
    strict: bool = True


@dataclass(frozen=True)
class VariableChangeEvent:
    """Emitted by the variable store after a mutation."""

    name: str
    operation: str
    old_value: Any
    new_value: Any
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class IssueType(str, Enum):
    """Category of a validation issue."""

    SYNTAX = "syntax"
    REFERENCE = "reference"
    STRUCTURE = "structure"
    LIMIT = "limit"
    PERFORMANCE = "performance"
    MAINTAINABILITY = "maintainability"
    COMPLEXITY = "complexity"


@dataclass
class ValidationIssue:
    """Single error or warning raised by the syntax validator."""

    rule: str
    message: str
    issue_type: IssueType
    step_id: Optional[str] = None
    line_number: Optional[int] = None
    suggestion: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule": self.rule,
            "message": self.message,
            "type": self.issue_type.value,
            "step_id": self.step_id,
            "line_number": self.line_number,
            "suggestion": self.suggestion,
        }


@dataclass
class ValidationReport:
    """Result of statically validating a test case."""

    valid: bool
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)
