"""
Static validation of adaptive test cases.

A table of rules is checked against the test case once (case scope) and
against every step during a single recursive walk (step scope). Errors make a
test case invalid; warnings never do.
"""

import re
from dataclasses import dataclass, field, replace
from enum import Enum, auto
from typing import Callable, Iterable, List, Optional, Set

from adaptive_flow.core.types import (
    ActionStep,
    AdaptiveStep,
    AdaptiveTestCase,
    ConditionStep,
    IssueType,
    LoopStep,
    LoopType,
    ValidationIssue,
    ValidationReport,
    VariableOperationType,
    VariableStep,
)
from adaptive_flow.engine.expression_parser import (
    parse_condition_expression,
    parse_loop_expression,
    parse_variable_expression,
)
from adaptive_flow.engine.loop_manager import looks_like_selector
from adaptive_flow.engine.variable_store import VARIABLE_REFERENCE
from adaptive_flow.monitoring.logger import get_logger

logger = get_logger(__name__)

MAX_LOOP_COUNT = 100
MAX_CONFIGURED_ITERATIONS = 100
MAX_NESTED_LOOPS = 3
LARGE_TEST_CASE_STEPS = 20

CONDITION_WORDS = (
    "element", "is", "exists", "visible", "enabled", "selected",
    "text", "contains", "matches", "equals",
    "state", "logged_in", "loading", "error", "empty",
    "and", "or", "not",
    "元素", "文本", "状态", "是", "存在", "可见", "包含", "等于",
)


class ValidationSeverity(Enum):
    """Severity of a rule violation."""
    WARNING = auto()
    ERROR = auto()


class RuleScope(Enum):
    """Whether a rule runs once per test case or once per step."""
    CASE = auto()
    STEP = auto()


@dataclass
class ValidationContext:
    """Snapshot handed to each rule check."""

    test_case: AdaptiveTestCase
    declared: Set[str]
    step: Optional[AdaptiveStep] = None
    parent: Optional[AdaptiveStep] = None
    depth: int = 0
    loop_depth: int = 0
    path: List[str] = field(default_factory=list)


@dataclass
class ValidationRule:
    """A single validation rule; ``check`` returns True when the rule passes."""

    name: str
    check: Callable[[ValidationContext], bool]
    message: str
    severity: ValidationSeverity = ValidationSeverity.ERROR
    issue_type: IssueType = IssueType.STRUCTURE
    suggestion: Optional[str] = None
    scope: RuleScope = RuleScope.STEP
    enabled: bool = True


@dataclass
class ExpressionValidation:
    """Result of checking a single expression string."""

    valid: bool
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Expression-level checks
# ---------------------------------------------------------------------------


def has_balanced_parentheses(expression: str) -> bool:
    depth = 0
    for char in expression:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


def validate_condition_expression(expression: str) -> ExpressionValidation:
    if not expression or not expression.strip():
        return ExpressionValidation(False, "Condition expression is empty")
    if not has_balanced_parentheses(expression):
        return ExpressionValidation(False, "Unbalanced parentheses")
    if parse_condition_expression(expression).success:
        return ExpressionValidation(True)

    lowered = expression.lower()
    if any(word in lowered for word in CONDITION_WORDS):
        return ExpressionValidation(True)
    if re.match(r"^\$?\{?\w+\}?\s*[=!<>]+\s*", expression.strip()):
        return ExpressionValidation(True)
    return ExpressionValidation(False, "No valid condition operator found")


def validate_loop_expression(expression: str) -> ExpressionValidation:
    parsed = parse_loop_expression(expression)
    if not parsed.success:
        return ExpressionValidation(False, parsed.error)

    loop = parsed.result
    if loop.type is LoopType.COUNT:
        if loop.count <= 0:
            return ExpressionValidation(False, "Loop count must be positive")
        if loop.count > MAX_LOOP_COUNT:
            return ExpressionValidation(False, f"Loop count exceeds maximum ({MAX_LOOP_COUNT})")
    elif loop.type is LoopType.WHILE:
        return validate_condition_expression(loop.condition)
    return ExpressionValidation(True)


def validate_variable_expression(expression: str) -> ExpressionValidation:
    parsed = parse_variable_expression(expression)
    if not parsed.success:
        return ExpressionValidation(False, parsed.error)
    return ExpressionValidation(True)


# ---------------------------------------------------------------------------
# Built-in rules
# ---------------------------------------------------------------------------


def _referenced_names(step: AdaptiveStep) -> Iterable[str]:
    texts = [step.description]
    if isinstance(step, ConditionStep):
        texts.append(step.condition.expression)
    elif isinstance(step, LoopStep):
        texts.extend([step.loop.condition or "", step.loop.collection or ""])
    elif isinstance(step, ActionStep) and step.action is not None:
        texts.extend([step.action.target, step.action.value or ""])
    elif isinstance(step, VariableStep) and isinstance(step.variable.value, str):
        texts.append(step.variable.value)
    for text in texts:
        for match in VARIABLE_REFERENCE.finditer(text or ""):
            yield match.group(1)


def _references_declared(ctx: ValidationContext) -> bool:
    return all(name in ctx.declared for name in _referenced_names(ctx.step))


def _loop_of(ctx: ValidationContext, loop_type: Optional[LoopType] = None):
    if not isinstance(ctx.step, LoopStep):
        return None
    if loop_type is not None and ctx.step.loop.type is not loop_type:
        return None
    return ctx.step.loop


def _condition_of(ctx: ValidationContext):
    return ctx.step.condition if isinstance(ctx.step, ConditionStep) else None


def _while_condition_balanced(ctx: ValidationContext) -> bool:
    loop = _loop_of(ctx, LoopType.WHILE)
    return loop is None or not loop.condition or has_balanced_parentheses(loop.condition)


def _condition_balanced(ctx: ValidationContext) -> bool:
    condition = _condition_of(ctx)
    return condition is None or has_balanced_parentheses(condition.expression)


def _count_positive(ctx: ValidationContext) -> bool:
    loop = _loop_of(ctx, LoopType.COUNT)
    return loop is None or loop.count is None or loop.count > 0


def _count_within_limit(ctx: ValidationContext) -> bool:
    loop = _loop_of(ctx, LoopType.COUNT)
    return loop is None or loop.count is None or loop.count <= ctx.test_case.config.max_loop_iterations


def _collection_not_selector(ctx: ValidationContext) -> bool:
    loop = _loop_of(ctx, LoopType.FOR_EACH)
    return loop is None or not loop.collection or not looks_like_selector(loop.collection)


BUILT_IN_RULES: List[ValidationRule] = [
    # Test case structure
    ValidationRule(
        name="has-name",
        check=lambda ctx: bool(ctx.test_case.name.strip()),
        message="Test case must have a name",
        scope=RuleScope.CASE,
    ),
    ValidationRule(
        name="has-steps",
        check=lambda ctx: len(ctx.test_case.steps) > 0,
        message="Test case must have at least one step",
        scope=RuleScope.CASE,
    ),
    ValidationRule(
        name="max-iterations",
        check=lambda ctx: ctx.test_case.config.max_loop_iterations <= MAX_CONFIGURED_ITERATIONS,
        message="maxLoopIterations is very high",
        severity=ValidationSeverity.WARNING,
        issue_type=IssueType.PERFORMANCE,
        suggestion="Consider reducing maxLoopIterations to 50 or less",
        scope=RuleScope.CASE,
    ),
    # Conditions
    ValidationRule(
        name="condition-has-expression",
        check=lambda ctx: _condition_of(ctx) is None or bool(_condition_of(ctx).expression.strip()),
        message="Condition must have an expression",
    ),
    ValidationRule(
        name="condition-balanced-parentheses",
        check=_condition_balanced,
        message="Condition expression has unbalanced parentheses",
        issue_type=IssueType.SYNTAX,
    ),
    ValidationRule(
        name="condition-has-then",
        check=lambda ctx: _condition_of(ctx) is None or len(_condition_of(ctx).then_steps) > 0,
        message='Condition must have at least one "then" step',
    ),
    # Loops
    ValidationRule(
        name="loop-has-body",
        check=lambda ctx: _loop_of(ctx) is None or len(_loop_of(ctx).body) > 0,
        message="Loop must have at least one step in body",
    ),
    ValidationRule(
        name="count-positive",
        check=_count_positive,
        message="Loop count must be positive",
        issue_type=IssueType.LIMIT,
    ),
    ValidationRule(
        name="count-within-limit",
        check=_count_within_limit,
        message="Loop count exceeds maxLoopIterations and will be capped",
        severity=ValidationSeverity.WARNING,
        issue_type=IssueType.PERFORMANCE,
        suggestion="Lower the loop count or raise maxLoopIterations",
    ),
    ValidationRule(
        name="while-has-condition",
        check=lambda ctx: _loop_of(ctx, LoopType.WHILE) is None
        or bool((_loop_of(ctx, LoopType.WHILE).condition or "").strip()),
        message="While loop must have a condition",
    ),
    ValidationRule(
        name="while-balanced-parentheses",
        check=_while_condition_balanced,
        message="While condition has unbalanced parentheses",
        issue_type=IssueType.SYNTAX,
    ),
    ValidationRule(
        name="foreach-has-collection",
        check=lambda ctx: _loop_of(ctx, LoopType.FOR_EACH) is None
        or bool((_loop_of(ctx, LoopType.FOR_EACH).collection or "").strip()),
        message="ForEach loop must have a collection",
    ),
    ValidationRule(
        name="foreach-collection-not-selector",
        check=_collection_not_selector,
        message="ForEach over page elements is not supported",
        suggestion="Extract the items into a variable and loop over the variable",
    ),
    ValidationRule(
        name="max-loop-nesting",
        check=lambda ctx: _loop_of(ctx) is None or ctx.loop_depth <= MAX_NESTED_LOOPS,
        message="Multiple nested loops detected",
        severity=ValidationSeverity.WARNING,
        issue_type=IssueType.COMPLEXITY,
        suggestion="Consider flattening nested loops",
    ),
    # Variables
    ValidationRule(
        name="variable-has-name",
        check=lambda ctx: not isinstance(ctx.step, VariableStep) or bool(ctx.step.variable.name.strip()),
        message="Variable operation must have a name",
    ),
    ValidationRule(
        name="variable-declared-before-use",
        check=_references_declared,
        message="Variable used before declaration",
        severity=ValidationSeverity.WARNING,
        issue_type=IssueType.REFERENCE,
        suggestion="Declare variables before using them with ${varName}",
    ),
    # Depth
    ValidationRule(
        name="max-depth",
        check=lambda ctx: ctx.depth <= ctx.test_case.config.max_nested_depth,
        message="Nesting depth exceeds configured limit",
        severity=ValidationSeverity.WARNING,
        issue_type=IssueType.COMPLEXITY,
        suggestion="Reduce nesting or increase maxNestedDepth",
    ),
]

DECLARING_OPERATIONS = (
    VariableOperationType.SET,
    VariableOperationType.INCREMENT,
    VariableOperationType.EXTRACT,
)


class SyntaxValidator:
    """Walks a test case without executing it and reports rule violations."""

    def __init__(self, rules: Optional[List[ValidationRule]] = None) -> None:
        # Per-instance copies so toggling ``enabled`` stays local
        source = rules if rules is not None else BUILT_IN_RULES
        self.rules: List[ValidationRule] = [replace(rule) for rule in source]

    def add_rule(self, rule: ValidationRule) -> None:
        self.rules.append(rule)

    def remove_rule(self, name: str) -> bool:
        before = len(self.rules)
        self.rules = [rule for rule in self.rules if rule.name != name]
        return len(self.rules) < before

    def validate(self, test_case: AdaptiveTestCase) -> ValidationReport:
        """
        Validate a test case.

        Args:
            test_case: Test case to check

        Returns:
            ValidationReport; ``valid`` is False iff any error was found
        """
        report = ValidationReport(valid=True)
        context = ValidationContext(test_case=test_case, declared=set(test_case.variables))

        for rule in self._active(RuleScope.CASE):
            self._apply(rule, context, report)

        self._validate_steps(test_case.steps, context, report)
        report.valid = not report.errors

        logger.debug(
            f"Validated test case {test_case.id}: "
            f"{len(report.errors)} error(s), {len(report.warnings)} warning(s)",
            extra={"test_id": test_case.id},
        )
        return report

    def _active(self, scope: RuleScope) -> List[ValidationRule]:
        return [rule for rule in self.rules if rule.enabled and rule.scope is scope]

    def _validate_steps(
        self, steps: Iterable[AdaptiveStep], parent: ValidationContext, report: ValidationReport
    ) -> None:
        for step in steps:
            is_loop = isinstance(step, LoopStep)
            context = ValidationContext(
                test_case=parent.test_case,
                declared=parent.declared,
                step=step,
                parent=parent.step,
                depth=parent.depth + 1,
                loop_depth=parent.loop_depth + (1 if is_loop else 0),
                path=parent.path + [step.id],
            )

            for rule in self._active(RuleScope.STEP):
                self._apply(rule, context, report)

            # Declared only after the step's own references are checked
            if isinstance(step, VariableStep) and step.variable.name and (
                step.variable.operation in DECLARING_OPERATIONS
            ):
                parent.declared.add(step.variable.name)

            if isinstance(step, ConditionStep):
                self._validate_steps(step.condition.then_steps, context, report)
                self._validate_steps(step.condition.else_steps, context, report)
            elif is_loop:
                self._validate_loop_body(step, context, report)

    def _validate_loop_body(
        self, step: LoopStep, context: ValidationContext, report: ValidationReport
    ) -> None:
        item_var = step.loop.item_var if step.loop.type is LoopType.FOR_EACH else None
        scoped = item_var is not None and item_var not in context.declared
        if scoped:
            context.declared.add(item_var)
        try:
            self._validate_steps(step.loop.body, context, report)
        finally:
            if scoped:
                context.declared.discard(item_var)

    @staticmethod
    def _apply(rule: ValidationRule, context: ValidationContext, report: ValidationReport) -> None:
        if rule.check(context):
            return
        step = context.step
        issue = ValidationIssue(
            rule=rule.name,
            message=rule.message,
            issue_type=rule.issue_type,
            step_id=step.id if step is not None else None,
            line_number=step.line_number if step is not None else None,
            suggestion=rule.suggestion,
        )
        if rule.severity is ValidationSeverity.ERROR:
            report.errors.append(issue)
        else:
            report.warnings.append(issue)


def get_syntax_suggestions(test_case: AdaptiveTestCase, report: ValidationReport) -> List[str]:
    """Deduplicated, ordered suggestions derived from warnings and case size."""
    suggestions: List[str] = []

    for warning in report.warnings:
        if warning.suggestion:
            suggestions.append(warning.suggestion)
        if warning.issue_type is IssueType.COMPLEXITY and "depth" in warning.message:
            suggestions.append("Consider extracting nested conditions into separate test cases")
        if warning.issue_type is IssueType.PERFORMANCE and "loop" in warning.message.lower():
            suggestions.append("Add guard conditions to loops so they cannot spin until the cap")

    if len(test_case.steps) > LARGE_TEST_CASE_STEPS:
        suggestions.append("Consider splitting large test cases into smaller, focused tests")

    return list(dict.fromkeys(suggestions))


def format_validation_result(report: ValidationReport, include_suggestions: bool = True) -> str:
    """Human-readable summary of a validation report."""
    lines: List[str] = []

    if report.valid:
        lines.append("✅ Validation passed")
    else:
        lines.append(f"❌ Validation failed with {len(report.errors)} error(s)")

    for title, issues in (("Errors", report.errors), ("Warnings", report.warnings)):
        if not issues:
            continue
        lines.append(f"\n{title}:")
        for issue in issues:
            location = f" (line {issue.line_number})" if issue.line_number else ""
            lines.append(f"  - {issue.message}{location}")
            if include_suggestions and issue.suggestion:
                lines.append(f"    suggestion: {issue.suggestion}")

    return "\n".join(lines)


def validate_syntax(test_case: AdaptiveTestCase) -> ValidationReport:
    return SyntaxValidator().validate(test_case)
