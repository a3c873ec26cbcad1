"""
Tests for condition evaluation.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from adaptive_flow.core.types import (
    ComparisonOperator,
    CompoundCondition,
    ElementCheck,
    ElementCondition,
    ExecutionContext,
    LogicalOperator,
    PageState,
    StateCondition,
    VariableCondition,
)
from adaptive_flow.engine.condition_engine import ConditionEngine


def var(name, operator, value):
    return VariableCondition(name=name, operator=ComparisonOperator(operator), value=value)


TRUE = var("t", "==", True)
FALSE = var("t", "==", False)


@pytest.fixture
def truthy_context():
    return ExecutionContext(variables={"t": True, "count": 5, "name": "Bob"})


class TestVariableConditions:
    """Variable conditions never touch the agent."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("count > 3", True),
            ("count <= 4", False),
            ("count == 5", True),
            ("count != 5", False),
            ('name == "Bob"', True),
            ("missing == null", True),
            ("missing > 1", False),
            ('name > 1', False),
        ],
    )
    async def test_comparisons(self, settings, truthy_context, expression, expected):
        engine = ConditionEngine(settings=settings)
        result = await engine.evaluate(expression, truthy_context)
        assert result.success
        assert result.value is expected
        assert result.error is None

    @pytest.mark.asyncio
    async def test_ordering_requires_numbers(self, settings):
        engine = ConditionEngine(settings=settings)
        context = ExecutionContext(variables={"flag": True})
        result = await engine.evaluate(var("flag", ">", 0), context)
        assert result.value is False


class TestElementConditions:
    """Element checks against the located element descriptor."""

    @pytest.mark.asyncio
    async def test_exists_and_not_found(self, settings, make_agent, make_element, context):
        agent = make_agent({"Login": make_element()})
        engine = ConditionEngine(agent, settings=settings)

        found = await engine.evaluate('element "Login" is exists', context)
        missing = await engine.evaluate('element "Logout" is exists', context)

        assert found.value is True
        assert missing.value is False
        assert missing.error is None

    @pytest.mark.asyncio
    async def test_visible_needs_non_empty_box(self, settings, make_agent, make_element, context):
        agent = make_agent({"shown": make_element(), "hidden": make_element(width=0)})
        engine = ConditionEngine(agent, settings=settings)

        assert (await engine.evaluate('element "shown" is visible', context)).value is True
        assert (await engine.evaluate('element "hidden" is visible', context)).value is False

    @pytest.mark.asyncio
    async def test_enabled_and_selected(self, settings, make_agent, make_element, context):
        agent = make_agent(
            {
                "submit": make_element(disabled=True),
                "terms": make_element(checked=True),
                "plain": make_element(),
            }
        )
        engine = ConditionEngine(agent, settings=settings)

        assert (await engine.evaluate('element "submit" is enabled', context)).value is False
        assert (await engine.evaluate('element "plain" is enabled', context)).value is True
        assert (await engine.evaluate('element "terms" is selected', context)).value is True
        assert (await engine.evaluate('element "plain" is selected', context)).value is False

    @pytest.mark.asyncio
    async def test_locate_is_not_deep_think(self, settings, make_agent, make_element, context):
        agent = make_agent({"Login": make_element()})
        engine = ConditionEngine(agent, settings=settings)
        await engine.evaluate('element "Login" is visible', context)
        assert agent.calls == [("Login", False)]


class TestTextConditions:
    """Text comparisons and the text cache."""

    @pytest.mark.asyncio
    async def test_operators(self, settings, make_agent, make_element, context):
        agent = make_agent({"#msg": make_element(text="Welcome back, Bob")})
        engine = ConditionEngine(agent, settings=settings)

        assert (await engine.evaluate('text "#msg" contains "Welcome"', context)).value is True
        assert (await engine.evaluate('text "#msg" equals "Welcome"', context)).value is False
        assert (await engine.evaluate('text "#msg" matches "^welcome"', context)).value is True

    @pytest.mark.asyncio
    async def test_invalid_regex_is_false(self, settings, make_agent, make_element, context):
        agent = make_agent({"#msg": make_element(text="abc")})
        engine = ConditionEngine(agent, settings=settings)
        result = await engine.evaluate('text "#msg" matches "("', context)
        assert result.success
        assert result.value is False

    @pytest.mark.asyncio
    async def test_cached_text_wins(self, settings, make_agent):
        agent = make_agent()
        engine = ConditionEngine(agent, settings=settings)
        context = ExecutionContext(variables={"__text_#msg": "Cached hello"})

        result = await engine.evaluate('text "#msg" contains "hello"', context)

        assert result.value is True
        assert agent.calls == []

    @pytest.mark.asyncio
    async def test_element_without_text_is_false(self, settings, make_agent, make_element, context):
        agent = make_agent({"#msg": make_element()})
        engine = ConditionEngine(agent, settings=settings)
        assert (await engine.evaluate('text "#msg" contains ""', context)).value is False


class TestFallback:
    """Undecidable conditions resolve to the fallback value."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fallback", [True, False])
    async def test_no_agent_uses_fallback(self, settings, context, fallback):
        engine = ConditionEngine(settings=settings, fallback=fallback)

        result = await engine.evaluate('element "Login" is visible', context)

        assert result.success
        assert result.value is fallback
        assert "No locator agent" in result.error

    @pytest.mark.asyncio
    async def test_fallback_is_deterministic(self, settings, context):
        engine = ConditionEngine(settings=settings)
        first = await engine.evaluate("state is logged_in", context)
        second = await engine.evaluate("state is logged_in", context)
        assert first.value == second.value is False

    @pytest.mark.asyncio
    async def test_call_fallback_overrides_default(self, settings, context):
        engine = ConditionEngine(settings=settings, fallback=False)
        result = await engine.evaluate('element "x" is visible', context, fallback=True)
        assert result.value is True

    @pytest.mark.asyncio
    async def test_timeout(self, settings, make_agent, make_element, context):
        agent = make_agent({"slow": make_element()}, delay=0.5)
        engine = ConditionEngine(agent, settings=settings, timeout=20, fallback=True)

        result = await engine.evaluate('element "slow" is exists', context)

        assert result.success
        assert result.value is True
        assert "timed out" in result.error

    @pytest.mark.asyncio
    async def test_agent_error(self, settings, make_agent, context):
        agent = make_agent({"broken": RuntimeError("browser crashed")})
        engine = ConditionEngine(agent, settings=settings)

        result = await engine.evaluate('element "broken" is visible', context)

        assert result.success
        assert result.value is False
        assert "browser crashed" in result.error

    @pytest.mark.asyncio
    async def test_parse_failure(self, settings, context):
        engine = ConditionEngine(settings=settings, fallback=True)
        result = await engine.evaluate("   ", context)
        assert not result.success
        assert result.value is True
        assert result.error == "Empty expression"

    @pytest.mark.asyncio
    async def test_negated_fallback(self, settings, context):
        engine = ConditionEngine(settings=settings, fallback=False)
        result = await engine.evaluate('element "x" is not visible', context)
        assert result.value is True


class TestCompoundConditions:
    """Logical combinations."""

    @pytest.mark.asyncio
    async def test_and_or_not(self, settings, truthy_context):
        engine = ConditionEngine(settings=settings)

        async def value(operator, *operands):
            expression = CompoundCondition(operator=operator, operands=operands)
            return (await engine.evaluate(expression, truthy_context)).value

        assert await value(LogicalOperator.AND, TRUE, TRUE) is True
        assert await value(LogicalOperator.AND, TRUE, FALSE) is False
        assert await value(LogicalOperator.OR, FALSE, TRUE) is True
        assert await value(LogicalOperator.OR, FALSE, FALSE) is False
        assert await value(LogicalOperator.NOT, FALSE) is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fallback", [True, False])
    async def test_malformed_not_uses_fallback(self, settings, truthy_context, fallback):
        engine = ConditionEngine(settings=settings, fallback=fallback)
        expression = CompoundCondition(operator=LogicalOperator.NOT, operands=(TRUE, FALSE))

        result = await engine.evaluate(expression, truthy_context)

        assert result.success
        assert result.value is fallback
        assert "Malformed" in result.error

    @pytest.mark.asyncio
    async def test_empty_and_uses_fallback(self, settings, truthy_context):
        engine = ConditionEngine(settings=settings, fallback=True)
        result = await engine.evaluate(
            CompoundCondition(operator=LogicalOperator.AND), truthy_context
        )
        assert result.value is True

    @pytest.mark.asyncio
    async def test_mixed_resolved_and_unresolved(self, settings, truthy_context):
        engine = ConditionEngine(settings=settings, fallback=False)
        result = await engine.evaluate('count > 3 or element "x" is visible', truthy_context)
        assert result.value is True
        assert result.error is not None


class TestStateConditions:
    """State conditions delegate to the detector."""

    @pytest.mark.asyncio
    async def test_delegates_to_detector(self, settings, make_agent, context):
        detector = MagicMock()
        detector.detect = AsyncMock(return_value=True)
        engine = ConditionEngine(make_agent(), state_detector=detector, settings=settings)

        result = await engine.evaluate('state is custom "cart open"', context)

        assert result.value is True
        detector.detect.assert_awaited_once_with(
            PageState.CUSTOM, timeout=settings.condition_evaluation_timeout,
            custom_description="cart open",
        )

    @pytest.mark.asyncio
    async def test_no_agent_skips_detector(self, settings, context):
        detector = MagicMock()
        detector.detect = AsyncMock(return_value=True)
        engine = ConditionEngine(state_detector=detector, settings=settings)

        result = await engine.evaluate(StateCondition(state=PageState.LOADING), context)

        assert result.value is False
        detector.detect.assert_not_awaited()


class TestBatch:
    @pytest.mark.asyncio
    async def test_results_keep_input_order(self, settings, truthy_context):
        engine = ConditionEngine(settings=settings)
        results = await engine.evaluate_batch(
            ["count > 3", "count > 10", ElementCondition(target="x", check=ElementCheck.EXISTS)],
            truthy_context,
        )
        assert [r.value for r in results] == [True, False, False]

    def test_create_context_copies_variables(self):
        initial = {"a": 1}
        context = ConditionEngine.create_context(initial)
        context.variables["a"] = 2
        assert initial == {"a": 1}
