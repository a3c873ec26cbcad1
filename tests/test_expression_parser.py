"""
Tests for the condition, loop and variable expression parsers.
"""

import pytest

from adaptive_flow.core.types import (
    ComparisonOperator,
    CompoundCondition,
    ElementCheck,
    ElementCondition,
    LogicalOperator,
    LoopType,
    PageState,
    StateCondition,
    TextCondition,
    TextOperator,
    VariableCondition,
    VariableOperationType,
)
from adaptive_flow.engine.expression_parser import (
    DEFAULT_KEYWORDS,
    Lexer,
    TokenType,
    coerce_literal,
    format_condition_expression,
    parse_condition_expression,
    parse_expression,
    parse_loop_expression,
    parse_natural_language_condition,
    parse_variable_expression,
)
from adaptive_flow.error_handling import ExpressionParseError


def parse(text):
    result = parse_condition_expression(text)
    assert result.success, result.error
    return result.result


class TestLexer:
    """Tests for tokenization."""

    def test_symbols_prefer_longest_match(self):
        tokens = Lexer("a >= 1").tokenize()
        assert [t.type for t in tokens] == [
            TokenType.IDENT,
            TokenType.OPERATOR,
            TokenType.NUMBER,
            TokenType.EOF,
        ]
        assert tokens[1].value is ComparisonOperator.GE

    def test_variable_reference_becomes_identifier(self):
        tokens = Lexer("${retry_count} != 0").tokenize()
        assert tokens[0].type is TokenType.IDENT
        assert tokens[0].value == "retry_count"

    def test_string_escapes(self):
        tokens = Lexer(r'"say \"hi\"\n你"').tokenize()
        assert tokens[0].value == 'say "hi"\n你'

    def test_negative_number(self):
        tokens = Lexer("delta > -5").tokenize()
        assert tokens[2].value == -5

    def test_unspaced_chinese_keywords(self):
        tokens = Lexer('元素"登录"是可见').tokenize()
        assert [t.type for t in tokens] == [
            TokenType.ELEMENT,
            TokenType.STRING,
            TokenType.IS,
            TokenType.CHECK,
            TokenType.EOF,
        ]

    def test_is_not_expands_to_two_tokens(self):
        tokens = Lexer('元素 "x" 不是 可见').tokenize()
        assert [t.type for t in tokens][2:4] == [TokenType.IS, TokenType.NOT]

    def test_unterminated_string_reports_position(self):
        with pytest.raises(ExpressionParseError) as exc_info:
            Lexer('element "abc').tokenize()
        assert exc_info.value.position == 8

    def test_unknown_character_reports_position(self):
        with pytest.raises(ExpressionParseError) as exc_info:
            Lexer("a > 1 @").tokenize()
        assert exc_info.value.position == 6


class TestStrictParser:
    """Tests for the strict grammar."""

    def test_element_condition(self):
        assert parse('element "Login" is visible') == ElementCondition(
            target="Login", check=ElementCheck.VISIBLE
        )

    def test_negated_element_condition(self):
        expression = parse('element "Spinner" is not visible')
        assert expression == CompoundCondition(
            operator=LogicalOperator.NOT,
            operands=(ElementCondition(target="Spinner", check=ElementCheck.VISIBLE),),
        )

    def test_text_condition(self):
        assert parse('text "#msg" contains "Welcome"') == TextCondition(
            target="#msg", operator=TextOperator.CONTAINS, value="Welcome"
        )

    def test_state_condition(self):
        assert parse("state is logged_in") == StateCondition(state=PageState.LOGGED_IN)

    def test_custom_state_with_description(self):
        expression = parse('state is custom "cart open"')
        assert expression.state is PageState.CUSTOM
        assert expression.custom_description == "cart open"

    @pytest.mark.parametrize(
        "text,value",
        [
            ("${count} > 3", 3),
            ('name == "Bob"', "Bob"),
            ("flag == true", True),
            ("missing == null", None),
        ],
    )
    def test_variable_condition_values(self, text, value):
        expression = parse(text)
        assert isinstance(expression, VariableCondition)
        assert expression.value == value
        assert type(expression.value) is type(value)

    def test_same_operator_chain_is_flattened(self):
        expression = parse("a > 1 and b > 2 and c > 3")
        assert expression.operator is LogicalOperator.AND
        assert len(expression.operands) == 3

    def test_and_binds_tighter_than_or(self):
        expression = parse("a > 1 or b > 2 and c > 3")
        assert expression.operator is LogicalOperator.OR
        assert expression.operands[0] == VariableCondition(
            name="a", operator=ComparisonOperator.GT, value=1
        )
        assert expression.operands[1].operator is LogicalOperator.AND

    def test_parentheses_override_precedence(self):
        expression = parse("(a > 1 or b > 2) and c > 3")
        assert expression.operator is LogicalOperator.AND
        assert expression.operands[0].operator is LogicalOperator.OR

    def test_symbolic_operators(self):
        assert parse("!(a > 1 && b > 2) || c > 3") == parse("not (a > 1 and b > 2) or c > 3")

    def test_double_negation_is_kept(self):
        expression = parse("not not a > 1")
        assert expression.operator is LogicalOperator.NOT
        assert expression.operands[0].operator is LogicalOperator.NOT

    def test_keywords_are_case_insensitive(self):
        assert parse('ELEMENT "x" IS Visible') == parse('element "x" is visible')

    def test_chinese_expressions(self):
        assert parse('元素 "登录按钮" 是 可见') == parse('element "登录按钮" is visible')
        assert parse("状态 是 已登录") == StateCondition(state=PageState.LOGGED_IN)
        assert parse('文本 "标题" 包含 "欢迎"') == TextCondition(
            target="标题", operator=TextOperator.CONTAINS, value="欢迎"
        )
        assert parse("${a} > 1 并且 ${b} < 2") == parse("a > 1 and b < 2")

    def test_custom_keyword_table(self):
        keywords = DEFAULT_KEYWORDS.extend({"und": (TokenType.AND, LogicalOperator.AND)})
        result = parse_condition_expression("a > 1 und b > 2", keywords)
        assert result.success
        assert result.result.operator is LogicalOperator.AND


class TestStrictParserErrors:
    """Failures are reported as results with a position, never raised."""

    def test_empty_expression(self):
        result = parse_condition_expression("   ")
        assert not result.success
        assert result.error == "Empty expression"
        assert result.position == 0

    def test_missing_check_points_at_end(self):
        text = 'element "x" is'
        result = parse_condition_expression(text)
        assert not result.success
        assert "element check" in result.error
        assert result.position == len(text)

    def test_missing_closing_paren(self):
        result = parse_condition_expression("(a > 1")
        assert not result.success
        assert result.error == "Expected ')'"

    def test_trailing_tokens(self):
        result = parse_condition_expression("a > 1 b")
        assert not result.success
        assert result.position == 6

    def test_lexer_errors_become_results(self):
        result = parse_condition_expression('text "a" contains "b')
        assert not result.success
        assert result.error == "Unterminated string literal"


class TestFormatting:
    """Tests for rendering ASTs back to text."""

    def test_format_leaf_conditions(self):
        assert format_condition_expression(
            ElementCondition(target="Login", check=ElementCheck.VISIBLE)
        ) == 'element "Login" is visible'
        assert format_condition_expression(
            VariableCondition(name="n", operator=ComparisonOperator.LE, value="x")
        ) == 'n <= "x"'
        assert format_condition_expression(StateCondition(state=PageState.EMPTY)) == "state is empty"

    def test_format_compound(self):
        expression = parse("a > 1 and not b == false")
        assert format_condition_expression(expression) == "(a > 1 AND NOT b == false)"

    @pytest.mark.parametrize(
        "text",
        [
            'element "Login" is not enabled',
            'text "#title" matches "^Order \\\\d+"',
            'state is custom "cart \\"open\\""',
            "(a > 1 and b > 2) and c > 3",
            "a > 1 or (b > 2 and (c == \"x\" or not d != null))",
            '元素 "按钮" 是 选中 或者 状态 是 错误',
            "${text} == 1",
            "${error} != 2",
            "${是否} == true",
            "${and} > 0",
            "${textual} < 5",
        ],
    )
    def test_round_trip(self, text):
        expression = parse(text)
        assert parse(format_condition_expression(expression)) == expression

    def test_keyword_variable_names_keep_reference_syntax(self):
        assert format_condition_expression(parse("${text} == 1")) == "${text} == 1"
        assert format_condition_expression(parse("${count} == 1")) == "count == 1"

    def test_nested_chain_is_not_merged_on_round_trip(self):
        expression = parse("(a > 1 and b > 2) and c > 3")
        assert len(expression.operands) == 2
        assert parse(format_condition_expression(expression)) == expression


class TestNaturalLanguage:
    """Tests for the heuristic parser."""

    def test_element_with_check_word(self):
        result = parse_natural_language_condition('the element "Submit" should be enabled')
        assert result.success
        assert not result.strict
        assert result.result == ElementCondition(target="Submit", check=ElementCheck.ENABLED)

    def test_element_defaults_to_visible(self):
        result = parse_natural_language_condition('element "Submit" appears')
        assert result.result.check is ElementCheck.VISIBLE

    def test_state_words(self):
        result = parse_natural_language_condition("page state is loading")
        assert result.result == StateCondition(state=PageState.LOADING)

    def test_trailing_check_without_keyword(self):
        result = parse_natural_language_condition('"Login button" is visible')
        assert result.result == ElementCondition(
            target="Login button", check=ElementCheck.VISIBLE
        )

    def test_chinese_trailing_check(self):
        result = parse_natural_language_condition("登录按钮可见")
        assert result.result == ElementCondition(target="登录按钮", check=ElementCheck.VISIBLE)

    def test_unrecognised_text_becomes_exists_check(self):
        result = parse_natural_language_condition("Some banner")
        assert result.result == ElementCondition(target="Some banner", check=ElementCheck.EXISTS)

    def test_empty_text_fails(self):
        assert not parse_natural_language_condition("").success


class TestParseExpression:
    """Strict first, heuristics second."""

    def test_strict_result_is_marked(self):
        result = parse_expression("a > 1")
        assert result.strict

    def test_float_comparison_falls_back(self):
        result = parse_expression("count >= 2.5")
        assert result.success
        assert not result.strict
        assert result.result == VariableCondition(
            name="count", operator=ComparisonOperator.GE, value=2.5
        )

    def test_text_with_trailing_words_falls_back(self):
        result = parse_expression('text "#title" contains "Hi" somewhere')
        assert result.result == TextCondition(
            target="#title", operator=TextOperator.CONTAINS, value="Hi"
        )

    def test_empty_is_not_rescued(self):
        result = parse_expression("")
        assert not result.success


class TestCoerceLiteral:
    @pytest.mark.parametrize(
        "raw,expected",
        [("42", 42), ("4.5", 4.5), ("true", True), ("FALSE", False), ("null", None),
         ('"quoted"', "quoted"), ("bare", "bare")],
    )
    def test_coerce(self, raw, expected):
        assert coerce_literal(raw) == expected


class TestLoopExpressions:
    """Tests for loop headers."""

    def test_repeat(self):
        result = parse_loop_expression("repeat 5 times")
        assert result.success
        loop = result.result
        assert loop.type is LoopType.COUNT
        assert loop.count == 5
        assert loop.max_iterations == 15

    def test_repeat_singular(self):
        assert parse_loop_expression("Repeat 1 time").result.count == 1

    def test_while(self):
        loop = parse_loop_expression("while ${count} < 3").result
        assert loop.type is LoopType.WHILE
        assert loop.condition == "${count} < 3"
        assert loop.max_iterations == 50
        assert loop.timeout == 30000

    def test_for_each(self):
        loop = parse_loop_expression("forEach items as item").result
        assert loop.type is LoopType.FOR_EACH
        assert loop.collection == "items"
        assert loop.item_var == "item"

        quoted = parse_loop_expression('for each "product list" as product').result
        assert quoted.collection == "product list"
        assert quoted.item_var == "product"

    def test_invalid(self):
        result = parse_loop_expression("loop forever")
        assert not result.success
        assert result.error == "Invalid loop syntax"

    def test_while_condition_parses_strictly(self):
        loop = parse_loop_expression("while x > 3 and (state is loading)").result
        expression = parse(loop.condition)
        assert expression == CompoundCondition(
            operator=LogicalOperator.AND,
            operands=(
                VariableCondition(name="x", operator=ComparisonOperator.GT, value=3),
                StateCondition(state=PageState.LOADING),
            ),
        )


class TestVariableExpressions:
    """Tests for variable operation descriptors."""

    def test_set(self):
        op = parse_variable_expression("set total = 5").result
        assert op.operation is VariableOperationType.SET
        assert op.name == "total"
        assert op.value == 5

        assert parse_variable_expression('set name = "Bob"').result.value == "Bob"

    def test_increment(self):
        assert parse_variable_expression("increment counter").result.value is None
        op = parse_variable_expression("increment counter by 2").result
        assert op.operation is VariableOperationType.INCREMENT
        assert op.value == 2

    def test_extract(self):
        op = parse_variable_expression('extract price from "#price"').result
        assert op.operation is VariableOperationType.EXTRACT
        assert op.source == "#price"

    def test_get(self):
        assert parse_variable_expression("get total").result.operation is VariableOperationType.GET

    def test_invalid(self):
        result = parse_variable_expression("delete total")
        assert not result.success
        assert result.error == "Invalid variable syntax"
