"""
Condition, loop and variable-operation mini-language.

Two front ends produce the same ``ConditionExpression`` AST:

* ``parse_condition_expression`` - strict lexer plus recursive-descent parser.
* ``parse_natural_language_condition`` - regex heuristics over free text that
  never fail on non-empty input (the last resort is an element-exists check
  on the whole text).

``format_condition_expression`` is the left inverse of the strict parser.
"""

import json
import re
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Tuple

from adaptive_flow.core.types import (
    CompoundCondition,
    ComparisonOperator,
    ConditionExpression,
    ElementCheck,
    ElementCondition,
    LogicalOperator,
    LoopConfig,
    LoopType,
    PageState,
    ParseResult,
    StateCondition,
    TextCondition,
    TextOperator,
    VariableCondition,
    VariableOperation,
    VariableOperationType,
)
from adaptive_flow.error_handling.exceptions import ExpressionParseError
from adaptive_flow.monitoring.logger import get_logger

logger = get_logger(__name__)


class TokenType(Enum):
    """Lexical categories of the condition language."""

    ELEMENT = auto()
    TEXT = auto()
    STATE = auto()
    IDENT = auto()
    OPERATOR = auto()
    TEXT_OPERATOR = auto()
    CHECK = auto()
    PAGE_STATE = auto()
    NUMBER = auto()
    STRING = auto()
    LITERAL = auto()
    LPAREN = auto()
    RPAREN = auto()
    COMMA = auto()
    AND = auto()
    OR = auto()
    NOT = auto()
    IS = auto()
    IS_NOT = auto()
    EOF = auto()


@dataclass(frozen=True)
class Token:
    type: TokenType
    value: Any
    position: int


@dataclass
class KeywordTable:
    """Maps surface words (any language) to token types and canonical values."""

    entries: Dict[str, Tuple[TokenType, Any]] = field(default_factory=dict)

    def lookup(self, word: str) -> Optional[Tuple[TokenType, Any]]:
        return self.entries.get(word.lower())

    def longest_prefix(self, text: str, pos: int) -> Optional[str]:
        """Longest keyword starting at ``pos``; used for unspaced CJK input."""
        best = None
        for word in self.entries:
            if text.startswith(word, pos) and (best is None or len(word) > len(best)):
                best = word
        return best

    def extend(self, extra: Dict[str, Tuple[TokenType, Any]]) -> "KeywordTable":
        merged = dict(self.entries)
        merged.update({word.lower(): value for word, value in extra.items()})
        return KeywordTable(merged)


ENGLISH_KEYWORDS: Dict[str, Tuple[TokenType, Any]] = {
    "element": (TokenType.ELEMENT, "element"),
    "text": (TokenType.TEXT, "text"),
    "state": (TokenType.STATE, "state"),
    "and": (TokenType.AND, LogicalOperator.AND),
    "or": (TokenType.OR, LogicalOperator.OR),
    "not": (TokenType.NOT, LogicalOperator.NOT),
    "is": (TokenType.IS, "is"),
    "contains": (TokenType.TEXT_OPERATOR, TextOperator.CONTAINS),
    "matches": (TokenType.TEXT_OPERATOR, TextOperator.MATCHES),
    "equals": (TokenType.TEXT_OPERATOR, TextOperator.EQUALS),
    "exists": (TokenType.CHECK, ElementCheck.EXISTS),
    "visible": (TokenType.CHECK, ElementCheck.VISIBLE),
    "enabled": (TokenType.CHECK, ElementCheck.ENABLED),
    "selected": (TokenType.CHECK, ElementCheck.SELECTED),
    "logged_in": (TokenType.PAGE_STATE, PageState.LOGGED_IN),
    "loading": (TokenType.PAGE_STATE, PageState.LOADING),
    "error": (TokenType.PAGE_STATE, PageState.ERROR),
    "empty": (TokenType.PAGE_STATE, PageState.EMPTY),
    "custom": (TokenType.PAGE_STATE, PageState.CUSTOM),
    "true": (TokenType.LITERAL, True),
    "false": (TokenType.LITERAL, False),
    "null": (TokenType.LITERAL, None),
}

CHINESE_KEYWORDS: Dict[str, Tuple[TokenType, Any]] = {
    "元素": (TokenType.ELEMENT, "element"),
    "文本": (TokenType.TEXT, "text"),
    "状态": (TokenType.STATE, "state"),
    "并且": (TokenType.AND, LogicalOperator.AND),
    "且": (TokenType.AND, LogicalOperator.AND),
    "或者": (TokenType.OR, LogicalOperator.OR),
    "或": (TokenType.OR, LogicalOperator.OR),
    "非": (TokenType.NOT, LogicalOperator.NOT),
    "是": (TokenType.IS, "is"),
    "不是": (TokenType.IS_NOT, "is_not"),
    "包含": (TokenType.TEXT_OPERATOR, TextOperator.CONTAINS),
    "匹配": (TokenType.TEXT_OPERATOR, TextOperator.MATCHES),
    "等于": (TokenType.TEXT_OPERATOR, TextOperator.EQUALS),
    "存在": (TokenType.CHECK, ElementCheck.EXISTS),
    "可见": (TokenType.CHECK, ElementCheck.VISIBLE),
    "可用": (TokenType.CHECK, ElementCheck.ENABLED),
    "选中": (TokenType.CHECK, ElementCheck.SELECTED),
    "已登录": (TokenType.PAGE_STATE, PageState.LOGGED_IN),
    "加载中": (TokenType.PAGE_STATE, PageState.LOADING),
    "错误": (TokenType.PAGE_STATE, PageState.ERROR),
    "空": (TokenType.PAGE_STATE, PageState.EMPTY),
    "自定义": (TokenType.PAGE_STATE, PageState.CUSTOM),
}

DEFAULT_KEYWORDS = KeywordTable({**ENGLISH_KEYWORDS, **CHINESE_KEYWORDS})

# Longest first so ">=" wins over ">"
SYMBOLS: List[Tuple[str, TokenType, Any]] = [
    ("==", TokenType.OPERATOR, ComparisonOperator.EQ),
    ("!=", TokenType.OPERATOR, ComparisonOperator.NE),
    (">=", TokenType.OPERATOR, ComparisonOperator.GE),
    ("<=", TokenType.OPERATOR, ComparisonOperator.LE),
    ("&&", TokenType.AND, LogicalOperator.AND),
    ("||", TokenType.OR, LogicalOperator.OR),
    (">", TokenType.OPERATOR, ComparisonOperator.GT),
    ("<", TokenType.OPERATOR, ComparisonOperator.LT),
    ("!", TokenType.NOT, LogicalOperator.NOT),
    ("(", TokenType.LPAREN, "("),
    (")", TokenType.RPAREN, ")"),
    (",", TokenType.COMMA, ","),
]

ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f"}


def _is_ascii_word_char(char: str) -> bool:
    return char.isascii() and (char.isalnum() or char == "_")


class Lexer:
    """Turns expression text into a list of tokens ending with EOF."""

    def __init__(self, text: str, keywords: Optional[KeywordTable] = None):
        self.text = text
        self.keywords = keywords or DEFAULT_KEYWORDS
        self.pos = 0

    def _peek(self, offset: int = 0) -> str:
        index = self.pos + offset
        return self.text[index] if index < len(self.text) else ""

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []

        while self.pos < len(self.text):
            char = self._peek()

            if char.isspace():
                self.pos += 1
                continue

            start = self.pos

            if char in ('"', "'"):
                tokens.append(Token(TokenType.STRING, self._read_string(char), start))
                continue

            if char.isdigit() or (char == "-" and self._peek(1).isdigit()):
                tokens.append(Token(TokenType.NUMBER, self._read_number(), start))
                continue

            if char == "$" and self._peek(1) == "{":
                tokens.append(Token(TokenType.IDENT, self._read_reference(), start))
                continue

            symbol = self._match_symbol()
            if symbol:
                text, token_type, value = symbol
                self.pos += len(text)
                tokens.append(Token(token_type, value, start))
                continue

            if _is_ascii_word_char(char):
                tokens.extend(self._read_ascii_word())
                continue

            if char.isalpha():
                tokens.extend(self._read_unicode_word())
                continue

            raise ExpressionParseError(
                f"Unexpected character {char!r}", position=start, expression=self.text
            )

        tokens.append(Token(TokenType.EOF, None, len(self.text)))
        return tokens

    def _match_symbol(self) -> Optional[Tuple[str, TokenType, Any]]:
        for symbol in SYMBOLS:
            if self.text.startswith(symbol[0], self.pos):
                return symbol
        return None

    def _read_string(self, quote: str) -> str:
        start = self.pos
        self.pos += 1
        chars: List[str] = []
        while self.pos < len(self.text):
            char = self.text[self.pos]
            if char == quote:
                self.pos += 1
                return "".join(chars)
            if char == "\\":
                self.pos += 1
                if self.pos >= len(self.text):
                    break
                escaped = self.text[self.pos]
                if escaped == "u" and re.fullmatch(r"[0-9a-fA-F]{4}", self.text[self.pos + 1:self.pos + 5]):
                    chars.append(chr(int(self.text[self.pos + 1:self.pos + 5], 16)))
                    self.pos += 5
                    continue
                chars.append(ESCAPES.get(escaped, escaped))
                self.pos += 1
                continue
            chars.append(char)
            self.pos += 1
        raise ExpressionParseError(
            "Unterminated string literal", position=start, expression=self.text
        )

    def _read_number(self) -> int:
        start = self.pos
        if self._peek() == "-":
            self.pos += 1
        while self._peek().isdigit():
            self.pos += 1
        return int(self.text[start:self.pos])

    def _read_reference(self) -> str:
        start = self.pos
        end = self.text.find("}", start)
        name = self.text[start + 2:end] if end != -1 else ""
        if not re.fullmatch(r"\w+", name):
            raise ExpressionParseError(
                "Malformed variable reference", position=start, expression=self.text
            )
        self.pos = end + 1
        return name

    def _read_ascii_word(self) -> List[Token]:
        start = self.pos
        while _is_ascii_word_char(self._peek()):
            self.pos += 1
        word = self.text[start:self.pos]
        return self._word_tokens(word, start)

    def _read_unicode_word(self) -> List[Token]:
        start = self.pos
        keyword = self.keywords.longest_prefix(self.text, self.pos)
        if keyword:
            self.pos += len(keyword)
            return self._word_tokens(keyword, start)

        # Identifier runs until whitespace, a symbol or the next keyword
        while self.pos < len(self.text):
            char = self._peek()
            if not (char.isalnum() or char == "_") or _is_ascii_word_char(char):
                break
            if self.pos > start and self.keywords.longest_prefix(self.text, self.pos):
                break
            self.pos += 1
        return [Token(TokenType.IDENT, self.text[start:self.pos], start)]

    def _word_tokens(self, word: str, start: int) -> List[Token]:
        entry = self.keywords.lookup(word)
        if entry is None:
            return [Token(TokenType.IDENT, word, start)]
        token_type, value = entry
        if token_type is TokenType.IS_NOT:
            return [
                Token(TokenType.IS, "is", start),
                Token(TokenType.NOT, LogicalOperator.NOT, start),
            ]
        return [Token(token_type, value, start)]


class Parser:
    """Recursive-descent parser; precedence from loosest: or, and, not."""

    def __init__(self, tokens: List[Token], text: str = ""):
        self.tokens = tokens
        self.text = text
        self.pos = 0

    def _peek(self) -> Token:
        return self.tokens[self.pos]

    def _advance(self) -> Token:
        token = self.tokens[self.pos]
        if token.type is not TokenType.EOF:
            self.pos += 1
        return token

    def _error(self, message: str, token: Optional[Token] = None) -> ExpressionParseError:
        token = token or self._peek()
        return ExpressionParseError(message, position=token.position, expression=self.text)

    def _expect(self, token_type: TokenType, message: str) -> Token:
        token = self._peek()
        if token.type is not token_type:
            raise self._error(message, token)
        return self._advance()

    def parse(self) -> ConditionExpression:
        if self._peek().type is TokenType.EOF:
            raise self._error("Empty expression")
        expression = self._parse_or()
        if self._peek().type is not TokenType.EOF:
            raise self._error(f"Unexpected token {self._peek().type.name} at end of expression")
        return expression

    def _parse_chain(self, operator_type: TokenType, operator: LogicalOperator, parse_operand) -> ConditionExpression:
        operands = [parse_operand()]
        while self._peek().type is operator_type:
            self._advance()
            operands.append(parse_operand())
        if len(operands) == 1:
            return operands[0]
        return CompoundCondition(operator=operator, operands=tuple(operands))

    def _parse_or(self) -> ConditionExpression:
        return self._parse_chain(TokenType.OR, LogicalOperator.OR, self._parse_and)

    def _parse_and(self) -> ConditionExpression:
        return self._parse_chain(TokenType.AND, LogicalOperator.AND, self._parse_not)

    def _parse_not(self) -> ConditionExpression:
        if self._peek().type is TokenType.NOT:
            self._advance()
            return CompoundCondition(operator=LogicalOperator.NOT, operands=(self._parse_not(),))
        return self._parse_primary()

    def _parse_primary(self) -> ConditionExpression:
        token = self._peek()

        if token.type is TokenType.LPAREN:
            self._advance()
            inner = self._parse_or()
            self._expect(TokenType.RPAREN, "Expected ')'")
            return inner
        if token.type is TokenType.ELEMENT:
            return self._parse_element()
        if token.type is TokenType.TEXT:
            return self._parse_text()
        if token.type is TokenType.STATE:
            return self._parse_state()
        if token.type is TokenType.IDENT:
            return self._parse_variable()

        raise self._error(f"Unexpected token {token.type.name}", token)

    def _parse_negation(self) -> bool:
        self._expect(TokenType.IS, "Expected 'is'")
        if self._peek().type is TokenType.NOT:
            self._advance()
            return True
        return False

    @staticmethod
    def _negate(expression: ConditionExpression, negated: bool) -> ConditionExpression:
        if negated:
            return CompoundCondition(operator=LogicalOperator.NOT, operands=(expression,))
        return expression

    def _parse_element(self) -> ConditionExpression:
        self._advance()
        target = self._expect(TokenType.STRING, "Expected element target (string)")
        negated = self._parse_negation()
        check = self._expect(
            TokenType.CHECK, "Expected element check (exists/visible/enabled/selected)"
        )
        return self._negate(ElementCondition(target=target.value, check=check.value), negated)

    def _parse_text(self) -> ConditionExpression:
        self._advance()
        target = self._expect(TokenType.STRING, "Expected text target (string)")
        operator = self._expect(
            TokenType.TEXT_OPERATOR, "Expected text operator (equals/contains/matches)"
        )
        value = self._expect(TokenType.STRING, "Expected text value (string)")
        return TextCondition(target=target.value, operator=operator.value, value=value.value)

    def _parse_state(self) -> ConditionExpression:
        self._advance()
        negated = self._parse_negation()
        state = self._expect(
            TokenType.PAGE_STATE,
            "Expected page state (logged_in/loading/error/empty/custom)",
        )
        description = None
        if state.value is PageState.CUSTOM and self._peek().type is TokenType.STRING:
            description = self._advance().value
        return self._negate(
            StateCondition(state=state.value, custom_description=description), negated
        )

    def _parse_variable(self) -> ConditionExpression:
        name = self._advance()
        operator = self._expect(TokenType.OPERATOR, "Expected comparison operator")
        value = self._peek()
        if value.type not in (TokenType.NUMBER, TokenType.STRING, TokenType.LITERAL):
            raise self._error("Expected variable value (number, string or literal)", value)
        self._advance()
        return VariableCondition(name=name.value, operator=operator.value, value=value.value)


def parse_condition_expression(
    text: str, keywords: Optional[KeywordTable] = None
) -> ParseResult:
    """
    Parse a condition with the strict grammar.

    Args:
        text: Expression source
        keywords: Keyword table overriding the bilingual default

    Returns:
        ParseResult with the AST, or the error and its character position
    """
    source = (text or "").strip()
    if not source:
        return ParseResult(success=False, error="Empty expression", position=0)
    try:
        tokens = Lexer(source, keywords).tokenize()
        expression = Parser(tokens, source).parse()
    except ExpressionParseError as e:
        return ParseResult(success=False, error=e.message, position=e.position)
    return ParseResult(success=True, result=expression)


# ---------------------------------------------------------------------------
# Natural-language heuristics
# ---------------------------------------------------------------------------

_QUOTED_AFTER = r'\s*["“\']([^"”\']+)["”\']'
_ELEMENT_TARGET = re.compile(r"(?:element|元素)" + _QUOTED_AFTER, re.IGNORECASE)
_TEXT_TARGET = re.compile(r"(?:text|文本)" + _QUOTED_AFTER, re.IGNORECASE)
_TEXT_VALUE = re.compile(
    r'["\'][^"\']+["\']\s*(?:contains|equals|matches|包含|等于|匹配)\s*["\']([^"\']*)["\']',
    re.IGNORECASE,
)
_COMPARISON = re.compile(r"^\$?\{?(\w+)\}?\s*(==|!=|>=|<=|>|<)\s*(.+)$")
_TRAILING_CHECK = re.compile(
    r'^["\']?(.+?)["\']?\s+(?:is\s+)?(exists|visible|enabled|selected)$', re.IGNORECASE
)
_TRAILING_CHECK_ZH = re.compile(r'^["\']?(.+?)["\']?\s*(?:是)?(存在|可见|可用|选中)$')

_CHECK_WORDS: List[Tuple[ElementCheck, Tuple[str, ...]]] = [
    (ElementCheck.EXISTS, ("exists", "存在")),
    (ElementCheck.VISIBLE, ("visible", "可见")),
    (ElementCheck.ENABLED, ("enabled", "可用")),
    (ElementCheck.SELECTED, ("selected", "选中")),
]
_TEXT_OPERATOR_WORDS: List[Tuple[TextOperator, Tuple[str, ...]]] = [
    (TextOperator.EQUALS, ("equals", "等于")),
    (TextOperator.CONTAINS, ("contains", "包含")),
    (TextOperator.MATCHES, ("matches", "匹配")),
]
_STATE_WORDS: List[Tuple[PageState, Tuple[str, ...]]] = [
    (PageState.LOGGED_IN, ("logged_in", "logged in", "已登录")),
    (PageState.LOADING, ("loading", "加载中")),
    (PageState.ERROR, ("error", "错误")),
    (PageState.EMPTY, ("empty", "空")),
]
_CHECK_BY_WORD = {word: check for check, words in _CHECK_WORDS for word in words}


def _last_mentioned(lower_text: str, table, default):
    """Pick the table entry whose word appears last in the text."""
    chosen, chosen_at = default, -1
    for value, words in table:
        for word in words:
            at = lower_text.rfind(word)
            if at > chosen_at:
                chosen, chosen_at = value, at
    return chosen


def coerce_literal(raw: str) -> Any:
    """Turn literal text into int, float, bool, None or an unquoted string."""
    value = raw.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        return value[1:-1]
    lowered = value.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    if lowered == "null":
        return None
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return value


def parse_natural_language_condition(text: str) -> ParseResult:
    """
    Infer a condition from free text.

    Only empty input fails. Anything no heuristic recognises becomes an
    element-exists check on the whole text.
    """
    source = (text or "").strip()
    if not source:
        return ParseResult(success=False, error="Empty expression", position=0, strict=False)
    lower_text = source.lower()

    match = _ELEMENT_TARGET.search(source)
    if match:
        check = _last_mentioned(lower_text, _CHECK_WORDS, ElementCheck.VISIBLE)
        return ParseResult(
            success=True, result=ElementCondition(target=match.group(1), check=check), strict=False
        )

    match = _TEXT_TARGET.search(source)
    if match:
        operator = _last_mentioned(lower_text, _TEXT_OPERATOR_WORDS, TextOperator.CONTAINS)
        value_match = _TEXT_VALUE.search(source)
        return ParseResult(
            success=True,
            result=TextCondition(
                target=match.group(1),
                operator=operator,
                value=value_match.group(1) if value_match else "",
            ),
            strict=False,
        )

    if "state" in lower_text or "状态" in lower_text:
        for state, words in _STATE_WORDS:
            if any(word in lower_text for word in words):
                return ParseResult(success=True, result=StateCondition(state=state), strict=False)

    match = _COMPARISON.match(source)
    if match:
        return ParseResult(
            success=True,
            result=VariableCondition(
                name=match.group(1),
                operator=ComparisonOperator(match.group(2)),
                value=coerce_literal(match.group(3)),
            ),
            strict=False,
        )

    match = _TRAILING_CHECK.match(source) or _TRAILING_CHECK_ZH.match(source)
    if match:
        return ParseResult(
            success=True,
            result=ElementCondition(
                target=match.group(1), check=_CHECK_BY_WORD[match.group(2).lower()]
            ),
            strict=False,
        )

    return ParseResult(
        success=True,
        result=ElementCondition(target=source, check=ElementCheck.EXISTS),
        strict=False,
    )


def parse_expression(text: str, keywords: Optional[KeywordTable] = None) -> ParseResult:
    """Strict grammar first, natural-language heuristics as fallback."""
    result = parse_condition_expression(text, keywords)
    if result.success or not (text or "").strip():
        return result
    logger.debug(
        f"Strict parse failed ({result.error}), falling back to heuristics",
        extra={"details": {"expression": text, "position": result.position}},
    )
    return parse_natural_language_condition(text)


def _quote(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def _format_name(name: str) -> str:
    """Bare name when it lexes back to itself, otherwise a ``${name}`` reference."""
    try:
        tokens = Lexer(name).tokenize()
    except ExpressionParseError:
        tokens = []
    if len(tokens) == 2 and tokens[0].type is TokenType.IDENT and tokens[0].value == name:
        return name
    return f"${{{name}}}"


def format_condition_expression(expression: ConditionExpression) -> str:
    """Render an AST back into strict-grammar text."""
    if isinstance(expression, ElementCondition):
        return f"element {_quote(expression.target)} is {expression.check.value}"
    if isinstance(expression, TextCondition):
        return (
            f"text {_quote(expression.target)} {expression.operator.value} "
            f"{_quote(expression.value)}"
        )
    if isinstance(expression, StateCondition):
        text = f"state is {expression.state.value}"
        if expression.state is PageState.CUSTOM and expression.custom_description is not None:
            text += f" {_quote(expression.custom_description)}"
        return text
    if isinstance(expression, VariableCondition):
        return (
            f"{_format_name(expression.name)} {expression.operator.value} "
            f"{json.dumps(expression.value, ensure_ascii=False)}"
        )
    if isinstance(expression, CompoundCondition):
        if expression.operator is LogicalOperator.NOT:
            inner = expression.operands[0] if expression.operands else None
            return f"NOT {format_condition_expression(inner)}" if inner else "NOT ()"
        joiner = f" {expression.operator.value.upper()} "
        return "(" + joiner.join(format_condition_expression(o) for o in expression.operands) + ")"
    raise TypeError(f"Unknown condition expression: {type(expression).__name__}")


# ---------------------------------------------------------------------------
# Loop and variable-operation descriptors
# ---------------------------------------------------------------------------

_REPEAT = re.compile(r"^repeat\s+(-?\d+)\s+times?$", re.IGNORECASE)
_WHILE = re.compile(r"^while\s+(.+)$", re.IGNORECASE)
_FOR_EACH = re.compile(
    r'^for\s*each\s+(?:"([^"]+)"|\'([^\']+)\'|(\S+))\s+as\s+(\w+)$', re.IGNORECASE
)
_SET = re.compile(r"^set\s+(\w+)\s*=\s*(.+)$", re.IGNORECASE)
_EXTRACT = re.compile(r'^extract\s+(\w+)\s+from\s+(?:"(.+)"|(\S+))$', re.IGNORECASE)
_INCREMENT = re.compile(r"^increment\s+(\w+)(?:\s+by\s+(-?\d+(?:\.\d+)?))?$", re.IGNORECASE)
_GET = re.compile(r"^get\s+(\w+)$", re.IGNORECASE)

WHILE_MAX_ITERATIONS = 50
DEFAULT_LOOP_TIMEOUT = 30000
COUNT_HEADROOM = 10


def parse_loop_expression(text: str) -> ParseResult:
    """
    Parse a loop header into a ``LoopConfig`` with an empty body.

    Accepted forms are ``repeat N times``, ``while CONDITION`` and
    ``forEach COLLECTION as NAME``. Range checks on N are left to the
    syntax validator.
    """
    source = (text or "").strip()
    if not source:
        return ParseResult(success=False, error="Empty loop expression", position=0)

    match = _REPEAT.match(source)
    if match:
        count = int(match.group(1))
        return ParseResult(
            success=True,
            result=LoopConfig(
                type=LoopType.COUNT,
                count=count,
                max_iterations=max(count, 0) + COUNT_HEADROOM,
            ),
        )

    match = _WHILE.match(source)
    if match:
        return ParseResult(
            success=True,
            result=LoopConfig(
                type=LoopType.WHILE,
                condition=match.group(1).strip(),
                max_iterations=WHILE_MAX_ITERATIONS,
                timeout=DEFAULT_LOOP_TIMEOUT,
            ),
        )

    match = _FOR_EACH.match(source)
    if match:
        collection = match.group(1) or match.group(2) or match.group(3)
        return ParseResult(
            success=True,
            result=LoopConfig(
                type=LoopType.FOR_EACH,
                collection=collection,
                item_var=match.group(4),
                max_iterations=WHILE_MAX_ITERATIONS,
                timeout=DEFAULT_LOOP_TIMEOUT,
            ),
        )

    return ParseResult(success=False, error="Invalid loop syntax", position=0)


def parse_variable_expression(text: str) -> ParseResult:
    """Parse ``set x = v``, ``get x``, ``increment x [by n]`` or ``extract x from SRC``."""
    source = (text or "").strip()
    if not source:
        return ParseResult(success=False, error="Empty variable expression", position=0)

    match = _SET.match(source)
    if match:
        return ParseResult(
            success=True,
            result=VariableOperation(
                operation=VariableOperationType.SET,
                name=match.group(1),
                value=coerce_literal(match.group(2)),
            ),
        )

    match = _EXTRACT.match(source)
    if match:
        return ParseResult(
            success=True,
            result=VariableOperation(
                operation=VariableOperationType.EXTRACT,
                name=match.group(1),
                source=match.group(2) or match.group(3),
            ),
        )

    match = _INCREMENT.match(source)
    if match:
        amount = coerce_literal(match.group(2)) if match.group(2) else None
        return ParseResult(
            success=True,
            result=VariableOperation(
                operation=VariableOperationType.INCREMENT,
                name=match.group(1),
                value=amount,
            ),
        )

    match = _GET.match(source)
    if match:
        return ParseResult(
            success=True,
            result=VariableOperation(operation=VariableOperationType.GET, name=match.group(1)),
        )

    return ParseResult(success=False, error="Invalid variable syntax", position=0)
