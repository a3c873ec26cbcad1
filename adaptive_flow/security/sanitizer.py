"""
Redaction of credentials in log output and variable maps.

Test cases routinely carry login passwords, tokens and personal data in their
variables; anything the engine logs about variables goes through here first.
"""

import hashlib
import logging
import re
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Mapping, Optional, Pattern

logger = logging.getLogger(__name__)


class RedactionMethod(Enum):
    """Methods for redacting sensitive data."""
    MASK = auto()          # Replace with asterisks
    HASH = auto()          # Replace with short digest
    PARTIAL = auto()       # Keep first/last few chars
    PLACEHOLDER = auto()   # Replace with placeholder text


@dataclass
class SensitiveDataPattern:
    """Pattern for identifying sensitive data inside free text."""

    name: str
    pattern: Pattern[str]
    redaction_method: RedactionMethod = RedactionMethod.PLACEHOLDER
    placeholder: str = "[REDACTED]"
    partial_chars: int = 4
    enabled: bool = True

    def matches(self, text: str) -> List[re.Match]:
        if not self.enabled:
            return []
        return list(self.pattern.finditer(text))


# Variable or dict keys whose values are always hidden, whatever they contain
SENSITIVE_KEY_FRAGMENTS = (
    "password", "passwd", "pwd", "secret", "token", "api_key", "apikey",
    "authorization", "cookie", "session_id", "credential",
)


@dataclass
class DataSanitizer:
    """Redacts credentials from strings, dicts, variables and log records."""

    patterns: List[SensitiveDataPattern] = field(default_factory=list)
    sensitive_keys: List[str] = field(
        default_factory=lambda: list(SENSITIVE_KEY_FRAGMENTS)
    )
    key_placeholder: str = "[REDACTED]"

    def __post_init__(self) -> None:
        if not self.patterns:
            self.patterns = self._default_patterns()

    @staticmethod
    def _default_patterns() -> List[SensitiveDataPattern]:
        return [
            SensitiveDataPattern(
                name="api_key_prefix",
                pattern=re.compile(
                    r'(api[_-]?key|apikey|api_secret|access[_-]?token)\s*[:=]\s*["\']?([^"\'\s]+)["\']?',
                    re.IGNORECASE,
                ),
            ),
            SensitiveDataPattern(
                name="bearer_token",
                pattern=re.compile(r'Bearer\s+[A-Za-z0-9\-._~+/]+=*', re.IGNORECASE),
            ),
            SensitiveDataPattern(
                name="jwt_token",
                pattern=re.compile(r'eyJ[A-Za-z0-9_-]+\.eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+'),
                redaction_method=RedactionMethod.HASH,
            ),
            SensitiveDataPattern(
                name="password_field",
                pattern=re.compile(
                    r'(password|passwd|pwd)\s*[:=]\s*["\']?([^"\'\s]+)["\']?',
                    re.IGNORECASE,
                ),
                placeholder="[PASSWORD]",
            ),
            SensitiveDataPattern(
                name="email",
                pattern=re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b'),
                redaction_method=RedactionMethod.PARTIAL,
                partial_chars=3,
            ),
            SensitiveDataPattern(
                name="credit_card",
                pattern=re.compile(r'\b(?:4\d{3}|5[1-5]\d{2})[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b'),
                redaction_method=RedactionMethod.PARTIAL,
            ),
        ]

    def add_pattern(self, pattern: SensitiveDataPattern) -> None:
        """Add a custom pattern."""
        self.patterns.append(pattern)

    def is_sensitive_key(self, key: str) -> bool:
        key_lower = key.lower()
        return any(fragment in key_lower for fragment in self.sensitive_keys)

    def sanitize_string(self, text: str) -> str:
        """
        Redact every enabled pattern found in ``text``.

        Args:
            text: Text to sanitize

        Returns:
            Sanitized text
        """
        if not text:
            return text

        matches = []
        for pattern in self.patterns:
            for match in pattern.matches(text):
                matches.append((match, pattern))

        # Apply from the end so earlier spans keep their offsets
        matches.sort(key=lambda item: item[0].start(), reverse=True)
        result = text
        last_start = len(text) + 1
        for match, pattern in matches:
            if match.end() > last_start:
                continue
            result = self._apply_redaction(result, match, pattern)
            last_start = match.start()
        return result

    def _apply_redaction(
        self, text: str, match: re.Match, pattern: SensitiveDataPattern
    ) -> str:
        start, end = match.span()
        matched_text = match.group()

        if pattern.redaction_method == RedactionMethod.MASK:
            replacement = "*" * len(matched_text)
        elif pattern.redaction_method == RedactionMethod.HASH:
            digest = hashlib.sha256(matched_text.encode()).hexdigest()[:8]
            replacement = f"[HASH:{digest}]"
        elif pattern.redaction_method == RedactionMethod.PARTIAL:
            keep = pattern.partial_chars
            if len(matched_text) > keep * 2:
                replacement = (
                    matched_text[:keep]
                    + "*" * (len(matched_text) - keep * 2)
                    + matched_text[-keep:]
                )
            else:
                replacement = "*" * len(matched_text)
        else:
            replacement = pattern.placeholder

        return text[:start] + replacement + text[end:]

    def sanitize_value(self, value: Any, key: Optional[str] = None, max_depth: int = 10) -> Any:
        """Sanitize one value, hiding it entirely when its key is sensitive."""
        if key is not None and self.is_sensitive_key(key) and value is not None:
            return self.key_placeholder
        if max_depth <= 0:
            logger.warning("Max recursion depth reached while sanitizing")
            return value
        if isinstance(value, str):
            return self.sanitize_string(value)
        if isinstance(value, Mapping):
            return {
                k: self.sanitize_value(v, str(k), max_depth - 1)
                for k, v in value.items()
            }
        if isinstance(value, (list, tuple)):
            return [self.sanitize_value(item, None, max_depth - 1) for item in value]
        return value

    def sanitize_dict(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        """Return a sanitized copy of ``data``."""
        return {key: self.sanitize_value(value, key) for key, value in data.items()}

    def sanitize_variables(self, variables: Mapping[str, Any]) -> Dict[str, Any]:
        """Sanitize a test-variable map for logging."""
        return self.sanitize_dict(variables)

    def sanitize_log_record(self, record: logging.LogRecord) -> logging.LogRecord:
        """
        Sanitize a log record in place.

        Args:
            record: Log record to sanitize

        Returns:
            The same record
        """
        record.msg = self.sanitize_string(str(record.msg))

        if record.args:
            if isinstance(record.args, Mapping):
                record.args = self.sanitize_dict(record.args)
            else:
                record.args = tuple(
                    self.sanitize_string(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )

        for attr in ("variables", "details"):
            value = getattr(record, attr, None)
            if isinstance(value, Mapping):
                setattr(record, attr, self.sanitize_dict(value))

        return record
