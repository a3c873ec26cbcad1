"""
Data sanitization for log output.
"""

from .sanitizer import (
    DataSanitizer,
    RedactionMethod,
    SensitiveDataPattern,
)

__all__ = [
    "DataSanitizer",
    "RedactionMethod",
    "SensitiveDataPattern",
]
