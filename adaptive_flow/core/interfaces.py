"""
Core interfaces and abstract base classes for the adaptive flow engine.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

from adaptive_flow.core.types import AdaptiveStep, LocatedElement
from adaptive_flow.error_handling.exceptions import AgentUnavailableError


ActionCallback = Callable[[AdaptiveStep], Awaitable[None]]


class LocatorAgent(ABC):
    """Abstract capability that finds page elements from a description.

    Every call is treated as fallible and time-boxed by the caller; an
    implementation may raise any exception or return ``None`` when nothing
    matches.
    """

    @property
    def is_available(self) -> bool:
        """Whether the agent can currently serve locate requests."""
        return True

    @abstractmethod
    async def locate(
        self, prompt: str, deep_think: bool = False
    ) -> Optional[LocatedElement]:
        """
        Locate an element by natural-language or selector description.

        Args:
            prompt: Selector or natural-language description of the element
            deep_think: Request slower, more thorough reasoning

        Returns:
            Element descriptor, or None if nothing matched
        """
        pass


class NullLocatorAgent(LocatorAgent):
    """Locator used when no agent is configured."""

    @property
    def is_available(self) -> bool:
        return False

    async def locate(
        self, prompt: str, deep_think: bool = False
    ) -> Optional[LocatedElement]:
        raise AgentUnavailableError(
            "No locator agent configured", details={"prompt": prompt}
        )


class ConfigProvider(ABC):
    """Abstract interface for configuration management."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        pass

    @abstractmethod
    def get_required(self, key: str) -> Any:
        """Get required configuration value, raise if missing."""
        pass

    @abstractmethod
    def get_all(self) -> Dict[str, Any]:
        """Get all configuration values."""
        pass
