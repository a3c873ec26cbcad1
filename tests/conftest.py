"""
Shared fixtures for adaptive flow tests.
"""

import asyncio
from typing import Dict, List, Optional, Tuple, Union

import pytest

from adaptive_flow.config.settings import Settings
from adaptive_flow.core.interfaces import LocatorAgent
from adaptive_flow.core.types import ElementRect, ExecutionContext, LocatedElement

Response = Union[LocatedElement, Exception, None]


class ScriptedLocatorAgent(LocatorAgent):
    """Locator agent answering from a prompt -> response table.

    A response may be an element, None (not found) or an exception to raise.
    Unknown prompts return None. ``delay`` seconds are slept before every answer.
    """

    def __init__(
        self,
        responses: Optional[Dict[str, Response]] = None,
        delay: float = 0.0,
        available: bool = True,
    ):
        self.responses: Dict[str, Response] = dict(responses or {})
        self.delay = delay
        self.available = available
        self.calls: List[Tuple[str, bool]] = []

    @property
    def is_available(self) -> bool:
        return self.available

    async def locate(self, prompt: str, deep_think: bool = False) -> Optional[LocatedElement]:
        self.calls.append((prompt, deep_think))
        if self.delay:
            await asyncio.sleep(self.delay)
        response = self.responses.get(prompt)
        if isinstance(response, Exception):
            raise response
        return response


def element(
    text: Optional[str] = None,
    width: float = 100,
    height: float = 30,
    **attributes,
) -> LocatedElement:
    """Build a located element for tests."""
    return LocatedElement(
        rect=ElementRect(x=10, y=10, width=width, height=height),
        attributes=attributes,
        text=text,
    )


@pytest.fixture
def settings():
    """Settings isolated from any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def context():
    return ExecutionContext()


@pytest.fixture
def agent():
    return ScriptedLocatorAgent()


@pytest.fixture
def make_agent():
    return ScriptedLocatorAgent


@pytest.fixture
def make_element():
    return element
