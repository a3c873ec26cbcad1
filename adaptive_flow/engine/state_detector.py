"""
Page-state detection.

Answers "is the page logged in / loading / showing an error / empty?" with
three probe tiers tried in order, first hit wins:

1. DOM selectors, half the timeout each, confidence 0.9
2. Text patterns used as locator prompts, half the timeout each, confidence 0.8
   (the located text must also match the pattern)
3. Natural-language prompts with deep reasoning, full timeout, confidence 0.7

Failures of a single probe are logged and skipped; they never abort a tier.
"""

import asyncio
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern, Sequence, Union

from adaptive_flow.config.settings import Settings, get_settings
from adaptive_flow.core.interfaces import LocatorAgent, NullLocatorAgent
from adaptive_flow.core.types import LocatedElement, PageState, StateDetectionResult
from adaptive_flow.monitoring.logger import get_logger

logger = get_logger(__name__)

DOM_CONFIDENCE = 0.9
TEXT_CONFIDENCE = 0.8
AI_CONFIDENCE = 0.7
CURRENT_STATE_THRESHOLD = 0.7

# Probed in this order by get_current_page_state
CURRENT_STATE_ORDER = (
    PageState.LOGGED_IN,
    PageState.LOADING,
    PageState.ERROR,
    PageState.EMPTY,
)

RuleKey = Union[PageState, str]


@dataclass
class StateDetectionRule:
    """Probes that identify one page state."""

    selectors: List[str] = field(default_factory=list)
    text_patterns: List[Pattern[str]] = field(default_factory=list)
    ai_prompts: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.selectors or self.text_patterns or self.ai_prompts)


def _patterns(*sources: str) -> List[Pattern[str]]:
    return [re.compile(source, re.IGNORECASE) for source in sources]


BUILT_IN_RULES: Dict[PageState, StateDetectionRule] = {
    PageState.LOGGED_IN: StateDetectionRule(
        selectors=[
            '[data-testid="user-menu"]',
            ".user-avatar",
            ".user-profile",
            ".logout-button",
            ".user-info",
        ],
        text_patterns=_patterns(
            r"logout|sign out|登出|退出",
            r"my account|我的账户|个人中心",
            r"welcome,?|欢迎,?",
        ),
        ai_prompts=[
            "Is there a user menu, avatar, or profile indicator visible?",
            "Is the user logged in (look for logout button, user menu, or profile)?",
        ],
    ),
    PageState.LOADING: StateDetectionRule(
        selectors=[
            '[data-testid="loading"]',
            ".loading",
            ".spinner",
            ".loader",
            ".skeleton",
            '[role="progressbar"]',
        ],
        text_patterns=_patterns(r"loading|加载中|请稍候|wait"),
        ai_prompts=[
            "Is there a loading spinner, progress bar, or skeleton loader visible?",
            "Is the page currently loading content?",
        ],
    ),
    PageState.ERROR: StateDetectionRule(
        selectors=[
            '[data-testid="error"]',
            ".error",
            ".error-message",
            ".alert-error",
            '[role="alert"]',
        ],
        text_patterns=_patterns(
            r"error|错误|失败|failed|unable",
            r"something went wrong|出错了",
            r"not found|未找到|404|500",
        ),
        ai_prompts=[
            "Is there an error message or error indicator visible?",
            "Did the last operation fail (look for error messages, alerts, red indicators)?",
        ],
    ),
    PageState.EMPTY: StateDetectionRule(
        selectors=[
            '[data-testid="empty"]',
            ".empty-state",
            ".no-results",
            ".no-data",
            ".placeholder",
        ],
        text_patterns=_patterns(
            r"no results|没有结果|暂无数据",
            r"empty|空白|nothing to show",
            r"no items found|未找到项目",
        ),
        ai_prompts=[
            'Is there an empty state or "no results" message visible?',
            "Is the content area empty (look for empty state illustrations, no results messages)?",
        ],
    ),
}


class StateDetector:
    """Multi-tier page-state classifier backed by a locator agent."""

    def __init__(
        self,
        agent: Optional[LocatorAgent] = None,
        timeout: Optional[int] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """
        Initialize the detector.

        Args:
            agent: Locator agent; without one nothing is ever detected
            timeout: Default probe budget in milliseconds
            settings: Settings to read defaults from
        """
        settings = settings or get_settings()
        self.agent = agent or NullLocatorAgent()
        self.timeout = timeout if timeout is not None else settings.state_detection_timeout
        self.rules: Dict[RuleKey, StateDetectionRule] = dict(BUILT_IN_RULES)

    def register_rule(self, key: RuleKey, rule: StateDetectionRule) -> None:
        """Add or replace the rule for a state; custom states use their description as key."""
        self.rules[key] = rule
        logger.debug(f"Registered state detection rule: {self._key_name(key)}")

    def remove_rule(self, key: RuleKey) -> bool:
        return self.rules.pop(key, None) is not None

    def get_rule(
        self, state: PageState, custom_description: Optional[str] = None
    ) -> Optional[StateDetectionRule]:
        if state is PageState.CUSTOM:
            if custom_description is None:
                return None
            return self.rules.get(custom_description)
        return self.rules.get(state)

    async def detect(
        self,
        state: PageState,
        timeout: Optional[int] = None,
        custom_description: Optional[str] = None,
    ) -> bool:
        result = await self.detect_with_details(state, timeout, custom_description)
        return result.detected

    async def detect_with_details(
        self,
        state: PageState,
        timeout: Optional[int] = None,
        custom_description: Optional[str] = None,
    ) -> StateDetectionResult:
        """
        Run the probe tiers for one state.

        Args:
            state: State to look for
            timeout: Probe budget in milliseconds (defaults to the detector's)
            custom_description: Rule key when ``state`` is custom

        Returns:
            Detection result carrying the winning tier and its evidence
        """
        budget = self.timeout if timeout is None else timeout
        rule = self.get_rule(state, custom_description)
        label = custom_description if state is PageState.CUSTOM else state.value

        if rule is None or rule.is_empty:
            return StateDetectionResult(
                detected=False, description=f'No detection rules for state "{label}"'
            )
        if not self.agent.is_available:
            return StateDetectionResult(
                detected=False, description=f'State "{label}" not detected: no locator agent'
            )

        for probe in (self._detect_via_dom, self._detect_via_text, self._detect_via_ai):
            result = await probe(rule, budget, label)
            if result is not None:
                logger.debug(
                    f"State {label} detected via {result.tier}",
                    extra={"details": {"confidence": result.confidence}},
                )
                return result

        return StateDetectionResult(detected=False, description=f'State "{label}" not detected')

    async def detect_all(
        self, states: Sequence[PageState], timeout: Optional[int] = None
    ) -> Dict[PageState, StateDetectionResult]:
        """Detect several states concurrently."""
        results = await asyncio.gather(
            *(self.detect_with_details(state, timeout) for state in states)
        )
        return dict(zip(states, results))

    async def get_current_page_state(
        self, timeout: Optional[int] = None
    ) -> Optional[StateDetectionResult]:
        """First built-in state detected with confidence above 0.7, else None."""
        for state in CURRENT_STATE_ORDER:
            result = await self.detect_with_details(state, timeout)
            if result.detected and result.confidence > CURRENT_STATE_THRESHOLD:
                result.details.setdefault("state", state.value)
                return result
        return None

    async def _locate(
        self, prompt: str, timeout_ms: float, deep_think: bool
    ) -> Optional[LocatedElement]:
        try:
            return await asyncio.wait_for(
                self.agent.locate(prompt, deep_think=deep_think), timeout_ms / 1000
            )
        except asyncio.TimeoutError:
            logger.debug(f"State probe timed out after {timeout_ms:.0f}ms: {prompt}")
        except Exception as e:
            logger.debug(f"State probe failed for {prompt!r}: {e}")
        return None

    async def _detect_via_dom(
        self, rule: StateDetectionRule, budget: int, label: str
    ) -> Optional[StateDetectionResult]:
        for selector in rule.selectors:
            element = await self._locate(selector, budget / 2, deep_think=False)
            if element is not None:
                return StateDetectionResult(
                    detected=True,
                    confidence=DOM_CONFIDENCE,
                    description=f"Found element matching selector: {selector}",
                    tier="dom",
                    details={"selector": selector, "element": element.model_dump()},
                )
        return None

    async def _detect_via_text(
        self, rule: StateDetectionRule, budget: int, label: str
    ) -> Optional[StateDetectionResult]:
        for pattern in rule.text_patterns:
            prompt = pattern.pattern.replace("\\", "")
            element = await self._locate(prompt, budget / 2, deep_think=False)
            if element is not None and element.text and pattern.search(element.text):
                return StateDetectionResult(
                    detected=True,
                    confidence=TEXT_CONFIDENCE,
                    description=f"Found text matching pattern: {pattern.pattern}",
                    tier="text",
                    details={"pattern": pattern.pattern, "text": element.text},
                )
        return None

    async def _detect_via_ai(
        self, rule: StateDetectionRule, budget: int, label: str
    ) -> Optional[StateDetectionResult]:
        for prompt in rule.ai_prompts:
            element = await self._locate(prompt, budget, deep_think=True)
            if element is not None:
                return StateDetectionResult(
                    detected=True,
                    confidence=AI_CONFIDENCE,
                    description=f"AI detected state: {label}",
                    tier="ai",
                    details={"prompt": prompt, "element": element.model_dump()},
                )
        return None

    @staticmethod
    def _key_name(key: RuleKey) -> str:
        return key.value if isinstance(key, PageState) else key
