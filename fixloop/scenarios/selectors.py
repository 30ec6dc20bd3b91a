"""
Selector resolution.

Human-authored element references are resolved into a lookup strategy:
``@name`` selects by accessibility identifier, ``#name`` by a stable test
identifier, ``xpath:...`` is raw XPath, and anything else is visible text
expanded into ordered fallbacks.
"""

import json
from typing import Awaitable, Callable, List, Optional, Tuple

from fixloop.core.types import ResolvedSelector, SelectorStrategy

XPATH_PREFIX = "xpath:"

# Priority order for visible-text lookups, first live match wins
TEXT_FALLBACKS: List[SelectorStrategy] = [
    SelectorStrategy.EXACT_TEXT,
    SelectorStrategy.CONTAINS_TEXT,
    SelectorStrategy.CLICKABLE_WITH_TEXT,
    SelectorStrategy.LINK_WITH_TEXT,
    SelectorStrategy.ANY_WITH_TEXT,
]

# Attribute carrying the stable test identifier in web builds
TEST_ID_ATTRIBUTE = "data-testid"

Probe = Callable[[SelectorStrategy, str], Awaitable[int]]


def resolve(raw_selector: str) -> ResolvedSelector:
    """
    Resolve a human-authored selector.

    Args:
        raw_selector: Selector as written in a scenario

    Returns:
        Strategy and value; only text selectors carry fallbacks
    """
    selector = raw_selector.strip()

    if selector.startswith("@"):
        return ResolvedSelector(strategy=SelectorStrategy.ACCESSIBILITY_ID, value=selector[1:])
    if selector.startswith("#"):
        return ResolvedSelector(strategy=SelectorStrategy.ID, value=selector[1:])
    if selector.startswith(XPATH_PREFIX):
        return ResolvedSelector(strategy=SelectorStrategy.XPATH, value=selector[len(XPATH_PREFIX):])

    return ResolvedSelector(
        strategy=SelectorStrategy.TEXT,
        value=selector,
        fallbacks=list(TEXT_FALLBACKS),
    )


def candidates(resolved: ResolvedSelector) -> List[SelectorStrategy]:
    """Strategies to try, in priority order."""
    if resolved.strategy == SelectorStrategy.TEXT:
        return list(resolved.fallbacks)
    return [resolved.strategy]


async def locate(
    resolved: ResolvedSelector, probe: Probe
) -> Optional[Tuple[SelectorStrategy, str]]:
    """
    Find the first strategy that matches at least one live element.

    Args:
        resolved: Resolved selector
        probe: Driver callback returning the number of elements a strategy matches

    Returns:
        Matching (strategy, value) pair, or None when nothing matched
    """
    for strategy in candidates(resolved):
        if await probe(strategy, resolved.value) > 0:
            return strategy, resolved.value
    return None


def _quote(text: str) -> str:
    return json.dumps(text)


def to_playwright_selector(strategy: SelectorStrategy, value: str) -> str:
    """Translate one strategy into a Playwright selector string."""
    quoted = _quote(value)
    translations = {
        SelectorStrategy.ACCESSIBILITY_ID: f"[aria-label={quoted}]",
        SelectorStrategy.ID: f"[{TEST_ID_ATTRIBUTE}={quoted}], [id={quoted}]",
        SelectorStrategy.XPATH: f"xpath={value}",
        SelectorStrategy.TEXT: f"text={quoted}",
        SelectorStrategy.EXACT_TEXT: f"text={quoted}",
        SelectorStrategy.CONTAINS_TEXT: f"text={value}",
        SelectorStrategy.CLICKABLE_WITH_TEXT: f"button:has-text({quoted})",
        SelectorStrategy.LINK_WITH_TEXT: f"a:has-text({quoted})",
        SelectorStrategy.ANY_WITH_TEXT: f"*:has-text({quoted})",
    }
    return translations[strategy]


def to_playwright_selectors(resolved: ResolvedSelector) -> List[str]:
    """Ordered Playwright selectors for a resolved selector."""
    return [to_playwright_selector(strategy, resolved.value) for strategy in candidates(resolved)]
