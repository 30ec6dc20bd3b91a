"""
Playwright browser driver implementation.
"""

import asyncio
import os
import re
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Locator,
    Page,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from fixloop.config.settings import get_settings
from fixloop.core.interfaces import ActionDriver
from fixloop.core.types import (
    ActionType,
    Expectation,
    ExpectationOutcome,
    ExpectationType,
    Platform,
    SelectorStrategy,
    Step,
)
from fixloop.error_handling.exceptions import DriverError, StepFailure
from fixloop.monitoring.logger import get_logger, log_performance_metric
from fixloop.scenarios.parser import parse_duration, parse_element_count
from fixloop.scenarios.selectors import (
    locate,
    resolve,
    to_playwright_selector,
    to_playwright_selectors,
)

POLL_INTERVAL_MS = 250
SETTLE_MS = 100
SWIPE_DISTANCE_PX = 600

# Targets that are already Playwright/CSS selectors and bypass resolution
RAW_SELECTOR_PATTERN = re.compile(r"^(\.|\[|[a-z][a-z0-9-]*\[)")

# One handler method per action; checked against ActionType at import time
STEP_HANDLERS: Dict[ActionType, str] = {
    ActionType.TAP: "_tap",
    ActionType.TYPE: "_type",
    ActionType.SELECT: "_select",
    ActionType.HOVER: "_hover",
    ActionType.WAIT: "_wait",
    ActionType.SCREENSHOT: "_screenshot",
    ActionType.NAVIGATE: "_navigate",
    ActionType.CLEAR: "_clear",
    ActionType.SWIPE: "_swipe",
    ActionType.SCROLL: "_scroll",
    ActionType.ASSERT_VISIBLE: "_assert_visible",
    ActionType.ASSERT_NOT_VISIBLE: "_assert_not_visible",
    ActionType.ASSERT_ELEMENT_EXISTS: "_assert_element_exists",
    ActionType.ASSERT_ELEMENT_NOT_EXISTS: "_assert_element_not_exists",
    ActionType.ASSERT_ELEMENT_COUNT: "_assert_element_count",
    ActionType.WAIT_FOR: "_wait_for",
    ActionType.WAIT_FOR_GONE: "_wait_for_gone",
    ActionType.BACK: "_back",
    ActionType.LOG: "_log",
    ActionType.PLATFORM: "_platform",
}

_unhandled = set(ActionType) - set(STEP_HANDLERS)
if _unhandled:
    raise ImportError(f"PlaywrightDriver has no handler for: {sorted(a.value for a in _unhandled)}")

SWIPE_DELTAS = {
    "up": (0, SWIPE_DISTANCE_PX),
    "down": (0, -SWIPE_DISTANCE_PX),
    "left": (SWIPE_DISTANCE_PX, 0),
    "right": (-SWIPE_DISTANCE_PX, 0),
}


def split_alternatives(target: str) -> List[str]:
    """Comma-separated alternatives of a selector, in the order written."""
    return [part.strip() for part in target.strip().split(", ") if part.strip()]


def raw_selector(target: str) -> Optional[str]:
    """The Playwright selector for a raw CSS or chained target, else None."""
    if target == "input[first]":
        return "input >> nth=0"
    if ">>" in target or RAW_SELECTOR_PATTERN.match(target):
        return target
    return None


def expand_selector(target: str) -> List[str]:
    """
    Expand a scenario selector into ordered Playwright selectors.

    Comma-separated alternatives are tried in order, raw CSS and Playwright
    chains are used verbatim, and everything else goes through selector
    resolution.
    """
    selectors: List[str] = []
    for part in split_alternatives(target):
        raw = raw_selector(part)
        selectors.extend([raw] if raw else to_playwright_selectors(resolve(part)))
    return selectors


class PlaywrightDriver(ActionDriver):
    """Playwright-based browser automation driver."""

    name = "playwright"

    def __init__(
        self,
        base_url: Optional[str] = None,
        headless: Optional[bool] = None,
        viewport_width: Optional[int] = None,
        viewport_height: Optional[int] = None,
        element_timeout_ms: Optional[int] = None,
        wait_timeout_ms: Optional[int] = None,
        navigation_timeout_ms: Optional[int] = None,
        loading_indicator_text: Optional[str] = None,
        platform: Platform = Platform.WEB,
    ) -> None:
        """
        Initialize the Playwright driver.

        Args:
            base_url: Application under test
            headless: Run browser in headless mode
            viewport_width: Browser viewport width
            viewport_height: Browser viewport height
            element_timeout_ms: Timeout for element lookups
            wait_timeout_ms: Timeout for explicit element waits
            navigation_timeout_ms: Timeout for navigation
            loading_indicator_text: Text that must disappear after the first load
            platform: Platform whose branches this driver executes
        """
        super().__init__(platform=platform)
        settings = get_settings()
        self.base_url = (base_url or settings.base_url).rstrip("/")
        self.headless = headless if headless is not None else settings.browser_headless
        self.viewport_width = viewport_width or settings.browser_viewport_width
        self.viewport_height = viewport_height or settings.browser_viewport_height
        self.element_timeout_ms = element_timeout_ms or settings.element_timeout_ms
        self.wait_timeout_ms = wait_timeout_ms or settings.wait_timeout_ms
        self.navigation_timeout_ms = navigation_timeout_ms or settings.navigation_timeout_ms
        self.loading_indicator_text = (
            loading_indicator_text
            if loading_indicator_text is not None
            else settings.loading_indicator_text
        )

        self.logger = get_logger("browser.driver")
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._last_filled: Optional[Locator] = None

    @property
    def page(self) -> Page:
        if not self._page:
            raise DriverError(
                "Browser not started. Call initialize() first.",
                driver=self.name,
                operation="page",
            )
        return self._page

    async def initialize(self) -> None:
        """Launch the browser, attach diagnostics and open the application."""
        start_time = asyncio.get_running_loop().time()
        try:
            if self._playwright is None:
                self._playwright = await async_playwright().start()

            if self._browser is None:
                self.logger.info(
                    "Starting browser",
                    extra={
                        "headless": self.headless,
                        "viewport": f"{self.viewport_width}x{self.viewport_height}",
                    },
                )
                self._browser = await self._playwright.chromium.launch(
                    headless=self.headless,
                    args=["--no-sandbox", "--disable-dev-shm-usage"],
                    env=os.environ,
                )

            if self._context is None:
                self._context = await self._browser.new_context(
                    viewport={
                        "width": self.viewport_width,
                        "height": self.viewport_height,
                    },
                )
                self._context.set_default_timeout(self.element_timeout_ms)
                self._context.set_default_navigation_timeout(self.navigation_timeout_ms)

            if self._page is None:
                self._page = await self._context.new_page()
                self._attach_listeners(self._page)

            await self._page.goto(self.base_url)
            if self.loading_indicator_text:
                await self._page.wait_for_function(
                    "text => !document.body || !document.body.innerText.includes(text)",
                    arg=self.loading_indicator_text,
                    timeout=self.navigation_timeout_ms,
                )
        except PlaywrightError as e:
            raise DriverError(
                f"Failed to open {self.base_url}: {e.message}",
                driver=self.name,
                operation="initialize",
                cause=e,
            )

        elapsed_ms = (asyncio.get_running_loop().time() - start_time) * 1000
        log_performance_metric("driver_initialize", elapsed_ms, context={"url": self.base_url})

    def _attach_listeners(self, page: Page) -> None:
        def on_console(message) -> None:
            if message.type == "error":
                self.diagnostics.record_console_error(message.text)

        def on_page_error(error) -> None:
            self.diagnostics.record_console_error(f"Page Error: {error.message}")

        def on_request_failed(request) -> None:
            self.diagnostics.record_network_error(
                f"{request.method} {request.url} - {request.failure}"
            )

        page.on("console", on_console)
        page.on("pageerror", on_page_error)
        page.on("requestfailed", on_request_failed)

    async def teardown(self) -> None:
        """Stop the browser and cleanup resources."""
        self._last_filled = None
        try:
            if self._page:
                await self._page.close()
            if self._context:
                await self._context.close()
            if self._browser:
                await self._browser.close()
            if self._playwright:
                await self._playwright.stop()
        except PlaywrightError as e:
            raise DriverError(
                f"Failed to stop browser: {e.message}",
                driver=self.name,
                operation="teardown",
                cause=e,
            )
        finally:
            self._page = None
            self._context = None
            self._browser = None
            self._playwright = None

        self.logger.info("Browser stopped")

    async def execute_step(self, step: Step) -> Optional[str]:
        """
        Execute one step.

        Returns:
            Path of an artifact the step produced, if any
        """
        handler: Callable[[Step], Awaitable[Optional[str]]] = getattr(
            self, STEP_HANDLERS[step.action]
        )
        self.logger.debug(
            "Executing step",
            extra={"step_id": step.id, "action": step.action.value, "target": step.target},
        )
        try:
            artifact = await handler(step)
            await self.page.wait_for_timeout(SETTLE_MS)
            return artifact
        except PlaywrightTimeoutError as e:
            raise StepFailure(
                f"Timeout during {step.action.value} on \"{step.target}\": {e.message}",
                step_id=step.id,
                action=step.action.value,
                target=step.target,
                cause=e,
            )
        except PlaywrightError as e:
            raise StepFailure(
                e.message,
                step_id=step.id,
                action=step.action.value,
                target=step.target,
                cause=e,
            )

    async def check_expectation(self, expectation: Expectation) -> ExpectationOutcome:
        """
        Check a post-condition against the live page.

        Browser errors and malformed expected values come back as failed
        outcomes rather than exceptions.
        """
        try:
            return await self._check_expectation(expectation)
        except PlaywrightError as e:
            return self._failed(
                f"Could not check {expectation.kind.value}: {e.message}",
                None,
                expectation.expected_value,
            )
        except ValueError as e:
            return self._failed(str(e), None, expectation.expected_value)

    async def _check_expectation(self, expectation: Expectation) -> ExpectationOutcome:
        kind = expectation.kind
        value = expectation.expected_value

        if kind == ExpectationType.URL_EQUALS:
            current_url = await self.get_current_location()
            if current_url != value and not current_url.endswith(value):
                return self._failed(
                    f'Expected URL to be "{value}" but got "{current_url}"', current_url, value
                )
        elif kind == ExpectationType.URL_CONTAINS:
            current_url = await self.get_current_location()
            if value not in current_url:
                return self._failed(
                    f'Expected URL to contain "{value}" but got "{current_url}"', current_url, value
                )
        elif kind == ExpectationType.ELEMENT_VISIBLE:
            if not await self._poll(lambda: self._is_visible(value), self.element_timeout_ms):
                return self._failed(
                    f'Expected "{value}" to be visible but it was not found', None, value
                )
        elif kind == ExpectationType.ELEMENT_NOT_VISIBLE:
            if await self._is_visible(value):
                return self._failed(
                    f'Expected "{value}" to NOT be visible but it was found', None, value
                )
        elif kind == ExpectationType.INPUT_VALUE_EQUALS:
            field = self._last_filled or self.page.locator("input").first
            actual = await field.input_value(timeout=self.element_timeout_ms)
            if actual != value:
                return self._failed(
                    f'Expected input value to be "{value}" but got "{actual}"', actual, value
                )
        elif kind == ExpectationType.TEXT_CONTENT_CONTAINS:
            body_text = await self.page.text_content("body") or ""
            if value not in body_text:
                return self._failed(f'Expected page to contain text "{value}"', None, value)
        elif kind == ExpectationType.ELEMENT_COUNT_EQUALS:
            selector, expected_count = parse_element_count(value)
            actual_count = await self._count(selector)
            if actual_count != expected_count:
                return self._failed(
                    f'Expected {expected_count} elements matching "{selector}" but found {actual_count}',
                    str(actual_count),
                    str(expected_count),
                )

        return ExpectationOutcome(passed=True, expected_value=value)

    async def take_screenshot(self, name: str, directory: Path) -> str:
        """Capture a full-page screenshot."""
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{name}.png"
        await self.page.screenshot(path=str(path), full_page=True)
        self.logger.debug("Screenshot captured", extra={"path": str(path)})
        return str(path)

    async def get_current_location(self) -> str:
        """Get current page URL."""
        return self.page.url

    @staticmethod
    def _failed(message: str, actual: Optional[str], expected: Optional[str]) -> ExpectationOutcome:
        return ExpectationOutcome(
            passed=False, actual_value=actual, expected_value=expected, message=message
        )

    async def _poll(self, predicate: Callable[[], Awaitable[bool]], timeout_ms: float) -> bool:
        """Evaluate a predicate until it holds or the timeout elapses."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000
        while True:
            if await predicate():
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(POLL_INTERVAL_MS / 1000)

    async def _match_count(self, selector: str) -> int:
        try:
            return await self.page.locator(selector).count()
        except PlaywrightError:
            return 0

    async def _probe(self, strategy: SelectorStrategy, value: str) -> int:
        return await self._match_count(to_playwright_selector(strategy, value))

    async def _first_match(self, target: str) -> Optional[Locator]:
        for part in split_alternatives(target):
            selector = raw_selector(part)
            if selector is None:
                match = await locate(resolve(part), self._probe)
                if match is None:
                    continue
                selector = to_playwright_selector(*match)
            elif await self._match_count(selector) == 0:
                continue
            return self.page.locator(selector).first
        return None

    async def _find(self, step: Step, kind: str) -> Locator:
        target = step.target or ""
        found: List[Locator] = []

        async def matched() -> bool:
            locator = await self._first_match(target)
            if locator is not None:
                found.append(locator)
                return True
            return False

        if not await self._poll(matched, self.element_timeout_ms):
            raise StepFailure(
                f"Could not find {kind} element: {target}",
                step_id=step.id,
                action=step.action.value,
                target=target,
            )
        return found[-1]

    async def _is_visible(self, target: str) -> bool:
        for selector in expand_selector(target):
            try:
                locator = self.page.locator(selector)
                if await locator.count() > 0 and await locator.first.is_visible():
                    return True
            except PlaywrightError:
                continue
        return False

    async def _count(self, target: str) -> int:
        for selector in expand_selector(target):
            try:
                count = await self.page.locator(selector).count()
            except PlaywrightError:
                continue
            if count > 0:
                return count
        return 0

    async def _tap(self, step: Step) -> None:
        locator = await self._find(step, "clickable")
        await locator.click(timeout=self.element_timeout_ms)

    async def _type(self, step: Step) -> None:
        locator = await self._find(step, "fillable")
        await locator.fill(step.value or "", timeout=self.element_timeout_ms)
        self._last_filled = locator

    async def _select(self, step: Step) -> None:
        locator = await self._find(step, "selectable")
        await locator.select_option(step.value or "", timeout=self.element_timeout_ms)

    async def _hover(self, step: Step) -> None:
        locator = await self._find(step, "hoverable")
        await locator.hover(timeout=self.element_timeout_ms)

    async def _wait(self, step: Step) -> None:
        await self.page.wait_for_timeout(parse_duration(step.value or "0ms"))

    async def _screenshot(self, step: Step) -> str:
        directory = self.screenshot_dir or Path(get_settings().screenshots_dir)
        return await self.take_screenshot(step.value or step.id, directory)

    async def _navigate(self, step: Step) -> None:
        target = step.target or "/"
        url = target if target.startswith("http") else f"{self.base_url}{target}"
        start_time = asyncio.get_running_loop().time()
        await self.page.goto(url, timeout=self.navigation_timeout_ms)
        elapsed_ms = (asyncio.get_running_loop().time() - start_time) * 1000
        log_performance_metric("page_navigation", elapsed_ms, context={"url": url})

    async def _clear(self, step: Step) -> None:
        locator = await self._find(step, "fillable")
        await locator.fill("", timeout=self.element_timeout_ms)
        self._last_filled = locator

    async def _swipe(self, step: Step) -> None:
        direction = (step.target or step.value or "").lower()
        if direction not in SWIPE_DELTAS:
            raise StepFailure(
                f"Unknown swipe direction: {direction}",
                step_id=step.id,
                action=step.action.value,
                target=step.target,
            )
        delta_x, delta_y = SWIPE_DELTAS[direction]
        await self.page.mouse.wheel(delta_x, delta_y)

    async def _scroll(self, step: Step) -> None:
        locator = await self._find(step, "scrollable")
        await locator.scroll_into_view_if_needed(timeout=self.element_timeout_ms)

    async def _assert_visible(self, step: Step) -> None:
        target = step.target or ""
        if not await self._poll(lambda: self._is_visible(target), self.element_timeout_ms):
            raise StepFailure(
                f'Expected "{target}" to be visible but it was not found',
                step_id=step.id,
                action=step.action.value,
                target=target,
                expected_value=target,
            )

    async def _assert_not_visible(self, step: Step) -> None:
        target = step.target or ""
        if await self._is_visible(target):
            raise StepFailure(
                f'Expected "{target}" to NOT be visible but it was found',
                step_id=step.id,
                action=step.action.value,
                target=target,
            )

    async def _assert_element_exists(self, step: Step) -> None:
        target = step.target or ""

        async def exists() -> bool:
            return await self._count(target) > 0

        if not await self._poll(exists, self.element_timeout_ms):
            raise StepFailure(
                f'Expected element "{target}" to exist but it was not found',
                step_id=step.id,
                action=step.action.value,
                target=target,
            )

    async def _assert_element_not_exists(self, step: Step) -> None:
        target = step.target or ""
        if await self._count(target) > 0:
            raise StepFailure(
                f'Expected element "{target}" to NOT exist but it was found',
                step_id=step.id,
                action=step.action.value,
                target=target,
            )

    async def _assert_element_count(self, step: Step) -> None:
        target = step.target or ""
        expected_count = int(step.value or 0)
        actual_count = await self._count(target)
        if actual_count != expected_count:
            raise StepFailure(
                f'Expected {expected_count} elements matching "{target}" but found {actual_count}',
                step_id=step.id,
                action=step.action.value,
                target=target,
                actual_value=str(actual_count),
                expected_value=str(expected_count),
            )

    async def _wait_for(self, step: Step) -> None:
        target = step.target or ""
        if not await self._poll(lambda: self._is_visible(target), self.wait_timeout_ms):
            raise StepFailure(
                f'Timeout waiting for "{target}" after {self.wait_timeout_ms}ms',
                step_id=step.id,
                action=step.action.value,
                target=target,
            )

    async def _wait_for_gone(self, step: Step) -> None:
        target = step.target or ""

        async def gone() -> bool:
            return not await self._is_visible(target)

        if not await self._poll(gone, self.wait_timeout_ms):
            raise StepFailure(
                f'Timeout waiting for "{target}" to disappear after {self.wait_timeout_ms}ms',
                step_id=step.id,
                action=step.action.value,
                target=target,
            )

    async def _back(self, step: Step) -> None:
        await self.page.go_back(timeout=self.navigation_timeout_ms)

    async def _log(self, step: Step) -> None:
        self.logger.info(f"Scenario log: {step.value}", extra={"step_id": step.id})

    async def _platform(self, step: Step) -> None:
        raise StepFailure(
            f"Platform step {step.id} reached the driver without being flattened",
            step_id=step.id,
            action=step.action.value,
        )
