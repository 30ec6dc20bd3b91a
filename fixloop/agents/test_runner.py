"""
Scenario runner.

Drives one scenario to completion through an action driver and collects
step results, screenshots and diagnostics into a TestResult. Step failures
are recovered into step results; only the remainder of the run is skipped.
"""

import asyncio
from pathlib import Path
from typing import Dict, List, Optional

from fixloop.config.settings import get_settings
from fixloop.core.interfaces import ActionDriver
from fixloop.core.types import (
    ActionType,
    Scenario,
    Step,
    StepResult,
    StepStatus,
    TestResult,
    TestRunStatus,
)
from fixloop.error_handling.exceptions import DriverError, StepFailure
from fixloop.monitoring.logger import get_logger, log_test_event
from fixloop.monitoring.reporter import artifact_name
from fixloop.scenarios.parser import flatten_steps, parse_duration

logger = get_logger(__name__)

# Slack on top of the driver's own timeouts before the runner gives up on a call
GRACE_MS = 5000

ELEMENT = "element"
EXPLICIT_WAIT = "explicit_wait"
NAVIGATION = "navigation"
AUTHOR_WAIT = "author_wait"

# Which timeout bounds each action
ACTION_TIMEOUTS: Dict[ActionType, str] = {
    ActionType.TAP: ELEMENT,
    ActionType.TYPE: ELEMENT,
    ActionType.SELECT: ELEMENT,
    ActionType.HOVER: ELEMENT,
    ActionType.WAIT: AUTHOR_WAIT,
    ActionType.SCREENSHOT: ELEMENT,
    ActionType.NAVIGATE: NAVIGATION,
    ActionType.CLEAR: ELEMENT,
    ActionType.SWIPE: ELEMENT,
    ActionType.SCROLL: ELEMENT,
    ActionType.ASSERT_VISIBLE: ELEMENT,
    ActionType.ASSERT_NOT_VISIBLE: ELEMENT,
    ActionType.ASSERT_ELEMENT_EXISTS: ELEMENT,
    ActionType.ASSERT_ELEMENT_NOT_EXISTS: ELEMENT,
    ActionType.ASSERT_ELEMENT_COUNT: ELEMENT,
    ActionType.WAIT_FOR: EXPLICIT_WAIT,
    ActionType.WAIT_FOR_GONE: EXPLICIT_WAIT,
    ActionType.BACK: NAVIGATION,
    ActionType.LOG: ELEMENT,
    ActionType.PLATFORM: ELEMENT,
}

_untimed = set(ActionType) - set(ACTION_TIMEOUTS)
if _untimed:
    raise ImportError(f"No timeout class for actions: {sorted(a.value for a in _untimed)}")


class ScenarioRunner:
    """Runs one scenario attempt against a driver."""

    def __init__(
        self,
        screenshots_dir: Optional[Path] = None,
        element_timeout_ms: Optional[int] = None,
        wait_timeout_ms: Optional[int] = None,
        navigation_timeout_ms: Optional[int] = None,
        screenshot_on_failure: Optional[bool] = None,
        screenshot_on_step: Optional[bool] = None,
        grace_ms: int = GRACE_MS,
    ) -> None:
        settings = get_settings()
        self.screenshots_dir = Path(screenshots_dir or settings.screenshots_dir)
        self.element_timeout_ms = element_timeout_ms or settings.element_timeout_ms
        self.wait_timeout_ms = wait_timeout_ms or settings.wait_timeout_ms
        self.navigation_timeout_ms = navigation_timeout_ms or settings.navigation_timeout_ms
        self.screenshot_on_failure = (
            settings.screenshot_on_failure if screenshot_on_failure is None else screenshot_on_failure
        )
        self.screenshot_on_step = (
            settings.screenshot_on_step if screenshot_on_step is None else screenshot_on_step
        )
        self.grace_ms = grace_ms

    def step_timeout_ms(self, step: Step) -> float:
        """Upper bound for one driver call executing ``step``."""
        timeout_class = ACTION_TIMEOUTS[step.action]
        if timeout_class == AUTHOR_WAIT:
            try:
                base = parse_duration(step.value or "0ms")
            except ValueError:
                base = 0.0
        elif timeout_class == EXPLICIT_WAIT:
            base = self.wait_timeout_ms
        elif timeout_class == NAVIGATION:
            base = self.navigation_timeout_ms
        else:
            base = self.element_timeout_ms
        return base + self.grace_ms

    async def run(
        self,
        scenario: Scenario,
        driver: ActionDriver,
        scenario_file: Optional[str] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> TestResult:
        """
        Execute a scenario attempt.

        Args:
            scenario: Scenario to run
            driver: Driver session owned by this attempt
            scenario_file: Identifier the result is grouped under
            stop_event: Cooperative cancellation flag checked between steps

        Returns:
            Result of the attempt; never raises for step or driver failures
        """
        scenario_file = scenario_file or scenario.source_file or scenario.name
        steps = flatten_steps(scenario.steps, driver.platform)
        artifact_dir = self.screenshots_dir / artifact_name(scenario_file)
        driver.screenshot_dir = artifact_dir
        driver.diagnostics.reset()

        loop = asyncio.get_running_loop()
        started = loop.time()
        results: List[StepResult] = []
        screenshots: List[str] = []
        driver_error: Optional[str] = None
        aborted = False

        log_test_event(
            "scenario_started",
            scenario_file,
            data={"steps": len(steps), "platform": driver.platform.value},
        )

        try:
            await asyncio.wait_for(
                driver.initialize(),
                (self.navigation_timeout_ms + self.grace_ms) / 1000,
            )

            failed = False
            for step in steps:
                if failed:
                    results.append(self._skipped(step))
                    continue
                if stop_event is not None and stop_event.is_set():
                    aborted = True
                    break

                result = await self._execute_step(step, driver, artifact_dir)
                if result.screenshot_path:
                    screenshots.append(result.screenshot_path)

                if result.status == StepStatus.FAILED:
                    failed = True
                    if self.screenshot_on_failure:
                        path = await self._failure_screenshot(step, driver, artifact_dir)
                        if path:
                            result.screenshot_path = result.screenshot_path or path
                            screenshots.append(path)
                results.append(result)
        except DriverError as e:
            logger.error(
                f"Driver error during scenario: {e.message}",
                extra={"scenario_file": scenario_file},
            )
            driver_error = e.message
        except asyncio.TimeoutError:
            driver_error = "Timeout while starting the driver session"
            logger.error(driver_error, extra={"scenario_file": scenario_file})
        finally:
            teardown_error = await self._teardown(driver, scenario_file)
            if teardown_error and driver_error is None:
                driver_error = teardown_error

        # Steps never reached (driver error or abort) are recorded as skipped
        for step in steps[len(results):]:
            results.append(self._skipped(step))

        diagnostics = driver.diagnostics.drain()
        failed_steps = any(result.status == StepStatus.FAILED for result in results)
        passed = not failed_steps and driver_error is None and not aborted
        duration_ms = (loop.time() - started) * 1000

        test_result = TestResult(
            scenario_name=scenario.name,
            scenario_file=scenario_file,
            status=TestRunStatus.PASSED if passed else TestRunStatus.FAILED,
            duration_ms=duration_ms,
            steps=results,
            screenshots=screenshots,
            console_errors=diagnostics["console_errors"],
            network_errors=diagnostics["network_errors"],
            platform=driver.platform,
            error=driver_error or ("Run aborted before completion" if aborted else None),
            aborted=aborted,
        )

        log_test_event(
            "scenario_finished",
            scenario_file,
            data={"status": test_result.status.value, "duration_ms": round(duration_ms, 1)},
        )
        return test_result

    async def _execute_step(
        self, step: Step, driver: ActionDriver, artifact_dir: Path
    ) -> StepResult:
        loop = asyncio.get_running_loop()
        started = loop.time()
        timeout_ms = self.step_timeout_ms(step)

        def elapsed() -> float:
            return (loop.time() - started) * 1000

        try:
            artifact = await asyncio.wait_for(driver.execute_step(step), timeout_ms / 1000)

            for expectation in step.expectations:
                outcome = await asyncio.wait_for(
                    driver.check_expectation(expectation),
                    (self.element_timeout_ms + self.grace_ms) / 1000,
                )
                if not outcome.passed:
                    raise StepFailure(
                        outcome.message
                        or f"Expectation {expectation.kind.value} failed for \"{expectation.expected_value}\"",
                        step_id=step.id,
                        action=step.action.value,
                        target=step.target,
                        actual_value=outcome.actual_value,
                        expected_value=outcome.expected_value,
                    )

            screenshot_path = artifact
            if self.screenshot_on_step and not screenshot_path:
                screenshot_path = await driver.take_screenshot(step.id, artifact_dir)

            return StepResult(
                step_id=step.id,
                action=step.action,
                target=step.target,
                status=StepStatus.PASSED,
                duration_ms=elapsed(),
                screenshot_path=screenshot_path,
            )
        except asyncio.TimeoutError:
            message = f"Timeout after {int(timeout_ms)}ms waiting for {step.label}"
            logger.warning(message, extra={"step_id": step.id})
            return StepResult(
                step_id=step.id,
                action=step.action,
                target=step.target,
                status=StepStatus.FAILED,
                duration_ms=elapsed(),
                error=message,
            )
        except StepFailure as e:
            logger.info(
                f"Step failed: {e.message}",
                extra={"step_id": step.id, "action": step.action.value},
            )
            return StepResult(
                step_id=step.id,
                action=step.action,
                target=step.target,
                status=StepStatus.FAILED,
                duration_ms=elapsed(),
                error=e.message,
                actual_value=e.actual_value,
                expected_value=e.expected_value,
            )
        except DriverError:
            raise
        except Exception as e:
            message = f"{type(e).__name__}: {e}"
            logger.error(
                f"Unexpected error in step: {message}",
                extra={"step_id": step.id, "action": step.action.value},
                exc_info=True,
            )
            return StepResult(
                step_id=step.id,
                action=step.action,
                target=step.target,
                status=StepStatus.FAILED,
                duration_ms=elapsed(),
                error=message,
            )

    async def _failure_screenshot(
        self, step: Step, driver: ActionDriver, artifact_dir: Path
    ) -> Optional[str]:
        try:
            return await asyncio.wait_for(
                driver.take_screenshot(f"{step.id}-failure", artifact_dir),
                (self.element_timeout_ms + self.grace_ms) / 1000,
            )
        except (DriverError, asyncio.TimeoutError) as e:
            logger.warning(
                f"Failure screenshot not captured: {e}",
                extra={"step_id": step.id},
            )
            return None

    async def _teardown(self, driver: ActionDriver, scenario_file: str) -> Optional[str]:
        try:
            await asyncio.wait_for(driver.teardown(), (self.element_timeout_ms + self.grace_ms) / 1000)
        except DriverError as e:
            logger.error(f"Driver teardown failed: {e.message}", extra={"scenario_file": scenario_file})
            return e.message
        except asyncio.TimeoutError:
            logger.error("Driver teardown timed out", extra={"scenario_file": scenario_file})
            return "Timeout while stopping the driver session"
        return None

    @staticmethod
    def _skipped(step: Step) -> StepResult:
        return StepResult(
            step_id=step.id,
            action=step.action,
            target=step.target,
            status=StepStatus.SKIPPED,
            duration_ms=0.0,
        )
