"""
Shared fixtures for FixLoop tests.
"""

from pathlib import Path
from typing import Dict, List, Optional

import pytest

from fixloop.config.settings import get_settings
from fixloop.core.interfaces import ActionDriver
from fixloop.core.types import (
    ActionType,
    Expectation,
    ExpectationOutcome,
    Platform,
    Scenario,
    Step,
)
from fixloop.error_handling.exceptions import DriverError, StepFailure


class ScriptedDriver(ActionDriver):
    """In-memory driver whose failures are scripted per step id."""

    name = "scripted"

    def __init__(
        self,
        failures: Optional[Dict[str, str]] = None,
        expectation_failures: Optional[Dict[str, str]] = None,
        step_errors: Optional[Dict[str, Exception]] = None,
        console_errors: Optional[List[str]] = None,
        network_errors: Optional[List[str]] = None,
        platform: Platform = Platform.WEB,
        init_error: Optional[str] = None,
        teardown_error: Optional[str] = None,
        location: str = "http://localhost:5173/",
    ) -> None:
        super().__init__(platform=platform)
        self.failures = dict(failures or {})
        self.expectation_failures = dict(expectation_failures or {})
        # Raw exceptions keyed by step id or expected value
        self.step_errors = dict(step_errors or {})
        self.console_errors = list(console_errors or [])
        self.network_errors = list(network_errors or [])
        self.init_error = init_error
        self.teardown_error = teardown_error
        self.location = location

        self.executed: List[str] = []
        self.screenshots: List[str] = []
        self.initialized = False
        self.torn_down = False

    async def initialize(self) -> None:
        if self.init_error:
            raise DriverError(self.init_error, driver=self.name, operation="initialize")
        self.initialized = True
        for message in self.console_errors:
            self.diagnostics.record_console_error(message)
        for message in self.network_errors:
            self.diagnostics.record_network_error(message)

    async def execute_step(self, step: Step) -> Optional[str]:
        self.executed.append(step.id)
        if step.id in self.step_errors:
            raise self.step_errors[step.id]
        if step.id in self.failures:
            raise StepFailure(
                self.failures[step.id],
                step_id=step.id,
                action=step.action.value,
                target=step.target,
            )
        if step.action == ActionType.SCREENSHOT:
            return await self.take_screenshot(step.value or step.id, self.screenshot_dir)
        return None

    async def check_expectation(self, expectation: Expectation) -> ExpectationOutcome:
        if expectation.expected_value in self.step_errors:
            raise self.step_errors[expectation.expected_value]
        message = self.expectation_failures.get(expectation.expected_value)
        if message:
            return ExpectationOutcome(
                passed=False, expected_value=expectation.expected_value, message=message
            )
        return ExpectationOutcome(passed=True, expected_value=expectation.expected_value)

    async def take_screenshot(self, name: str, directory: Path) -> str:
        path = str(Path(directory) / f"{name}.png")
        self.screenshots.append(path)
        return path

    async def get_current_location(self) -> str:
        return self.location

    async def teardown(self) -> None:
        self.torn_down = True
        if self.teardown_error:
            raise DriverError(self.teardown_error, driver=self.name, operation="teardown")


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Run every test from an empty working directory with fresh settings."""
    monkeypatch.chdir(tmp_path)
    for name in ("OPENAI_API_KEY", "MAX_ITERATIONS", "BASE_URL", "LOG_LEVEL", "AUTO_APPLY"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def make_driver():
    """Build scripted drivers."""
    return ScriptedDriver


@pytest.fixture
def make_scenario():
    """Build a scenario from (id, action, target, value) tuples."""

    def build(name: str = "Sample scenario", steps=None, **kwargs) -> Scenario:
        built = [
            step if isinstance(step, Step) else Step(
                id=step[0],
                action=step[1],
                target=step[2] if len(step) > 2 else None,
                value=step[3] if len(step) > 3 else None,
            )
            for step in (steps or [])
        ]
        return Scenario(name=name, steps=built, **kwargs)

    return build


@pytest.fixture
def two_step_scenario(make_scenario):
    """Tap a button, then assert a confirmation is visible."""
    return make_scenario(
        "Save workout",
        [
            ("step-1", ActionType.TAP, "Missing Button"),
            ("step-2", ActionType.ASSERT_VISIBLE, "Done"),
        ],
    )
