"""
Tests for the scenario runner.
"""

import asyncio

import pytest

from fixloop.agents.test_runner import ACTION_TIMEOUTS, GRACE_MS, ScenarioRunner
from fixloop.core.types import (
    ActionType,
    Expectation,
    ExpectationType,
    Platform,
    Step,
    StepStatus,
    TestRunStatus,
)
from fixloop.scenarios.parser import flatten_steps, parse


@pytest.fixture
def runner(tmp_path):
    """Runner writing screenshots under a temporary directory."""
    return ScenarioRunner(
        screenshots_dir=tmp_path / "shots",
        element_timeout_ms=1000,
        wait_timeout_ms=2000,
        navigation_timeout_ms=3000,
        grace_ms=500,
    )


class TestScenarioRunner:
    """Test cases for ScenarioRunner.run()."""

    @pytest.mark.asyncio
    async def test_all_steps_pass(self, runner, make_driver, make_scenario):
        """Test a clean run passes with one result per step."""
        scenario = make_scenario(
            "Happy path",
            [("a", ActionType.NAVIGATE, "/"), ("b", ActionType.TAP, "Start")],
        )
        driver = make_driver()

        result = await runner.run(scenario, driver, scenario_file="happy")

        assert result.status == TestRunStatus.PASSED
        assert [s.status for s in result.steps] == [StepStatus.PASSED, StepStatus.PASSED]
        assert result.error is None
        assert result.aborted is False
        assert driver.executed == ["a", "b"]
        assert driver.torn_down

    @pytest.mark.asyncio
    async def test_failed_step_skips_remainder(self, runner, make_driver, two_step_scenario):
        """Test a missing element fails step 1 and skips step 2."""
        driver = make_driver(failures={"step-1": "Could not find clickable element: Missing Button"})

        result = await runner.run(two_step_scenario, driver, scenario_file="save-workout")

        assert result.status == TestRunStatus.FAILED
        first, second = result.steps
        assert first.status == StepStatus.FAILED
        assert first.error == "Could not find clickable element: Missing Button"
        assert second.status == StepStatus.SKIPPED
        assert driver.executed == ["step-1"]
        assert result.failed_step.step_id == "step-1"

    @pytest.mark.asyncio
    async def test_failure_screenshot(self, runner, make_driver, two_step_scenario, tmp_path):
        """Test a failure screenshot lands in the scenario's directory."""
        driver = make_driver(failures={"step-1": "boom"})

        result = await runner.run(two_step_scenario, driver, scenario_file="flows/save-workout")

        expected = str(tmp_path / "shots" / "flows-save-workout" / "step-1-failure.png")
        assert result.steps[0].screenshot_path == expected
        assert result.screenshots == [expected]

    @pytest.mark.asyncio
    async def test_no_passed_step_after_failure(self, runner, make_driver, make_scenario):
        """Test every step after the first failure is skipped."""
        scenario = make_scenario(
            "Long",
            [(f"s{i}", ActionType.TAP, f"Button {i}") for i in range(6)],
        )
        driver = make_driver(failures={"s2": "nope", "s4": "also nope"})

        result = await runner.run(scenario, driver)

        statuses = [s.status for s in result.steps]
        assert statuses == [
            StepStatus.PASSED,
            StepStatus.PASSED,
            StepStatus.FAILED,
            StepStatus.SKIPPED,
            StepStatus.SKIPPED,
            StepStatus.SKIPPED,
        ]

    @pytest.mark.asyncio
    async def test_failed_expectation_fails_step(self, runner, make_driver, make_scenario):
        """Test a failed expectation is recorded as a step failure."""
        step = Step(
            id="save",
            action=ActionType.TAP,
            target="Save",
            expectations=[Expectation(kind=ExpectationType.URL_CONTAINS, expected_value="/done")],
        )
        scenario = make_scenario("Expect", [step])
        driver = make_driver(
            expectation_failures={"/done": 'Expected URL to contain "/done" but got "/"'}
        )

        result = await runner.run(scenario, driver)

        assert result.status == TestRunStatus.FAILED
        assert result.steps[0].error == 'Expected URL to contain "/done" but got "/"'
        assert result.steps[0].expected_value == "/done"

    @pytest.mark.asyncio
    async def test_expectation_error_fails_step(self, runner, make_driver, make_scenario):
        """Test an exception raised while checking an expectation becomes a failed step."""
        scenario = make_scenario(
            "Count rows",
            [
                Step(
                    id="log",
                    action=ActionType.TAP,
                    target="Log set",
                    expectations=[
                        Expectation(
                            kind=ExpectationType.ELEMENT_COUNT_EQUALS,
                            expected_value=".set-row",
                        )
                    ],
                ),
                ("next", ActionType.TAP, "Finish"),
            ],
        )
        driver = make_driver(
            step_errors={".set-row": ValueError("invalid literal for int() with base 10: '.set-row'")}
        )

        result = await runner.run(scenario, driver, scenario_file="count-rows")

        assert result.status == TestRunStatus.FAILED
        assert result.error is None
        first, second = result.steps
        assert first.status == StepStatus.FAILED
        assert first.error == "ValueError: invalid literal for int() with base 10: '.set-row'"
        assert second.status == StepStatus.SKIPPED
        assert driver.torn_down

    @pytest.mark.asyncio
    async def test_unexpected_step_error_fails_step(self, runner, make_driver, two_step_scenario):
        driver = make_driver(step_errors={"step-1": RuntimeError("Target page crashed")})

        result = await runner.run(two_step_scenario, driver)

        assert result.status == TestRunStatus.FAILED
        assert result.steps[0].error == "RuntimeError: Target page crashed"
        assert result.steps[1].status == StepStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_step_count_matches_flattened_steps(self, runner, make_driver):
        """Test results cover exactly the steps flattened for the driver platform."""
        scenario = parse(
            """
name: Permissions
steps:
  - tap: Start
  - platform:
      android:
        - tap: Allow
      ios:
        - tap: OK
        - tap: Continue
  - see: Home
"""
        )

        for platform in Platform:
            result = await runner.run(scenario, make_driver(platform=platform))
            assert len(result.steps) == len(flatten_steps(scenario.steps, platform))
            assert result.platform == platform

    @pytest.mark.asyncio
    async def test_android_only_branch_under_ios(self, runner, make_driver):
        """Test an android-only branch executes nothing under ios."""
        scenario = parse(
            "name: Android only\nsteps:\n  - platform:\n      android:\n        - tap: Allow\n"
        )
        driver = make_driver(platform=Platform.IOS)

        result = await runner.run(scenario, driver)

        assert result.steps == []
        assert driver.executed == []
        assert result.status == TestRunStatus.PASSED

    @pytest.mark.asyncio
    async def test_driver_error_on_initialize(self, runner, make_driver, two_step_scenario):
        """Test a driver that cannot start yields a failed result without failed steps."""
        driver = make_driver(init_error="Failed to open http://localhost:5173")

        result = await runner.run(two_step_scenario, driver)

        assert result.status == TestRunStatus.FAILED
        assert result.error == "Failed to open http://localhost:5173"
        assert result.failed_step is None
        assert [s.status for s in result.steps] == [StepStatus.SKIPPED, StepStatus.SKIPPED]
        assert driver.torn_down

    @pytest.mark.asyncio
    async def test_teardown_error_is_reported(self, runner, make_driver, make_scenario):
        """Test a teardown failure fails an otherwise passing run."""
        scenario = make_scenario("Teardown", [("a", ActionType.TAP, "Start")])
        driver = make_driver(teardown_error="Failed to stop browser")

        result = await runner.run(scenario, driver)

        assert result.status == TestRunStatus.FAILED
        assert result.error == "Failed to stop browser"

    @pytest.mark.asyncio
    async def test_stop_event_aborts_between_steps(self, runner, make_driver, make_scenario):
        """Test a set stop event aborts before the next step."""
        scenario = make_scenario("Abort", [("a", ActionType.TAP, "A"), ("b", ActionType.TAP, "B")])
        stop_event = asyncio.Event()
        stop_event.set()
        driver = make_driver()

        result = await runner.run(scenario, driver, stop_event=stop_event)

        assert result.aborted is True
        assert result.status == TestRunStatus.FAILED
        assert result.error == "Run aborted before completion"
        assert [s.status for s in result.steps] == [StepStatus.SKIPPED, StepStatus.SKIPPED]
        assert driver.executed == []

    @pytest.mark.asyncio
    async def test_diagnostics_are_collected(self, runner, make_driver, two_step_scenario):
        """Test console and network errors end up on the result."""
        driver = make_driver(
            failures={"step-1": "boom"},
            console_errors=["TypeError: x is undefined"],
            network_errors=["GET /api/templates - net::ERR_CONNECTION_REFUSED"],
        )

        result = await runner.run(two_step_scenario, driver)

        assert result.console_errors == ["TypeError: x is undefined"]
        assert result.network_errors == ["GET /api/templates - net::ERR_CONNECTION_REFUSED"]
        assert driver.diagnostics.console_errors == []

    @pytest.mark.asyncio
    async def test_slow_step_times_out(self, runner, make_driver, make_scenario):
        """Test a hanging driver call fails the step with a timeout."""
        scenario = make_scenario("Slow", [("slow", ActionType.TAP, "Save")])
        driver = make_driver()
        runner.element_timeout_ms = 10
        runner.grace_ms = 10

        async def hang(step):
            await asyncio.sleep(5)

        driver.execute_step = hang

        result = await runner.run(scenario, driver)

        assert result.steps[0].status == StepStatus.FAILED
        assert result.steps[0].error == 'Timeout after 20ms waiting for tap on "Save"'


class TestStepTimeouts:
    """Test cases for per-action timeout selection."""

    def test_every_action_has_a_timeout_class(self):
        assert set(ACTION_TIMEOUTS) == set(ActionType)

    def test_timeouts(self, runner):
        def step(action, value=None):
            return Step(id="x", action=action, target="t", value=value)

        assert runner.step_timeout_ms(step(ActionType.TAP)) == 1500
        assert runner.step_timeout_ms(step(ActionType.WAIT_FOR)) == 2500
        assert runner.step_timeout_ms(step(ActionType.NAVIGATE)) == 3500
        assert runner.step_timeout_ms(step(ActionType.WAIT, "2s")) == 2500

    def test_default_grace(self):
        assert ScenarioRunner().grace_ms == GRACE_MS
