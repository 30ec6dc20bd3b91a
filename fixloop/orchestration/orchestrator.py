"""
Retry orchestrator.

For each scenario: run, and while attempts remain, analyze the failure,
optionally apply a fix and run again. The final attempt is never analyzed.
"""

import asyncio
from typing import Callable, Dict, Optional

from fixloop.agents.analyzer import FailureAnalyzer
from fixloop.agents.fix_applier import create_fix_applier
from fixloop.agents.test_runner import ScenarioRunner
from fixloop.config.settings import get_settings
from fixloop.core.interfaces import ActionDriver, FixApplier
from fixloop.core.types import (
    OrchestratorState,
    Scenario,
    ScenarioPhase,
    TestResult,
    TestRunStatus,
)
from fixloop.error_handling.exceptions import FixApplicationError
from fixloop.monitoring.logger import get_logger, log_test_event
from fixloop.monitoring.reporter import ReportGenerator
from fixloop.orchestration.state import OrchestrationStateManager, ScenarioTransition

logger = get_logger(__name__)

DriverFactory = Callable[[], ActionDriver]


class Orchestrator:
    """Coordinates run, analyze, fix and retry across a batch of scenarios."""

    def __init__(
        self,
        driver_factory: DriverFactory,
        runner: Optional[ScenarioRunner] = None,
        analyzer: Optional[FailureAnalyzer] = None,
        fix_applier: Optional[FixApplier] = None,
        reporter: Optional[ReportGenerator] = None,
        max_iterations: Optional[int] = None,
        auto_apply: Optional[bool] = None,
        stop_on_first_failure: Optional[bool] = None,
        parallel_scenarios: Optional[bool] = None,
        max_parallel_scenarios: Optional[int] = None,
        max_duration_seconds: Optional[float] = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            driver_factory: Creates a fresh driver session for each attempt
            runner: Scenario runner
            analyzer: Failure analyzer
            fix_applier: Fix applier used when auto-apply is enabled
            reporter: Persists per-stage artifacts when provided
            max_iterations: Maximum attempts per scenario
            auto_apply: Apply fixes between attempts
            stop_on_first_failure: Stop the batch once a scenario ends failed
            parallel_scenarios: Run scenarios concurrently
            max_parallel_scenarios: Concurrency bound in parallel mode
            max_duration_seconds: Wall-clock ceiling for the whole run
        """
        settings = get_settings()
        self.driver_factory = driver_factory
        self.runner = runner or ScenarioRunner()
        self.analyzer = analyzer or FailureAnalyzer()
        self.auto_apply = settings.auto_apply if auto_apply is None else auto_apply
        self.fix_applier = fix_applier
        if self.fix_applier is None and self.auto_apply:
            self.fix_applier = create_fix_applier(settings)
        self.reporter = reporter
        self.max_iterations = max_iterations or settings.max_iterations
        self.stop_on_first_failure = (
            settings.stop_on_first_failure
            if stop_on_first_failure is None
            else stop_on_first_failure
        )
        self.parallel_scenarios = (
            settings.parallel_scenarios if parallel_scenarios is None else parallel_scenarios
        )
        self.max_parallel_scenarios = max_parallel_scenarios or settings.max_parallel_scenarios
        self.max_duration_seconds = (
            max_duration_seconds
            if max_duration_seconds is not None
            else settings.max_duration_seconds
        )

        self._stop_event: Optional[asyncio.Event] = None
        self._halted = False
        self.state_manager: Optional[OrchestrationStateManager] = None

    def request_stop(self) -> None:
        """Stop starting new attempts and abort in-flight runs between steps."""
        if self._stop_event is not None:
            self._stop_event.set()

    @property
    def stopping(self) -> bool:
        return self._halted or (self._stop_event is not None and self._stop_event.is_set())

    async def run(self, scenarios: Dict[str, Scenario]) -> OrchestratorState:
        """
        Process a batch of scenarios.

        Args:
            scenarios: Scenarios keyed by scenario file identifier, in run order

        Returns:
            Final orchestrator state
        """
        self.state_manager = OrchestrationStateManager(list(scenarios), self.max_iterations)
        self._stop_event = asyncio.Event()
        self._halted = False
        self.state_manager.start()

        logger.info(
            f"Running {len(scenarios)} scenarios",
            extra={
                "max_iterations": self.max_iterations,
                "parallel": self.parallel_scenarios,
            },
        )

        ceiling = None
        if self.max_duration_seconds:
            ceiling = asyncio.get_running_loop().call_later(
                self.max_duration_seconds, self._on_ceiling
            )

        try:
            if self.parallel_scenarios:
                await self._run_parallel(scenarios)
            else:
                for scenario_file, scenario in scenarios.items():
                    if self.stopping:
                        break
                    await self._run_scenario(scenario_file, scenario)
        finally:
            if ceiling is not None:
                ceiling.cancel()

        status = self.state_manager.finish()
        log_test_event("orchestrator_finished", "*", data={"status": status.value})
        return self.state_manager.state

    async def _run_parallel(self, scenarios: Dict[str, Scenario]) -> None:
        semaphore = asyncio.Semaphore(self.max_parallel_scenarios)

        async def bounded(scenario_file: str, scenario: Scenario) -> None:
            async with semaphore:
                if self.stopping:
                    return
                await self._run_scenario(scenario_file, scenario)

        await asyncio.gather(
            *(bounded(scenario_file, scenario) for scenario_file, scenario in scenarios.items())
        )

    def _on_ceiling(self) -> None:
        logger.warning(
            f"Wall-clock ceiling of {self.max_duration_seconds}s reached, stopping",
        )
        self.request_stop()

    async def _run_scenario(self, scenario_file: str, scenario: Scenario) -> ScenarioPhase:
        tracker = self.state_manager

        for attempt in range(1, self.max_iterations + 1):
            if self._stop_event.is_set():
                if tracker.phase(scenario_file) == ScenarioPhase.FAILED_RETRY:
                    tracker.transition(scenario_file, ScenarioTransition.ABORT)
                break

            tracker.begin_attempt(scenario_file)
            logger.info(
                f"[Iteration {attempt}/{self.max_iterations}] {scenario.name}",
                extra={"scenario_file": scenario_file, "iteration": attempt},
            )

            result = await self.runner.run(
                scenario,
                self.driver_factory(),
                scenario_file=scenario_file,
                stop_event=self._stop_event,
            )
            tracker.record_result(result)
            if self.reporter:
                self.reporter.save_test_result(result, attempt)

            if result.status == TestRunStatus.PASSED:
                tracker.transition(scenario_file, ScenarioTransition.PASS)
                break

            if result.aborted:
                # Aborted runs are not analyzed or retried
                tracker.transition(scenario_file, ScenarioTransition.ABORT)
                break

            if attempt == self.max_iterations:
                tracker.transition(scenario_file, ScenarioTransition.EXHAUST)
                break

            tracker.transition(scenario_file, ScenarioTransition.FAIL_RETRY)
            await self._analyze_and_fix(result)

        phase = tracker.phase(scenario_file)
        if phase in (ScenarioPhase.FAILED, ScenarioPhase.FAILED_EXHAUSTED):
            logger.warning(
                f"Scenario failed: {scenario.name} ({phase.value})",
                extra={"scenario_file": scenario_file},
            )
            if self.stop_on_first_failure:
                self._halted = True
        return phase

    async def _analyze_and_fix(self, result: TestResult) -> None:
        tracker = self.state_manager
        analysis = self.analyzer.analyze(result)
        tracker.record_analysis(analysis)
        if self.reporter:
            self.reporter.save_analysis(analysis)

        if not self.auto_apply or self.fix_applier is None:
            return

        try:
            fix = await self.fix_applier.apply(analysis)
        except FixApplicationError as e:
            logger.error(
                f"Fix application failed: {e.message}",
                extra={"scenario_file": analysis.scenario_file},
            )
            return

        tracker.record_fix(fix)
        if self.reporter:
            self.reporter.save_fix(fix)
