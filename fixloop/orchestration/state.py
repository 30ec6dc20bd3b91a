"""
Orchestrator state management.

Owns the OrchestratorState of one run and validates every per-scenario
phase change and global status change against explicit transition tables.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

from fixloop.core.types import (
    Analysis,
    Fix,
    OrchestratorState,
    OrchestratorStatus,
    ScenarioOutcome,
    ScenarioPhase,
    TestResult,
)
from fixloop.monitoring.logger import get_logger

logger = get_logger(__name__)


class ScenarioTransition(str, Enum):
    """Events that move a scenario between phases."""

    START = "start"
    PASS = "pass"
    FAIL_RETRY = "fail_retry"
    EXHAUST = "exhaust"
    ABORT = "abort"


PHASE_TRANSITIONS: Dict[ScenarioPhase, Dict[ScenarioTransition, ScenarioPhase]] = {
    ScenarioPhase.PENDING: {
        ScenarioTransition.START: ScenarioPhase.RUNNING,
    },
    ScenarioPhase.RUNNING: {
        ScenarioTransition.PASS: ScenarioPhase.PASSED,
        ScenarioTransition.FAIL_RETRY: ScenarioPhase.FAILED_RETRY,
        ScenarioTransition.EXHAUST: ScenarioPhase.FAILED_EXHAUSTED,
        ScenarioTransition.ABORT: ScenarioPhase.FAILED,
    },
    ScenarioPhase.FAILED_RETRY: {
        ScenarioTransition.START: ScenarioPhase.RUNNING,
        ScenarioTransition.ABORT: ScenarioPhase.FAILED,
    },
    ScenarioPhase.PASSED: {},
    ScenarioPhase.FAILED_EXHAUSTED: {},
    ScenarioPhase.FAILED: {},
}

STATUS_TRANSITIONS: Dict[OrchestratorStatus, List[OrchestratorStatus]] = {
    OrchestratorStatus.INITIALIZING: [OrchestratorStatus.RUNNING],
    OrchestratorStatus.RUNNING: [
        OrchestratorStatus.PASSED,
        OrchestratorStatus.FAILED,
        OrchestratorStatus.MAX_RETRIES,
    ],
    OrchestratorStatus.PASSED: [],
    OrchestratorStatus.FAILED: [],
    OrchestratorStatus.MAX_RETRIES: [],
}

TERMINAL_PHASES = frozenset(
    {ScenarioPhase.PASSED, ScenarioPhase.FAILED_EXHAUSTED, ScenarioPhase.FAILED}
)


class OrchestrationStateManager:
    """
    Single writer of an OrchestratorState.

    Stages return values to the orchestrator, which records them here; no
    other component mutates the state.
    """

    def __init__(self, scenario_files: List[str], max_iterations: int) -> None:
        self.state = OrchestratorState(
            scenarios=list(scenario_files),
            max_iterations=max_iterations,
            scenario_outcomes={
                scenario_file: ScenarioOutcome(scenario_file=scenario_file)
                for scenario_file in scenario_files
            },
        )
        self._history: List[Dict[str, Any]] = []
        self._history_limit = 1000

    @property
    def history(self) -> List[Dict[str, Any]]:
        return list(self._history)

    def phase(self, scenario_file: str) -> ScenarioPhase:
        return self.state.scenario_outcomes[scenario_file].phase

    def start(self) -> None:
        """Move the run from initializing to running."""
        self._set_status(OrchestratorStatus.RUNNING)
        self.state.start_time = datetime.now(timezone.utc)

    def begin_attempt(self, scenario_file: str) -> int:
        """Start the next attempt of a scenario and return its number."""
        self.transition(scenario_file, ScenarioTransition.START)
        outcome = self.state.scenario_outcomes[scenario_file]
        outcome.attempts += 1
        self.state.current_scenario = scenario_file
        self.state.iteration = outcome.attempts
        return outcome.attempts

    def transition(
        self, scenario_file: str, transition: ScenarioTransition
    ) -> ScenarioPhase:
        """
        Apply a phase transition to a scenario.

        Raises:
            ValueError: If the scenario is unknown or the transition is invalid
        """
        outcome = self.state.scenario_outcomes.get(scenario_file)
        if outcome is None:
            raise ValueError(f"Unknown scenario: {scenario_file}")

        next_phase = PHASE_TRANSITIONS[outcome.phase].get(transition)
        if next_phase is None:
            raise ValueError(
                f"Invalid transition {transition.value} from phase {outcome.phase.value} "
                f"for scenario {scenario_file}"
            )

        previous = outcome.phase
        outcome.phase = next_phase
        self._record_change(
            {
                "scenario_file": scenario_file,
                "transition": transition.value,
                "from": previous.value,
                "to": next_phase.value,
                "attempts": outcome.attempts,
            }
        )
        return next_phase

    def record_result(self, result: TestResult) -> None:
        self.state.results.append(result)

    def record_analysis(self, analysis: Analysis) -> None:
        self.state.analyses.append(analysis)

    def record_fix(self, fix: Fix) -> None:
        self.state.fixes.append(fix)

    def finish(self) -> OrchestratorStatus:
        """
        Compute and apply the terminal status.

        ``passed`` requires every scenario to have passed, ``max_retries``
        means at least one scenario exhausted its iterations, anything else
        is ``failed``.
        """
        phases = [outcome.phase for outcome in self.state.scenario_outcomes.values()]
        if any(phase == ScenarioPhase.FAILED_EXHAUSTED for phase in phases):
            status = OrchestratorStatus.MAX_RETRIES
        elif phases and all(phase == ScenarioPhase.PASSED for phase in phases):
            status = OrchestratorStatus.PASSED
        else:
            status = OrchestratorStatus.FAILED

        self._set_status(status)
        self.state.current_scenario = None
        self.state.end_time = datetime.now(timezone.utc)
        return status

    def _set_status(self, status: OrchestratorStatus) -> None:
        current = self.state.status
        if status not in STATUS_TRANSITIONS[current]:
            raise ValueError(f"Invalid status transition {current.value} -> {status.value}")
        self.state.status = status
        self._record_change({"status_from": current.value, "status_to": status.value})
        logger.info(f"Orchestrator status: {status.value}")

    def _record_change(self, change: Dict[str, Any]) -> None:
        change["timestamp"] = datetime.now(timezone.utc).isoformat()
        self._history.append(change)
        if len(self._history) > self._history_limit:
            self._history = self._history[-self._history_limit:]
