"""
Core module exports.
"""

from fixloop.core.interfaces import (
    ActionDriver,
    ConfigProvider,
    DiagnosticBuffer,
    FixApplier,
)
from fixloop.core.types import (
    ActionType,
    Analysis,
    ConfidenceLevel,
    Expectation,
    ExpectationOutcome,
    ExpectationType,
    FailureCategory,
    FileModification,
    FinalReport,
    Fix,
    OrchestratorState,
    OrchestratorStatus,
    Platform,
    ReportSummary,
    ResolvedSelector,
    Scenario,
    ScenarioOutcome,
    ScenarioPhase,
    ScenarioReport,
    SelectorStrategy,
    Step,
    StepResult,
    StepStatus,
    TestResult,
    TestRunStatus,
)

__all__ = [
    # Interfaces
    "ActionDriver",
    "FixApplier",
    "ConfigProvider",
    "DiagnosticBuffer",
    # Types
    "Platform",
    "ActionType",
    "ExpectationType",
    "StepStatus",
    "TestRunStatus",
    "FailureCategory",
    "ConfidenceLevel",
    "OrchestratorStatus",
    "ScenarioPhase",
    "SelectorStrategy",
    "Expectation",
    "ExpectationOutcome",
    "Step",
    "Scenario",
    "ResolvedSelector",
    "StepResult",
    "TestResult",
    "Analysis",
    "FileModification",
    "Fix",
    "ScenarioOutcome",
    "OrchestratorState",
    "ScenarioReport",
    "ReportSummary",
    "FinalReport",
]
