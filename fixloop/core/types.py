"""
Core data models and types for the FixLoop orchestration framework.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class Platform(str, Enum):
    """Platform a scenario is executed against."""

    WEB = "web"
    IOS = "ios"
    ANDROID = "android"


class ActionType(str, Enum):
    """Closed set of step actions a scenario may use."""

    TAP = "tap"
    TYPE = "type"
    SELECT = "select"
    HOVER = "hover"
    WAIT = "wait"
    SCREENSHOT = "screenshot"
    NAVIGATE = "navigate"
    CLEAR = "clear"
    SWIPE = "swipe"
    SCROLL = "scroll"
    ASSERT_VISIBLE = "assert_visible"
    ASSERT_NOT_VISIBLE = "assert_not_visible"
    ASSERT_ELEMENT_EXISTS = "assert_element_exists"
    ASSERT_ELEMENT_NOT_EXISTS = "assert_element_not_exists"
    ASSERT_ELEMENT_COUNT = "assert_element_count"
    WAIT_FOR = "wait_for"
    WAIT_FOR_GONE = "wait_for_gone"
    BACK = "back"
    LOG = "log"
    PLATFORM = "platform"


# Actions that operate without an element target
TARGETLESS_ACTIONS = frozenset(
    {
        ActionType.WAIT,
        ActionType.SCREENSHOT,
        ActionType.LOG,
        ActionType.BACK,
        ActionType.PLATFORM,
    }
)


class ExpectationType(str, Enum):
    """Post-condition checks that can be attached to a step."""

    URL_EQUALS = "url_equals"
    URL_CONTAINS = "url_contains"
    ELEMENT_VISIBLE = "element_visible"
    ELEMENT_NOT_VISIBLE = "element_not_visible"
    INPUT_VALUE_EQUALS = "input_value_equals"
    TEXT_CONTENT_CONTAINS = "text_content_contains"
    ELEMENT_COUNT_EQUALS = "element_count_equals"


class StepStatus(str, Enum):
    """Status of a single step within one run attempt."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class TestRunStatus(str, Enum):
    """Status of one scenario run attempt."""

    __test__ = False

    PASSED = "passed"
    FAILED = "failed"


class FailureCategory(str, Enum):
    """Root-cause taxonomy used by the failure analyzer."""

    SELECTOR = "selector"
    TIMING = "timing"
    STATE = "state"
    LOGIC = "logic"
    NETWORK = "network"


class ConfidenceLevel(str, Enum):
    """Confidence of an analysis."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class OrchestratorStatus(str, Enum):
    """Global status of an orchestrator run."""

    INITIALIZING = "initializing"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    MAX_RETRIES = "max_retries"


class ScenarioPhase(str, Enum):
    """Per-scenario retry state."""

    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED_RETRY = "failed_retry"
    FAILED_EXHAUSTED = "failed_exhausted"
    FAILED = "failed"


class SelectorStrategy(str, Enum):
    """Element lookup strategies produced by selector resolution."""

    ACCESSIBILITY_ID = "accessibility_id"
    ID = "id"
    XPATH = "xpath"
    TEXT = "text"
    EXACT_TEXT = "exact_text"
    CONTAINS_TEXT = "contains_text"
    CLICKABLE_WITH_TEXT = "clickable_with_text"
    LINK_WITH_TEXT = "link_with_text"
    ANY_WITH_TEXT = "any_with_text"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Expectation(BaseModel):
    """A post-condition checked after a step succeeds."""

    kind: ExpectationType
    expected_value: str = Field(
        "", description="Expected value; for counts written as 'selector:count'"
    )


class Step(BaseModel):
    """One action within a scenario."""

    id: str = Field(..., description="Step identifier, unique within the scenario")
    action: ActionType
    target: Optional[str] = Field(None, description="Element selector or URL")
    value: Optional[str] = Field(
        None, description="Payload such as text to type or a wait duration"
    )
    expectations: List[Expectation] = Field(default_factory=list)
    branches: Dict[Platform, List["Step"]] = Field(
        default_factory=dict,
        description="Nested step sequences for platform branch steps",
    )

    @property
    def label(self) -> str:
        """Human readable description used in analyses and summaries."""
        if self.target:
            return f'{self.action.value} on "{self.target}"'
        return self.action.value


class Scenario(BaseModel):
    """A declarative user-journey test case."""

    name: str = Field(..., min_length=1)
    description: str = ""
    steps: List[Step] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    preconditions: List[str] = Field(default_factory=list)
    postconditions: List[str] = Field(default_factory=list)
    requires: List[str] = Field(
        default_factory=list, description="Scenario ids that must run first"
    )
    source_file: Optional[str] = None


class ResolvedSelector(BaseModel):
    """Concrete lookup strategy for a human-authored selector."""

    strategy: SelectorStrategy
    value: str
    fallbacks: List[SelectorStrategy] = Field(default_factory=list)


class ExpectationOutcome(BaseModel):
    """Result of checking a single expectation."""

    passed: bool
    actual_value: Optional[str] = None
    expected_value: Optional[str] = None
    message: Optional[str] = None


class StepResult(BaseModel):
    """Result of a single step within one run attempt."""

    step_id: str
    action: ActionType
    target: Optional[str] = None
    status: StepStatus
    duration_ms: float = 0.0
    error: Optional[str] = None
    screenshot_path: Optional[str] = None
    actual_value: Optional[str] = None
    expected_value: Optional[str] = None


class TestResult(BaseModel):
    """Outcome of one run attempt of a scenario."""

    __test__ = False

    scenario_name: str
    scenario_file: str
    status: TestRunStatus
    duration_ms: float = 0.0
    steps: List[StepResult] = Field(default_factory=list)
    screenshots: List[str] = Field(default_factory=list)
    console_errors: List[str] = Field(default_factory=list)
    network_errors: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=_utcnow)
    platform: Platform = Platform.WEB
    error: Optional[str] = Field(
        None, description="Driver-level error that ended the attempt"
    )
    aborted: bool = False

    @property
    def failed_step(self) -> Optional[StepResult]:
        """First failed step, if any."""
        for step in self.steps:
            if step.status == StepStatus.FAILED:
                return step
        return None

    @property
    def last_error(self) -> Optional[str]:
        """Error that best explains why this attempt failed."""
        failed = self.failed_step
        if failed and failed.error:
            return failed.error
        return self.error


class Analysis(BaseModel):
    """Classification of a failed run with a suggested fix."""

    scenario: str
    scenario_file: str
    failed_step: str = ""
    failed_step_id: Optional[str] = None
    root_cause: str
    category: FailureCategory
    affected_files: List[str] = Field(default_factory=list, max_length=5)
    suggested_fix: str
    confidence: ConfidenceLevel
    timestamp: datetime = Field(default_factory=_utcnow)


class FileModification(BaseModel):
    """Record of a file touched by a fix."""

    file_path: str
    original_content: str
    modified_content: str
    change_description: str = ""


class Fix(BaseModel):
    """Outcome of applying a fix for an analysis."""

    analysis: Analysis
    files_modified: List[FileModification] = Field(default_factory=list)
    compile_valid: bool = False
    timestamp: datetime = Field(default_factory=_utcnow)


class ScenarioOutcome(BaseModel):
    """Per-scenario retry bookkeeping kept by the orchestrator."""

    scenario_file: str
    phase: ScenarioPhase = ScenarioPhase.PENDING
    attempts: int = 0


class OrchestratorState(BaseModel):
    """State of one orchestrator run, owned by the orchestrator."""

    scenarios: List[str] = Field(default_factory=list)
    current_scenario: Optional[str] = None
    iteration: int = 0
    max_iterations: int = Field(5, ge=1)
    results: List[TestResult] = Field(default_factory=list)
    analyses: List[Analysis] = Field(default_factory=list)
    fixes: List[Fix] = Field(default_factory=list)
    status: OrchestratorStatus = OrchestratorStatus.INITIALIZING
    start_time: datetime = Field(default_factory=_utcnow)
    end_time: Optional[datetime] = None
    scenario_outcomes: Dict[str, ScenarioOutcome] = Field(default_factory=dict)


class ScenarioReport(BaseModel):
    """Rolled-up view of every attempt for one scenario file."""

    name: str
    file: str
    status: TestRunStatus
    iterations: int
    phase: Optional[ScenarioPhase] = None
    results: List[TestResult] = Field(default_factory=list)
    analyses: List[Analysis] = Field(default_factory=list)
    fixes: List[Fix] = Field(default_factory=list)


class ReportSummary(BaseModel):
    """Summary counts for a final report."""

    total_scenarios: int = 0
    passed: int = 0
    failed: int = 0
    iterations: int = 0
    fixes_applied: int = 0


class FinalReport(BaseModel):
    """Aggregated report for a whole orchestrator run."""

    summary: ReportSummary
    scenarios: List[ScenarioReport] = Field(default_factory=list)
    fixes: List[Fix] = Field(default_factory=list)
    status: OrchestratorStatus
    timestamp: datetime = Field(default_factory=_utcnow)
    duration_ms: float = 0.0


Step.model_rebuild()
