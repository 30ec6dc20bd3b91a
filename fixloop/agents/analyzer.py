"""
Failure analyzer.

Classifies a failed run into a root-cause category, attributes it to
candidate source files and proposes a fix with a confidence rating. The
classification and attribution heuristics are ordered, data-only tables
where the first match wins.
"""

import re
from pathlib import Path
from typing import List, Optional, Pattern, Tuple, Union

from fixloop.config.settings import get_settings
from fixloop.core.types import (
    Analysis,
    ConfidenceLevel,
    FailureCategory,
    StepResult,
    TestResult,
    TestRunStatus,
)
from fixloop.error_handling.exceptions import AnalysisError
from fixloop.monitoring.logger import get_logger

logger = get_logger(__name__)

MAX_AFFECTED_FILES = 5
ROOT_CAUSE_QUOTE_LIMIT = 200

# (pattern, category, root cause template); templates are formatted with the match groups
FAILURE_PATTERNS: List[Tuple[Pattern[str], FailureCategory, str]] = [
    (
        re.compile(r"Could not find (?:\w+ )?element: (.+)", re.IGNORECASE),
        FailureCategory.SELECTOR,
        'Element "{0}" not found - selector may be incorrect or element not rendered',
    ),
    (
        re.compile(r'Expected "(.+)" to be visible', re.IGNORECASE),
        FailureCategory.SELECTOR,
        'Element "{0}" not visible - may not be rendered or wrong selector',
    ),
    (
        re.compile(r"Timeout", re.IGNORECASE),
        FailureCategory.TIMING,
        "Operation timed out - async operation may be slow or not completing",
    ),
    (
        re.compile(r'Expected URL to (?:be|contain) "(.+)" but got "(.+)"', re.IGNORECASE),
        FailureCategory.STATE,
        'Navigation issue: expected "{0}" but at "{1}"',
    ),
    (
        re.compile(r'Expected input value to be "(.*)" but got "(.*)"', re.IGNORECASE),
        FailureCategory.STATE,
        'State mismatch: expected "{0}" but got "{1}"',
    ),
    (
        re.compile(r"Page Error: (.+)", re.IGNORECASE),
        FailureCategory.LOGIC,
        "JavaScript error: {0}",
    ),
    (
        re.compile(r"NetworkError|Failed to fetch|net::ERR", re.IGNORECASE),
        FailureCategory.NETWORK,
        "Network request failed",
    ),
]

# (keyword pattern, candidate files) matched against the failed step's target and id
FILE_MAPPINGS: List[Tuple[Pattern[str], List[str]]] = [
    (
        re.compile(r"template", re.IGNORECASE),
        [
            "src/pages/TemplatePage.tsx",
            "src/components/templates/TemplateForm.tsx",
            "src/components/templates/TemplateList.tsx",
        ],
    ),
    (
        re.compile(r"workout|exercise|set", re.IGNORECASE),
        [
            "src/pages/HomePage.tsx",
            "src/components/workout/ExerciseCard.tsx",
            "src/components/workout/ExerciseList.tsx",
            "src/stores/workoutStore.ts",
        ],
    ),
    (
        re.compile(r"history|session", re.IGNORECASE),
        [
            "src/pages/HistoryPage.tsx",
            "src/components/history/HistoryList.tsx",
            "src/components/history/SessionDetail.tsx",
        ],
    ),
    (re.compile(r"settings", re.IGNORECASE), ["src/pages/SettingsPage.tsx"]),
    (
        re.compile(r"button|click|modal", re.IGNORECASE),
        ["src/components/common/Button.tsx", "src/components/common/Modal.tsx"],
    ),
    (re.compile(r"input|fill|form", re.IGNORECASE), ["src/components/common/Input.tsx"]),
    (re.compile(r"navigate|url|route", re.IGNORECASE), ["src/App.tsx"]),
]

# Entry points used when no keyword matches
DEFAULT_FILES: List[str] = ["src/App.tsx", "src/pages/HomePage.tsx"]

FIX_TEMPLATES = {
    FailureCategory.SELECTOR: (
        'Check and update the selector for "{target}" in {primary_file}. The element may '
        "have a different class, id, or text content. Consider adding stable test "
        "identifiers (data-testid or accessibility labels) for more reliable selectors."
    ),
    FailureCategory.TIMING: (
        'Add explicit wait conditions before the "{action}" action. The element may be '
        "loading asynchronously. Consider a waitFor step or waiting for the loading "
        "indicator to disappear."
    ),
    FailureCategory.STATE: (
        'Verify the application state before step "{step_id}". The expected state '
        '"{expected}" doesn\'t match actual "{actual}". Check the state management logic '
        "in {primary_file}."
    ),
    FailureCategory.LOGIC: (
        "Fix the JavaScript error in {primary_file}. {root_cause}. Review the component "
        "logic and error boundaries."
    ),
    FailureCategory.NETWORK: (
        "Check the API endpoint and network handling. Ensure the backend is running and "
        "the endpoint is accessible. Consider adding error handling for failed requests."
    ),
}

PRIMARY_FILE_FALLBACKS = {
    FailureCategory.SELECTOR: "the relevant component",
    FailureCategory.TIMING: "the relevant component",
    FailureCategory.STATE: "the store/hooks",
    FailureCategory.LOGIC: "the application code",
    FailureCategory.NETWORK: "the API client",
}


def classify(
    error: str, console_errors: List[str], network_errors: List[str]
) -> Tuple[FailureCategory, str]:
    """
    Determine the failure category and root cause.

    Console errors take precedence over network errors, which take
    precedence over the step's own error message.
    """
    if console_errors:
        quoted = next((e for e in console_errors if "Error" in e), console_errors[0])
        return FailureCategory.LOGIC, f"JavaScript error: {quoted[:ROOT_CAUSE_QUOTE_LIMIT]}"

    if network_errors:
        return FailureCategory.NETWORK, f"Network failure: {network_errors[0]}"

    for pattern, category, template in FAILURE_PATTERNS:
        match = pattern.search(error)
        if match:
            return category, template.format(*match.groups())

    return (
        FailureCategory.SELECTOR,
        error or "Unknown error - step failed without specific error message",
    )


def determine_confidence(
    category: FailureCategory,
    affected_files: List[str],
    target: Optional[str],
    error: Optional[str],
) -> ConfidenceLevel:
    """Rate how much an analysis can be trusted."""
    if 1 <= len(affected_files) <= 2:
        if category == FailureCategory.SELECTOR and target:
            return ConfidenceLevel.HIGH
        if category == FailureCategory.LOGIC and error and "Error" in error:
            return ConfidenceLevel.HIGH
    if affected_files or error:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


class FailureAnalyzer:
    """Turns a failed TestResult into an Analysis."""

    def __init__(
        self,
        project_root: Optional[Union[str, Path]] = None,
        require_existing_files: Optional[bool] = None,
        max_files: Optional[int] = None,
    ) -> None:
        """
        Initialize the analyzer.

        Args:
            project_root: Application source root used for file attribution
            require_existing_files: Only keep candidate files present under the root
            max_files: Maximum candidate files per analysis (at most 5)
        """
        settings = get_settings()
        self.project_root = Path(project_root or settings.project_root)
        self.require_existing_files = (
            settings.require_existing_files
            if require_existing_files is None
            else require_existing_files
        )
        self.max_files = min(max_files or settings.max_affected_files, MAX_AFFECTED_FILES)

    def analyze(self, test_result: TestResult) -> Analysis:
        """
        Analyze a failed run.

        Raises:
            AnalysisError: The result did not fail
        """
        if test_result.status != TestRunStatus.FAILED:
            raise AnalysisError(
                f"Cannot analyze a {test_result.status.value} result",
                scenario_file=test_result.scenario_file,
            )

        failed_step = test_result.failed_step
        if failed_step is None:
            return self._generic_analysis(test_result)

        error = failed_step.error or ""
        category, root_cause = classify(
            error, test_result.console_errors, test_result.network_errors
        )
        affected_files = self.identify_affected_files(failed_step)
        confidence = determine_confidence(category, affected_files, failed_step.target, error)
        suggested_fix = self.suggest_fix(failed_step, category, root_cause, affected_files)

        analysis = Analysis(
            scenario=test_result.scenario_name,
            scenario_file=test_result.scenario_file,
            failed_step=f'{failed_step.action.value} on "{failed_step.target or ""}"',
            failed_step_id=failed_step.step_id,
            root_cause=root_cause,
            category=category,
            affected_files=affected_files,
            suggested_fix=suggested_fix,
            confidence=confidence,
        )

        logger.info(
            f"Analyzed failure: {root_cause}",
            extra={
                "scenario_file": test_result.scenario_file,
                "step_id": failed_step.step_id,
                "category": category.value,
            },
        )
        return analysis

    def identify_affected_files(self, failed_step: StepResult) -> List[str]:
        """Map the failed step's target and id onto candidate source files."""
        search_text = f"{failed_step.target or ''} {failed_step.step_id}".lower()

        files: List[str] = []
        for pattern, candidates in FILE_MAPPINGS:
            if pattern.search(search_text):
                files.extend(f for f in candidates if f not in files and self._exists(f))

        if not files:
            files = [f for f in DEFAULT_FILES if self._exists(f)]

        return files[: self.max_files]

    def suggest_fix(
        self,
        failed_step: Optional[StepResult],
        category: FailureCategory,
        root_cause: str,
        affected_files: List[str],
    ) -> str:
        """Render the fix suggestion template for a category."""
        primary_file = affected_files[0] if affected_files else PRIMARY_FILE_FALLBACKS[category]
        return FIX_TEMPLATES[category].format(
            target=(failed_step.target if failed_step else None) or "",
            action=failed_step.action.value if failed_step else "",
            step_id=failed_step.step_id if failed_step else "",
            expected=(failed_step.expected_value if failed_step else None) or "",
            actual=(failed_step.actual_value if failed_step else None) or "",
            primary_file=primary_file,
            root_cause=root_cause,
        )

    def _exists(self, relative_path: str) -> bool:
        if not self.require_existing_files:
            return True
        return (self.project_root / relative_path).exists()

    def _generic_analysis(self, test_result: TestResult) -> Analysis:
        """Low-confidence analysis for a failed run with no failed step."""
        error = test_result.error or ""
        category, root_cause = classify(
            error, test_result.console_errors, test_result.network_errors
        )
        affected_files = [f for f in DEFAULT_FILES if self._exists(f)][: self.max_files]
        logger.warning(
            "Failed result has no failed step, producing generic analysis",
            extra={"scenario_file": test_result.scenario_file},
        )
        return Analysis(
            scenario=test_result.scenario_name,
            scenario_file=test_result.scenario_file,
            failed_step="",
            failed_step_id=None,
            root_cause=root_cause,
            category=category,
            affected_files=affected_files,
            suggested_fix=self.suggest_fix(None, category, root_cause, affected_files),
            confidence=ConfidenceLevel.LOW,
        )
