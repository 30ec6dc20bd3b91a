"""
Run reporting for FixLoop.

Aggregates an orchestrator run into a FinalReport and persists per-stage
artifacts (test results, analyses, fixes) plus the final report as JSON,
a plain-text summary and HTML.
"""

import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from jinja2 import Template
from pydantic import BaseModel

from fixloop.config.settings import get_settings
from fixloop.core.types import (
    Analysis,
    FinalReport,
    Fix,
    OrchestratorState,
    ReportSummary,
    ScenarioReport,
    TestResult,
    TestRunStatus,
)
from fixloop.monitoring.logger import get_logger

logger = get_logger(__name__)

SUMMARY_WIDTH = 80
NOT_RUN_ERROR = "Scenario was not run"


def artifact_name(scenario_file: str) -> str:
    """Filesystem-safe name for a scenario file, used for artifacts and screenshots."""
    stem = Path(scenario_file).with_suffix("").as_posix()
    return re.sub(r"[^\w.-]+", "-", stem).strip("-") or "scenario"


def generate_final_report(state: OrchestratorState) -> FinalReport:
    """
    Aggregate an orchestrator state into a final report.

    Results are grouped by scenario file. A scenario passed if any of its
    attempts passed. Scenarios listed in the state that never ran are
    reported as failed with zero iterations.
    """
    order: List[str] = list(state.scenarios)
    grouped: Dict[str, List[TestResult]] = {scenario_file: [] for scenario_file in order}
    for result in state.results:
        if result.scenario_file not in grouped:
            order.append(result.scenario_file)
            grouped[result.scenario_file] = []
        grouped[result.scenario_file].append(result)

    scenarios: List[ScenarioReport] = []
    for scenario_file in order:
        results = grouped[scenario_file]
        passed = any(result.status == TestRunStatus.PASSED for result in results)
        outcome = state.scenario_outcomes.get(scenario_file)
        scenarios.append(
            ScenarioReport(
                name=results[0].scenario_name if results else scenario_file,
                file=scenario_file,
                status=TestRunStatus.PASSED if passed else TestRunStatus.FAILED,
                iterations=len(results),
                phase=outcome.phase if outcome else None,
                results=results,
                analyses=[a for a in state.analyses if a.scenario_file == scenario_file],
                fixes=[f for f in state.fixes if f.analysis.scenario_file == scenario_file],
            )
        )

    passed_count = sum(1 for s in scenarios if s.status == TestRunStatus.PASSED)
    end_time = state.end_time or datetime.now(timezone.utc)

    return FinalReport(
        summary=ReportSummary(
            total_scenarios=len(scenarios),
            passed=passed_count,
            failed=len(scenarios) - passed_count,
            iterations=len(state.results),
            fixes_applied=len(state.fixes),
        ),
        scenarios=scenarios,
        fixes=list(state.fixes),
        status=state.status,
        timestamp=end_time,
        duration_ms=max(0.0, (end_time - state.start_time).total_seconds() * 1000),
    )


def remaining_failures(report: FinalReport) -> List[Dict[str, Optional[str]]]:
    """Last failing step and error for every scenario that did not pass."""
    failures = []
    for scenario in report.scenarios:
        if scenario.status == TestRunStatus.PASSED:
            continue
        if not scenario.results:
            failures.append(
                {"name": scenario.name, "file": scenario.file, "step": None, "error": NOT_RUN_ERROR}
            )
            continue
        last = scenario.results[-1]
        failed_step = last.failed_step
        failures.append(
            {
                "name": scenario.name,
                "file": scenario.file,
                "step": failed_step.step_id if failed_step else None,
                "error": last.last_error or "Unknown error",
            }
        )
    return failures


def render_text_summary(report: FinalReport) -> str:
    """Render a deterministic human-readable summary of a final report."""
    rule = "=" * SUMMARY_WIDTH
    thin = "-" * SUMMARY_WIDTH
    lines = [
        rule,
        "AGENTIC TEST REPORT".center(SUMMARY_WIDTH).rstrip(),
        rule,
        "",
        f"Timestamp: {report.timestamp.isoformat()}",
        f"Duration: {report.duration_ms / 1000:.1f}s",
        f"Status: {report.status.value.upper()}",
        "",
        "SUMMARY",
        thin,
        f"Total Scenarios: {report.summary.total_scenarios}",
        f"Passed: {report.summary.passed}",
        f"Failed: {report.summary.failed}",
        f"Iterations: {report.summary.iterations}",
        f"Fixes Applied: {report.summary.fixes_applied}",
        "",
        "SCENARIO DETAILS",
        thin,
    ]

    for scenario in report.scenarios:
        mark = "✓" if scenario.status == TestRunStatus.PASSED else "✗"
        lines.append(f"{mark} {scenario.name} ({scenario.file})")
        lines.append(f"  Iterations: {scenario.iterations}")
        lines.append(f"  Status: {scenario.status.value.upper()}")

        if scenario.analyses:
            lines.append("  Analyses:")
            for analysis in scenario.analyses:
                lines.append(f"    - Step: {analysis.failed_step}")
                lines.append(f"      Category: {analysis.category.value}")
                lines.append(f"      Root Cause: {analysis.root_cause}")
                lines.append(f"      Confidence: {analysis.confidence.value}")

        if scenario.fixes:
            lines.append("  Fixes Applied:")
            for fix in scenario.fixes:
                if not fix.files_modified:
                    lines.append("    - (no files modified)")
                for modification in fix.files_modified:
                    lines.append(
                        f"    - {modification.file_path}: {modification.change_description}"
                    )
        lines.append("")

    failures = remaining_failures(report)
    if failures:
        lines.append("REMAINING FAILURES")
        lines.append(thin)
        for failure in failures:
            lines.append(f"✗ {failure['name']} ({failure['file']})")
            if failure["step"]:
                lines.append(f"  Step: {failure['step']}")
            lines.append(f"  Error: {failure['error']}")
        lines.append("")

    lines.append(rule)
    return "\n".join(lines) + "\n"


def render_html(report: FinalReport) -> str:
    """Render a final report as a standalone HTML page."""
    return Template(HTML_REPORT_TEMPLATE).render(
        report=report, failures=remaining_failures(report)
    )


class ReportGenerator:
    """Persists per-stage artifacts and final reports under a reports directory."""

    def __init__(self, reports_dir: Optional[Union[str, Path]] = None) -> None:
        self.reports_dir = Path(reports_dir or get_settings().reports_dir)

    def save_test_result(self, result: TestResult, attempt: Optional[int] = None) -> Path:
        suffix = f"-attempt{attempt}" if attempt is not None else ""
        name = f"{artifact_name(result.scenario_file)}{suffix}"
        return self._write_model(name, result)

    def save_analysis(self, analysis: Analysis) -> Path:
        return self._write_model(f"analysis-{artifact_name(analysis.scenario_file)}", analysis)

    def save_fix(self, fix: Fix) -> Path:
        return self._write_model(f"fix-{artifact_name(fix.analysis.scenario_file)}", fix)

    def save_final_report(
        self, report: FinalReport, formats: Sequence[str] = ("json", "text", "html")
    ) -> Dict[str, Path]:
        """
        Save the final report in multiple formats.

        Args:
            report: Aggregated report
            formats: Any of "json", "text" and "html"

        Returns:
            Dict mapping format to file path
        """
        self.reports_dir.mkdir(parents=True, exist_ok=True)
        stamp = _timestamp(report.timestamp)
        saved: Dict[str, Path] = {}

        if "json" in formats:
            saved["json"] = self.reports_dir / f"final-report-{stamp}.json"
            saved["json"].write_text(report.model_dump_json(indent=2), encoding="utf-8")

        if "text" in formats:
            saved["text"] = self.reports_dir / f"summary-{stamp}.txt"
            saved["text"].write_text(render_text_summary(report), encoding="utf-8")

        if "html" in formats:
            saved["html"] = self.reports_dir / f"report-{stamp}.html"
            saved["html"].write_text(render_html(report), encoding="utf-8")

        logger.info(f"Saved final report to {self.reports_dir} in formats: {list(saved)}")
        return saved

    def _write_model(self, name: str, model: BaseModel) -> Path:
        self.reports_dir.mkdir(parents=True, exist_ok=True)
        path = self.reports_dir / f"{name}-{_timestamp()}.json"
        path.write_text(model.model_dump_json(indent=2), encoding="utf-8")
        logger.debug("Saved report artifact", extra={"path": str(path)})
        return path


def _timestamp(moment: Optional[datetime] = None) -> str:
    return (moment or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%S%f")


HTML_REPORT_TEMPLATE = """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>FixLoop Report: {{ report.status.value }}</title>
    <style>
        body {
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            margin: 0;
            padding: 20px;
            background: #f5f5f5;
        }
        .container {
            max-width: 1200px;
            margin: 0 auto;
            background: white;
            padding: 30px;
            border-radius: 8px;
            box-shadow: 0 2px 4px rgba(0,0,0,0.1);
        }
        h1 { color: #333; }
        h2 { color: #666; margin-top: 30px; }
        .summary {
            display: grid;
            grid-template-columns: repeat(auto-fit, minmax(160px, 1fr));
            gap: 20px;
            margin: 20px 0;
        }
        .metric {
            background: #f9f9f9;
            padding: 20px;
            border-radius: 6px;
            text-align: center;
        }
        .metric-value { font-size: 2em; font-weight: bold; color: #333; }
        .metric-label { color: #666; margin-top: 5px; }
        .passed { color: #4caf50; }
        .failed { color: #f44336; }
        table { width: 100%; border-collapse: collapse; margin: 20px 0; }
        th, td { padding: 12px; text-align: left; border-bottom: 1px solid #e0e0e0; vertical-align: top; }
        th { background: #f5f5f5; font-weight: 600; }
        .failure {
            background: #ffebee;
            border-left: 4px solid #f44336;
            padding: 15px;
            margin: 10px 0;
            border-radius: 4px;
        }
        code { background: #f5f5f5; padding: 2px 4px; border-radius: 3px; }
    </style>
</head>
<body>
    <div class="container">
        <h1>FixLoop Report</h1>
        <p>
            Generated {{ report.timestamp.isoformat() }}.
            Duration {{ "%.1f"|format(report.duration_ms / 1000) }}s.
            Status <strong class="{{ 'passed' if report.status.value == 'passed' else 'failed' }}">{{ report.status.value|upper }}</strong>
        </p>

        <div class="summary">
            <div class="metric"><div class="metric-value">{{ report.summary.total_scenarios }}</div><div class="metric-label">Scenarios</div></div>
            <div class="metric"><div class="metric-value passed">{{ report.summary.passed }}</div><div class="metric-label">Passed</div></div>
            <div class="metric"><div class="metric-value failed">{{ report.summary.failed }}</div><div class="metric-label">Failed</div></div>
            <div class="metric"><div class="metric-value">{{ report.summary.iterations }}</div><div class="metric-label">Iterations</div></div>
            <div class="metric"><div class="metric-value">{{ report.summary.fixes_applied }}</div><div class="metric-label">Fixes</div></div>
        </div>

        <h2>Scenarios</h2>
        <table>
            <tr><th>Scenario</th><th>Status</th><th>Iterations</th><th>Analyses</th><th>Fixes</th></tr>
            {% for scenario in report.scenarios %}
            <tr>
                <td>{{ scenario.name }}<br><code>{{ scenario.file }}</code></td>
                <td class="{{ scenario.status.value }}">{{ scenario.status.value|upper }}</td>
                <td>{{ scenario.iterations }}</td>
                <td>
                    {% for analysis in scenario.analyses %}
                    <div><strong>{{ analysis.category.value }}</strong> ({{ analysis.confidence.value }}): {{ analysis.root_cause }}</div>
                    {% endfor %}
                </td>
                <td>
                    {% for fix in scenario.fixes %}
                    {% for modification in fix.files_modified %}
                    <div><code>{{ modification.file_path }}</code> {{ modification.change_description }}</div>
                    {% endfor %}
                    {% endfor %}
                </td>
            </tr>
            {% endfor %}
        </table>

        {% if failures %}
        <h2>Remaining Failures</h2>
        {% for failure in failures %}
        <div class="failure">
            <strong>{{ failure.name }}</strong> <code>{{ failure.file }}</code><br>
            {% if failure.step %}Step: {{ failure.step }}<br>{% endif %}
            Error: {{ failure.error }}
        </div>
        {% endfor %}
        {% endif %}
    </div>
</body>
</html>
"""
