"""
FixLoop - scenario-driven end-to-end testing with an analyze and fix loop.
Main entry point for the application.
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from fixloop import __version__
from fixloop.agents.fix_applier import generate_coding_prompt
from fixloop.browser.factory import DRIVER_BUILDERS, create_driver_factory
from fixloop.config.settings import ConfigManager, Settings, get_settings, load_config_file
from fixloop.core.types import (
    FinalReport,
    OrchestratorState,
    OrchestratorStatus,
    Platform,
    Scenario,
    TestRunStatus,
)
from fixloop.error_handling.exceptions import DependencyError, DriverError, ValidationError
from fixloop.monitoring.logger import get_logger, setup_logging
from fixloop.monitoring.reporter import (
    ReportGenerator,
    artifact_name,
    generate_final_report,
    remaining_failures,
)
from fixloop.orchestration.orchestrator import Orchestrator
from fixloop.scenarios.parser import (
    ScenarioCatalog,
    filter_by_tags,
    load_all,
    resolve_dependencies,
    scenario_summary,
    validate,
)
from fixloop.scenarios.robo_converter import DEFAULT_APP_PACKAGE, RoboScriptConverter

console = Console()
logger = get_logger("main")

EXIT_CODES = {
    OrchestratorStatus.PASSED: 0,
    OrchestratorStatus.FAILED: 1,
    OrchestratorStatus.MAX_RETRIES: 2,
}
EXIT_INTERRUPTED = 130


def create_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        prog="fixloop",
        description=f"FixLoop - agentic end-to-end test orchestrator v{__version__}",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List discovered scenarios
  fixloop --list

  # Run every smoke scenario against a local dev server
  fixloop --tags smoke --base-url http://localhost:5173

  # Run one scenario (and the scenarios it requires) with up to 3 attempts
  fixloop --scenario templates/create-template --max-iterations 3

  # Run without touching source files, printing coding prompts instead
  fixloop --no-auto-apply

  # Export Robo scripts for android device farm runs
  fixloop --export-robo robo-scripts/
        """,
    )

    # Selection
    parser.add_argument(
        "-s", "--scenario",
        help="Run one scenario by id (relative path without extension)",
    )
    parser.add_argument(
        "-t", "--tags",
        help="Only run scenarios carrying any of these comma separated tags",
    )
    parser.add_argument(
        "--exclude-tags",
        help="Skip scenarios carrying any of these comma separated tags",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List discovered scenarios without running them",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Show version information",
    )

    # Execution options
    parser.add_argument(
        "-n", "--max-iterations",
        type=int,
        help="Maximum attempts per scenario (default: 5)",
    )
    parser.add_argument(
        "-u", "--base-url",
        help="Location of the application under test",
    )
    parser.add_argument(
        "--platform",
        choices=[platform.value for platform in Platform],
        help="Platform scenarios are executed against (default: web)",
    )
    parser.add_argument(
        "--driver",
        choices=sorted(DRIVER_BUILDERS),
        help="Automation driver (default: playwright)",
    )
    parser.add_argument(
        "--headed",
        action="store_true",
        help="Show the browser window",
    )
    parser.add_argument(
        "--stop-on-first-failure",
        action="store_true",
        help="Stop the batch once a scenario ends failed",
    )
    parser.add_argument(
        "--parallel",
        action="store_true",
        help="Run scenarios concurrently",
    )
    parser.add_argument(
        "--max-duration",
        type=float,
        help="Wall-clock ceiling for the whole run in seconds",
    )

    # Fix options
    parser.add_argument(
        "--no-auto-apply",
        action="store_true",
        help="Analyze failures without applying fixes; print coding prompts instead",
    )
    parser.add_argument(
        "--fix-applier",
        choices=["record", "llm"],
        help="How fixes are applied between attempts (default: record)",
    )

    # Paths
    parser.add_argument(
        "-c", "--config",
        type=Path,
        help="YAML config file (orchestrator, testRunner, analyzer, codingAgent sections)",
    )
    parser.add_argument(
        "--scenarios-dir",
        type=Path,
        help="Directory containing scenario YAML files (default: e2e/scenarios)",
    )
    parser.add_argument(
        "--reports-dir",
        type=Path,
        help="Output directory for reports (default: e2e/reports)",
    )
    parser.add_argument(
        "--screenshots-dir",
        type=Path,
        help="Output directory for screenshots (default: e2e/screenshots)",
    )
    parser.add_argument(
        "--project-root",
        type=Path,
        help="Root of the application source tree (default: current directory)",
    )

    # Robo export
    parser.add_argument(
        "--export-robo",
        type=Path,
        metavar="DIR",
        help="Write Robo script JSON for the selected scenarios to DIR and exit",
    )
    parser.add_argument(
        "--app-package",
        default=DEFAULT_APP_PACKAGE,
        help=f"Android package used in Robo resource ids (default: {DEFAULT_APP_PACKAGE})",
    )

    # Logging
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode with verbose logging",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose structured logging output (JSON)",
    )

    return parser


def apply_overrides(settings: Settings, parsed_args: argparse.Namespace) -> Settings:
    """Override settings with command line arguments."""
    overrides = {
        "max_iterations": parsed_args.max_iterations,
        "base_url": parsed_args.base_url,
        "platform": parsed_args.platform,
        "driver": parsed_args.driver,
        "fix_applier": parsed_args.fix_applier,
        "max_duration_seconds": parsed_args.max_duration,
        "scenarios_dir": parsed_args.scenarios_dir,
        "reports_dir": parsed_args.reports_dir,
        "screenshots_dir": parsed_args.screenshots_dir,
        "project_root": parsed_args.project_root,
    }
    for name, value in overrides.items():
        if value is not None:
            setattr(settings, name, value)

    if parsed_args.headed:
        settings.browser_headless = False
    if parsed_args.stop_on_first_failure:
        settings.stop_on_first_failure = True
    if parsed_args.parallel:
        settings.parallel_scenarios = True
    if parsed_args.no_auto_apply:
        settings.auto_apply = False
    if parsed_args.debug:
        settings.log_level = "DEBUG"
    if parsed_args.verbose:
        settings.log_format = "json"

    settings.create_directories()
    return settings


def split_tags(raw: Optional[str]) -> List[str]:
    """Split a comma separated tag list."""
    if not raw:
        return []
    return [tag.strip() for tag in raw.split(",") if tag.strip()]


def select_scenarios(
    catalog: ScenarioCatalog,
    scenario_id: Optional[str] = None,
    tags: Optional[List[str]] = None,
    exclude_tags: Optional[List[str]] = None,
) -> Dict[str, Scenario]:
    """
    Pick the scenarios to run, in run order.

    A single selected scenario runs after everything it requires. Otherwise
    the tag filters apply to the whole catalog.

    Raises:
        DependencyError: The scenario or one of its dependencies is unknown,
            or the dependencies form a cycle
    """
    if scenario_id:
        if scenario_id not in catalog.scenarios:
            raise DependencyError(f"Scenario not found: {scenario_id}", scenario_id=scenario_id)
        order = resolve_dependencies(catalog.scenarios, scenario_id)
        return {current: catalog.scenarios[current] for current in order}
    return filter_by_tags(catalog.scenarios, tags, exclude_tags)


def validate_scenarios(scenarios: Dict[str, Scenario]) -> List[ValidationError]:
    """Collect a ValidationError for every incomplete scenario."""
    problems: List[ValidationError] = []
    for scenario_id, scenario in scenarios.items():
        errors = validate(scenario)
        if errors:
            problems.append(
                ValidationError(
                    f"Scenario {scenario_id} is invalid",
                    source_file=scenario.source_file or scenario_id,
                    errors=errors,
                )
            )
    return problems


def show_version() -> int:
    """Show version information."""
    console.print("\n[bold cyan]FixLoop - Agentic Test Orchestrator[/bold cyan]")
    console.print(f"Version: [green]{__version__}[/green]")
    return 0


def list_scenarios(catalog: ScenarioCatalog) -> int:
    """Print discovered scenarios and the files that failed to parse."""
    table = Table(title=f"Scenarios ({len(catalog)})", show_lines=False)
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Steps", justify="right")
    table.add_column("Tags", style="dim")
    table.add_column("Requires", style="dim")

    for scenario_id, scenario in catalog.scenarios.items():
        table.add_row(
            scenario_id,
            scenario.name,
            str(len(scenario.steps)),
            ", ".join(scenario.tags),
            ", ".join(scenario.requires),
        )
    console.print(table)
    _print_parse_failures(catalog)
    return 0


def export_robo_scripts(
    scenarios: Dict[str, Scenario], output_dir: Path, app_package: str
) -> int:
    """Write one Robo script JSON file per scenario."""
    converter = RoboScriptConverter(app_package)
    output_dir.mkdir(parents=True, exist_ok=True)
    for scenario_id, scenario in scenarios.items():
        path = output_dir / f"{artifact_name(scenario_id)}.json"
        try:
            path.write_text(converter.to_json(scenario), encoding="utf-8")
        except ValueError as e:
            console.print(f"[red]✗ {scenario_id}: {e}[/red]")
            return 1
        console.print(f"[green]✓[/green] {scenario_summary(scenario)} -> {path}")
    return 0


async def run_scenarios(scenarios: Dict[str, Scenario], settings: Settings) -> int:
    """
    Run the orchestrator over the selected scenarios and report.

    Returns:
        Exit code for the final status
    """
    console.print(Panel.fit(
        "[bold cyan]FixLoop - Agentic Test Orchestrator[/bold cyan]\n"
        f"{len(scenarios)} scenarios, up to {settings.max_iterations} attempts each\n"
        f"Target: {settings.base_url} ({settings.platform}, {settings.driver})",
        border_style="cyan",
    ))

    reporter = ReportGenerator(settings.reports_dir)
    orchestrator = Orchestrator(
        create_driver_factory(ConfigManager(settings)),
        reporter=reporter,
        max_iterations=settings.max_iterations,
        auto_apply=settings.auto_apply,
        stop_on_first_failure=settings.stop_on_first_failure,
        parallel_scenarios=settings.parallel_scenarios,
        max_parallel_scenarios=settings.max_parallel_scenarios,
        max_duration_seconds=settings.max_duration_seconds,
    )

    state = await orchestrator.run(scenarios)
    report = generate_final_report(state)
    saved = reporter.save_final_report(report)

    print_final_report(report)
    for report_format, path in saved.items():
        console.print(f"[green]Report ({report_format}) saved to:[/green] {path}")

    if not settings.auto_apply:
        print_coding_prompts(state, settings)

    return EXIT_CODES[state.status]


def print_final_report(report: FinalReport) -> None:
    """Print the final report as a table plus remaining failures."""
    status_style = "green" if report.status == OrchestratorStatus.PASSED else "red"
    table = Table(title="Results", show_lines=True)
    table.add_column("Scenario", style="cyan")
    table.add_column("Status")
    table.add_column("Iterations", justify="right")
    table.add_column("Analyses", justify="right")
    table.add_column("Fixes", justify="right")

    for scenario in report.scenarios:
        passed = scenario.status == TestRunStatus.PASSED
        table.add_row(
            f"{scenario.name}\n[dim]{scenario.file}[/dim]",
            "[green]PASSED[/green]" if passed else "[red]FAILED[/red]",
            str(scenario.iterations),
            str(len(scenario.analyses)),
            str(len(scenario.fixes)),
        )
    console.print(table)

    summary = report.summary
    console.print(
        f"\n[bold {status_style}]{report.status.value.upper()}[/bold {status_style}] "
        f"{summary.passed}/{summary.total_scenarios} passed, "
        f"{summary.iterations} iterations, {summary.fixes_applied} fixes "
        f"in {report.duration_ms / 1000:.1f}s"
    )

    failures = remaining_failures(report)
    if failures:
        console.print("\n[bold red]Remaining failures:[/bold red]")
        for failure in failures:
            step = f" at step [yellow]{failure['step']}[/yellow]" if failure["step"] else ""
            console.print(f"  ✗ {failure['name']}{step}: {failure['error']}")


def print_coding_prompts(state: OrchestratorState, settings: Settings) -> None:
    """Print a coding prompt for the last analysis of each scenario that never passed."""
    passed = {
        result.scenario_file for result in state.results if result.status == TestRunStatus.PASSED
    }
    latest = {}
    for analysis in state.analyses:
        if analysis.scenario_file not in passed:
            latest[analysis.scenario_file] = analysis

    for analysis in latest.values():
        prompt = generate_coding_prompt(
            analysis,
            settings.project_root,
            max_files=settings.max_files_per_fix,
            validation_command=settings.fix_validation_command if settings.validate_fixes else None,
        )
        console.print(Panel(prompt, title=f"Coding prompt: {analysis.scenario}", border_style="yellow"))


def _print_parse_failures(catalog: ScenarioCatalog) -> None:
    if not catalog.failures:
        return
    console.print(f"\n[red]{len(catalog.failures)} scenario files failed to parse:[/red]")
    for path, error in catalog.failures.items():
        console.print(f"  ✗ {path}: {error.message}")


def _print_validation_errors(problems: List[ValidationError]) -> None:
    console.print(f"\n[red]{len(problems)} scenarios are invalid:[/red]")
    for problem in problems:
        console.print(f"  ✗ [cyan]{problem.source_file}[/cyan]")
        for error in problem.errors:
            console.print(f"      - {error}")


async def async_main(args: Optional[List[str]] = None) -> int:
    """Async main entry point."""
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if parsed_args.version:
        return show_version()

    if parsed_args.max_iterations is not None and parsed_args.max_iterations < 1:
        parser.error("--max-iterations must be at least 1")

    settings = get_settings()
    if parsed_args.config:
        if not parsed_args.config.is_file():
            console.print(f"[red]Error: Config file not found: {parsed_args.config}[/red]")
            return 1
        settings = load_config_file(parsed_args.config)
    settings = apply_overrides(settings, parsed_args)

    setup_logging(
        log_level=settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file,
    )

    catalog = load_all(settings.scenarios_dir)
    if parsed_args.list:
        return list_scenarios(catalog)

    _print_parse_failures(catalog)

    try:
        scenarios = select_scenarios(
            catalog,
            scenario_id=parsed_args.scenario,
            tags=split_tags(parsed_args.tags),
            exclude_tags=split_tags(parsed_args.exclude_tags),
        )
    except DependencyError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        return 1

    if not scenarios:
        console.print(f"[yellow]No scenarios to run in {settings.scenarios_dir}[/yellow]")
        return 1

    problems = validate_scenarios(scenarios)
    if problems:
        _print_validation_errors(problems)
        return 1

    if parsed_args.export_robo:
        return export_robo_scripts(scenarios, parsed_args.export_robo, parsed_args.app_package)

    try:
        return await run_scenarios(scenarios, settings)
    except DriverError as e:
        console.print(f"\n[red]Driver error: {e.message}[/red]")
        return 1


def main(args: Optional[List[str]] = None) -> int:
    """
    Main entry point for FixLoop.

    Args:
        args: Command line arguments

    Returns:
        Exit code (0 passed, 1 failed, 2 max retries, 130 interrupted)
    """
    try:
        return asyncio.run(async_main(args))
    except KeyboardInterrupt:
        console.print("\n[yellow]Test execution interrupted by user[/yellow]")
        return EXIT_INTERRUPTED
    except Exception as e:
        console.print(f"[red]Fatal error: {e}[/red]")
        logger.exception("Fatal error")
        return 1


def cli() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    cli()
