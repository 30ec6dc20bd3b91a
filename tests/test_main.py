"""Tests for main.py CLI interface."""

import json
from unittest.mock import AsyncMock, patch

import pytest

from fixloop.config.settings import get_settings
from fixloop.error_handling.exceptions import DependencyError
from fixloop.main import (
    EXIT_INTERRUPTED,
    apply_overrides,
    async_main,
    create_parser,
    main,
    select_scenarios,
    show_version,
    split_tags,
    validate_scenarios,
)
from fixloop.scenarios.parser import load_all

LOGIN = """
name: Login
tags: [smoke, auth]
steps:
  - navigate: /login
  - tap: "Sign in"
"""

TEMPLATES = """
name: Create template
tags: [smoke]
requires: [login]
steps:
  - tap: "Create Template"
  - see: "Push Day"
"""

INCOMPLETE = """
name: Incomplete
tags: [wip]
steps:
  - type: "Name"
"""


@pytest.fixture
def scenarios_dir(tmp_path):
    """Scenario directory with a dependency chain."""
    root = tmp_path / "scenarios"
    root.mkdir()
    (root / "login.yaml").write_text(LOGIN)
    (root / "templates.yaml").write_text(TEMPLATES)
    return root


@pytest.fixture(autouse=True)
def quiet_logging():
    """Keep CLI runs from reconfiguring the root logger."""
    with patch("fixloop.main.setup_logging"):
        yield


class TestCLIParser:
    """Test command line parser."""

    def test_parser_creation(self):
        """Test parser is created with all expected arguments."""
        parser = create_parser()

        assert "FixLoop - agentic end-to-end test orchestrator v0.1.0" in parser.description
        actions = {action.dest for action in parser._actions}
        for dest in (
            "scenario",
            "tags",
            "exclude_tags",
            "list",
            "max_iterations",
            "base_url",
            "platform",
            "no_auto_apply",
            "config",
            "export_robo",
        ):
            assert dest in actions

    def test_invalid_platform(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["--platform", "windows"])

    def test_apply_overrides(self, tmp_path):
        args = create_parser().parse_args(
            [
                "-n", "2",
                "--base-url", "http://app.test",
                "--no-auto-apply",
                "--headed",
                "--reports-dir", str(tmp_path / "reports"),
            ]
        )

        settings = apply_overrides(get_settings(), args)

        assert settings is get_settings()
        assert settings.max_iterations == 2
        assert settings.base_url == "http://app.test"
        assert settings.auto_apply is False
        assert settings.browser_headless is False
        assert (tmp_path / "reports").is_dir()

    @pytest.mark.parametrize(
        "raw,expected",
        [(None, []), ("", []), ("smoke", ["smoke"]), (" smoke, auth ,", ["smoke", "auth"])],
    )
    def test_split_tags(self, raw, expected):
        assert split_tags(raw) == expected


class TestSelection:
    """Test scenario selection and validation helpers."""

    def test_single_scenario_brings_dependencies(self, scenarios_dir):
        selected = select_scenarios(load_all(scenarios_dir), scenario_id="templates")

        assert list(selected) == ["login", "templates"]

    def test_unknown_scenario(self, scenarios_dir):
        with pytest.raises(DependencyError, match="Scenario not found: nope"):
            select_scenarios(load_all(scenarios_dir), scenario_id="nope")

    def test_tag_filters(self, scenarios_dir):
        catalog = load_all(scenarios_dir)

        assert list(select_scenarios(catalog, tags=["auth"])) == ["login"]
        assert list(select_scenarios(catalog, exclude_tags=["auth"])) == ["templates"]

    def test_validate_scenarios(self, scenarios_dir):
        (scenarios_dir / "incomplete.yaml").write_text(INCOMPLETE)
        catalog = load_all(scenarios_dir)

        problems = validate_scenarios(catalog.scenarios)

        assert len(problems) == 1
        assert problems[0].errors == ['Step "step-1" has action "type" but no value']


class TestAsyncMain:
    """Test the async entry point and exit codes."""

    @pytest.mark.asyncio
    async def test_version(self):
        assert await async_main(["--version"]) == 0
        assert show_version() == 0

    @pytest.mark.asyncio
    async def test_list(self, scenarios_dir):
        assert await async_main(["--list", "--scenarios-dir", str(scenarios_dir)]) == 0

    @pytest.mark.asyncio
    async def test_unknown_scenario_exits_1(self, scenarios_dir):
        code = await async_main(["--scenario", "nope", "--scenarios-dir", str(scenarios_dir)])

        assert code == 1

    @pytest.mark.asyncio
    async def test_empty_directory_exits_1(self, tmp_path):
        assert await async_main(["--scenarios-dir", str(tmp_path / "empty")]) == 1

    @pytest.mark.asyncio
    async def test_invalid_scenario_exits_1(self, scenarios_dir):
        (scenarios_dir / "incomplete.yaml").write_text(INCOMPLETE)

        with patch("fixloop.main.run_scenarios", new_callable=AsyncMock) as run:
            code = await async_main(["--scenarios-dir", str(scenarios_dir)])

        assert code == 1
        run.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("exit_code", [0, 1, 2])
    async def test_run_exit_code(self, scenarios_dir, exit_code):
        with patch(
            "fixloop.main.run_scenarios", new_callable=AsyncMock, return_value=exit_code
        ) as run:
            code = await async_main(["--tags", "smoke", "--scenarios-dir", str(scenarios_dir)])

        assert code == exit_code
        selected = run.await_args.args[0]
        assert list(selected) == ["login", "templates"]

    @pytest.mark.asyncio
    async def test_config_file_is_applied(self, scenarios_dir, tmp_path):
        config = tmp_path / "fixloop.yaml"
        config.write_text("orchestrator:\n  maxIterations: 4\n")

        with patch("fixloop.main.run_scenarios", new_callable=AsyncMock, return_value=0) as run:
            await async_main(["-c", str(config), "--scenarios-dir", str(scenarios_dir)])

        assert run.await_args.args[1].max_iterations == 4

    @pytest.mark.asyncio
    async def test_missing_config_file(self, tmp_path):
        assert await async_main(["-c", str(tmp_path / "missing.yaml")]) == 1

    @pytest.mark.asyncio
    async def test_export_robo(self, scenarios_dir, tmp_path):
        output = tmp_path / "robo"

        code = await async_main(
            ["--export-robo", str(output), "--scenarios-dir", str(scenarios_dir)]
        )

        assert code == 0
        script = json.loads((output / "login.json").read_text())
        assert script[0]["description"] == "Login"
        assert (output / "templates.json").exists()


class TestMain:
    """Test the synchronous wrapper."""

    def test_keyboard_interrupt(self):
        with patch("fixloop.main.async_main", new=AsyncMock(side_effect=KeyboardInterrupt)):
            assert main([]) == EXIT_INTERRUPTED

    def test_unexpected_error(self):
        with patch("fixloop.main.async_main", new=AsyncMock(side_effect=RuntimeError("boom"))):
            assert main([]) == 1
