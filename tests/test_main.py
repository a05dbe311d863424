"""Tests for main.py CLI interface."""

import asyncio
import json
from unittest.mock import patch

import pytest

from fakes import FakePage, FakeRuntime
from stepwise.core.types import RunStatus
from stepwise.error_handling import RecordNotFoundError
from stepwise.main import (
    async_main,
    cmd_parse,
    cmd_run,
    create_parser,
    parse_metadata,
    read_steps,
    show_version,
)
from stepwise.orchestration import RunOrchestrator


@pytest.fixture
def cli(settings):
    """Run async_main against the test settings without touching global logging."""
    with patch("stepwise.main.get_settings", return_value=settings), \
            patch("stepwise.main.setup_logging"):
        yield async_main


class TestCLIParser:
    """Test command line parser."""

    def test_parser_creation(self):
        """Test parser is created with the global options."""
        parser = create_parser()

        assert "Stepwise - natural-language browser test runner v0.1.0" in parser.description
        actions = {action.dest: action for action in parser._actions}
        assert "version" in actions
        assert "debug" in actions
        assert "database" in actions

    def test_run_arguments(self):
        parser = create_parser()

        args = parser.parse_args(
            ["run", "tc-1", "--browser", "webkit", "--continue-on-failure", "--timeout", "60"]
        )

        assert args.command == "run"
        assert args.browser == "webkit"
        assert args.continue_on_failure is True
        assert args.timeout == 60
        assert args.headed is False

    def test_unknown_browser_rejected(self):
        parser = create_parser()

        with pytest.raises(SystemExit):
            parser.parse_args(["install", "safari"])

    def test_repeatable_steps(self):
        parser = create_parser()

        args = parser.parse_args(["test", "add", "p-1", "Login", "--step", "a", "--step", "b"])

        assert args.step == ["a", "b"]


class TestUtilityCommands:
    """Test utility command functions."""

    def test_show_version(self, capsys):
        """Test version display."""
        result = show_version()
        captured = capsys.readouterr()

        assert result == 0
        assert "Version: 0.1.0" in captured.out

    def test_cmd_parse(self, capsys):
        assert cmd_parse(['Click "Save"']) == 0
        assert "strict" in capsys.readouterr().out

    def test_cmd_parse_failure(self):
        assert cmd_parse(['Click "Save"', "Do quantum shuffle now"]) == 1

    def test_parse_metadata(self):
        assert parse_metadata(["team=qa", " owner = sam "]) == {"team": "qa", "owner": "sam"}

        with pytest.raises(ValueError, match="KEY=VALUE"):
            parse_metadata(["novalue"])

    def test_read_steps(self, tmp_path):
        steps_file = tmp_path / "steps.txt"
        steps_file.write_text('Go to /login\n\nClick "Sign in"\n', encoding="utf-8")

        assert read_steps(["Expect Home"], steps_file) == [
            "Expect Home",
            "Go to /login",
            'Click "Sign in"',
        ]
        assert read_steps(["Expect Home"], None) == ["Expect Home"]


class TestAsyncMain:
    """Test async_main command dispatch."""

    @pytest.mark.asyncio
    async def test_version(self, cli):
        assert await cli(["--version"]) == 0

    @pytest.mark.asyncio
    async def test_no_command(self, cli):
        assert await cli([]) == 1

    @pytest.mark.asyncio
    async def test_parse_command(self, cli):
        assert await cli(["parse", "Go to /login"]) == 0

    @pytest.mark.asyncio
    async def test_project_and_test_commands(self, cli, settings, capsys):
        """Test creating and listing records through the CLI."""
        assert await cli(["project", "add", "Shop", "https://app.test", "--meta", "team=qa"]) == 0
        assert await cli(["project", "list"]) == 0
        assert "Shop" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_validation_errors_exit_nonzero(self, cli, capsys):
        assert await cli(["project", "add", "Shop", "not-a-url"]) == 1
        assert "Base URL must be a valid URL" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_seed_command(self, cli, capsys):
        assert await cli(["seed"]) == 0
        first = json.loads(capsys.readouterr().out)
        assert await cli(["seed"]) == 0
        second = json.loads(capsys.readouterr().out)

        assert first["created_project"] is True
        assert second["created_project"] is False
        assert second["project_id"] == first["project_id"]

    @pytest.mark.asyncio
    async def test_delete_missing_project(self, cli):
        assert await cli(["project", "delete", "missing"]) == 1

    @pytest.mark.asyncio
    async def test_database_override(self, cli, settings, tmp_path):
        url = f"sqlite:///{tmp_path / 'other.sqlite'}"

        assert await cli(["--database", url, "seed"]) == 0

        assert settings.database_url == url
        assert (tmp_path / "other.sqlite").exists()

    @pytest.mark.asyncio
    async def test_config_command(self, cli, capsys):
        assert await cli(["config"]) == 0
        out = capsys.readouterr().out
        assert '"step_timeout_seconds": 2' in out
        assert '"default_browser": "chromium"' in out

        assert await cli(["config", "continue_on_failure"]) == 0
        assert json.loads(capsys.readouterr().out) == {"continue_on_failure": False}

    @pytest.mark.asyncio
    async def test_config_unknown_key(self, cli, capsys):
        assert await cli(["config", "colour_scheme"]) == 1
        assert "Required configuration key not found: colour_scheme" in capsys.readouterr().out


class TestRunCommand:
    """Test cmd_run against in-memory browser fakes."""

    @pytest.mark.asyncio
    async def test_passing_run(self, store, settings, project, capsys):
        test_case = store.create_test_case(project.id, "Login", ['Click "Sign in"'])
        orchestrator = RunOrchestrator(store=store, runtime=FakeRuntime(), settings=settings)

        assert await cmd_run(orchestrator, test_case.id, None, 30) == 0
        assert "Run passed for Shop." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_failing_run(self, store, settings, project):
        test_case = store.create_test_case(project.id, "Login", ["Expect Welcome"])
        runtime = FakeRuntime(FakePage(missing_texts={"Welcome"}))
        orchestrator = RunOrchestrator(store=store, runtime=runtime, settings=settings)

        assert await cmd_run(orchestrator, test_case.id, "firefox", 30) == 1

    @pytest.mark.asyncio
    async def test_timeout_cancels_run(self, store, settings, project):
        test_case = store.create_test_case(project.id, "Login", ['Click "Sign in"'])
        runtime = FakeRuntime(install_gate=asyncio.Event())
        orchestrator = RunOrchestrator(store=store, runtime=runtime, settings=settings)

        assert await cmd_run(orchestrator, test_case.id, None, 0) == 1

        run = orchestrator.history(test_case.id)[0]
        assert run.status == RunStatus.CANCELLED
        assert orchestrator.active_context() is None

    @pytest.mark.asyncio
    async def test_missing_test_case(self, store, settings):
        orchestrator = RunOrchestrator(store=store, runtime=FakeRuntime(), settings=settings)

        with pytest.raises(RecordNotFoundError):
            await cmd_run(orchestrator, "missing", None, 30)
