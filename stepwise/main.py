"""
Stepwise - natural-language browser test runner
Main entry point for the application.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from stepwise import __version__
from stepwise.browser.runtime import ALL_BROWSERS, BrowserRuntimeManager
from stepwise.config.settings import ConfigManager, Settings, get_settings
from stepwise.core.types import (
    BrowserInstallUpdate,
    BrowserName,
    Run,
    RunEventType,
    RunStatus,
    RunUpdateEvent,
    StepStatus,
    action_to_json,
)
from stepwise.error_handling import StepwiseError
from stepwise.interpreter.parser import parse_step
from stepwise.monitoring.logger import get_logger, setup_logging
from stepwise.orchestration.orchestrator import RunOrchestrator
from stepwise.storage.seed import seed_sample_project
from stepwise.storage.store import SQLAlchemyRecordStore

console = Console()
logger = get_logger("main")

STATUS_COLORS = {
    RunStatus.RUNNING.value: "cyan",
    RunStatus.PASSED.value: "green",
    RunStatus.FAILED.value: "red",
    RunStatus.CANCELLED.value: "yellow",
    StepStatus.PENDING.value: "dim",
}

BROWSER_CHOICES = [b.value for b in ALL_BROWSERS]


def create_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        prog="stepwise",
        description=f"Stepwise - natural-language browser test runner v{__version__}",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Check how a step will be interpreted
  stepwise parse 'Click "Sign in" after 2 seconds'

  # Create a project and a test case
  stepwise project add "Shop" https://shop.example.com
  stepwise test add <project-id> "Login" --step 'Go to /login' --step 'Click "Sign in"'

  # Run it in Firefox
  stepwise run <test-case-id> --browser firefox
        """,
    )
    parser.add_argument("--version", action="store_true", help="Show version information")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose structured logging output (JSON)",
    )
    parser.add_argument("--database", help="Database URL (overrides DATABASE_URL)")

    commands = parser.add_subparsers(dest="command", metavar="<command>")

    parse_cmd = commands.add_parser("parse", help="Interpret step text without saving it")
    parse_cmd.add_argument("text", nargs="+", help="Step text (one argument per step)")

    commands.add_parser("browsers", help="Show browser install status")

    install_cmd = commands.add_parser("install", help="Install a browser engine")
    install_cmd.add_argument("browser", choices=BROWSER_CHOICES)

    project_cmd = commands.add_parser("project", help="Manage projects")
    project_actions = project_cmd.add_subparsers(dest="project_command", metavar="<action>")
    project_add = project_actions.add_parser("add", help="Create a project")
    project_add.add_argument("name")
    project_add.add_argument("base_url")
    project_add.add_argument("--env", default="local", help="Environment label (default: local)")
    project_add.add_argument(
        "--meta",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Metadata entry (repeatable)",
    )
    project_actions.add_parser("list", help="List projects")
    project_delete = project_actions.add_parser("delete", help="Delete a project and its tests")
    project_delete.add_argument("project_id")

    test_cmd = commands.add_parser("test", help="Manage test cases")
    test_actions = test_cmd.add_subparsers(dest="test_command", metavar="<action>")
    test_add = test_actions.add_parser("add", help="Create a test case")
    test_add.add_argument("project_id")
    test_add.add_argument("title")
    test_add.add_argument("--step", action="append", default=[], help="Step text (repeatable)")
    test_add.add_argument("--file", type=Path, help="File with one step per line")
    test_list = test_actions.add_parser("list", help="List test cases of a project")
    test_list.add_argument("project_id")
    test_show = test_actions.add_parser("show", help="Show a test case and its steps")
    test_show.add_argument("test_case_id")
    test_delete = test_actions.add_parser("delete", help="Delete a test case")
    test_delete.add_argument("test_case_id")

    run_cmd = commands.add_parser("run", help="Run a test case")
    run_cmd.add_argument("test_case_id")
    run_cmd.add_argument("--browser", choices=BROWSER_CHOICES, help="Browser engine")
    run_cmd.add_argument(
        "--continue-on-failure",
        action="store_true",
        help="Keep running remaining steps after a failure",
    )
    run_cmd.add_argument("--headed", action="store_true", help="Show the browser window")
    run_cmd.add_argument(
        "--timeout",
        type=int,
        default=3600,
        help="Cancel the run after this many seconds (default: 3600)",
    )

    history_cmd = commands.add_parser("history", help="List runs of a test case")
    history_cmd.add_argument("test_case_id")

    results_cmd = commands.add_parser("results", help="Show step results of a run")
    results_cmd.add_argument("run_id")

    commands.add_parser("seed", help="Create the sample project")

    config_cmd = commands.add_parser("config", help="Show effective settings")
    config_cmd.add_argument("key", nargs="?", help="Show a single setting")

    return parser


def show_version() -> int:
    """Show version information."""
    console.print("\n[bold cyan]Stepwise - natural-language browser test runner[/bold cyan]")
    console.print(f"Version: [green]{__version__}[/green]")
    console.print("Python: [dim]3.10+[/dim]")
    return 0


def open_store(settings: Settings) -> SQLAlchemyRecordStore:
    settings.create_directories()
    store = SQLAlchemyRecordStore(settings.database_url)
    store.init_db()
    return store


def _status_text(status: str) -> str:
    color = STATUS_COLORS.get(status, "white")
    return f"[{color}]{status}[/{color}]"


def _format_time(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "-"


def parse_metadata(entries: List[str]) -> dict:
    metadata = {}
    for entry in entries:
        key, sep, value = entry.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Metadata must be KEY=VALUE: {entry}")
        metadata[key.strip()] = value.strip()
    return metadata


def read_steps(steps: List[str], file_path: Optional[Path]) -> List[str]:
    collected = list(steps)
    if file_path is not None:
        lines = file_path.read_text(encoding="utf-8").splitlines()
        collected.extend(line for line in lines if line.strip())
    return collected


def cmd_parse(texts: List[str]) -> int:
    table = Table(title="Step interpretation")
    table.add_column("Step")
    table.add_column("Source")
    table.add_column("Action / error")

    exit_code = 0
    for text in texts:
        result = parse_step(text)
        if result.ok and result.action is not None:
            table.add_row(text, result.source.value, action_to_json(result.action))
        else:
            exit_code = 1
            table.add_row(text, "[red]-[/red]", f"[red]{result.error}[/red]")

    console.print(table)
    return exit_code


async def cmd_browsers(runtime: BrowserRuntimeManager) -> int:
    table = Table(title="Browsers")
    table.add_column("Browser")
    table.add_column("Installed")
    table.add_column("Executable")
    table.add_column("Last error")

    for state in await runtime.get_statuses():
        table.add_row(
            state.browser.value,
            "[green]yes[/green]" if state.installed else "[red]no[/red]",
            state.executable_path or "-",
            state.last_error or "",
        )
    console.print(table)
    return 0


async def cmd_install(runtime: BrowserRuntimeManager, browser: BrowserName) -> int:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        console=console,
    ) as progress:
        task_id = progress.add_task(f"Installing {browser.value}", total=100)

        def on_update(update: BrowserInstallUpdate) -> None:
            fields = {"description": f"[{update.phase.value}] {update.message[:60]}"}
            if update.progress is not None:
                fields["completed"] = update.progress
            progress.update(task_id, **fields)

        unsubscribe = runtime.subscribe(on_update)
        try:
            await runtime.install(browser)
        finally:
            unsubscribe()

    console.print(f"[green]{browser.value} installed.[/green]")
    return 0


def cmd_project(store: SQLAlchemyRecordStore, args: argparse.Namespace) -> int:
    if args.project_command == "add":
        project = store.create_project(
            args.name, args.base_url, args.env, parse_metadata(args.meta)
        )
        console.print(f"[green]Created project[/green] {project.name} [dim]({project.id})[/dim]")
        return 0

    if args.project_command == "list":
        table = Table(title="Projects")
        table.add_column("ID", style="dim")
        table.add_column("Name")
        table.add_column("Base URL")
        table.add_column("Env")
        for project in store.list_projects():
            table.add_row(project.id, project.name, project.base_url, project.env_label)
        console.print(table)
        return 0

    if args.project_command == "delete":
        if not store.delete_project(args.project_id):
            console.print("[red]Project not found.[/red]")
            return 1
        console.print("[green]Project deleted.[/green]")
        return 0

    console.print("[yellow]Choose a project action: add, list or delete[/yellow]")
    return 1


def cmd_test(store: SQLAlchemyRecordStore, args: argparse.Namespace) -> int:
    if args.test_command == "add":
        steps = read_steps(args.step, args.file)
        test_case = store.create_test_case(args.project_id, args.title, steps)
        console.print(
            f"[green]Created test case[/green] {test_case.title} "
            f"[dim]({test_case.id}, {len(steps)} step(s))[/dim]"
        )
        return 0

    if args.test_command == "list":
        table = Table(title="Test cases")
        table.add_column("ID", style="dim")
        table.add_column("Title")
        table.add_column("Updated")
        for test_case in store.list_test_cases(args.project_id):
            table.add_row(test_case.id, test_case.title, _format_time(test_case.updated_at))
        console.print(table)
        return 0

    if args.test_command == "show":
        test_case = store.get_test_case(args.test_case_id)
        if test_case is None:
            console.print("[red]Test case not found.[/red]")
            return 1
        table = Table(title=test_case.title)
        table.add_column("#", justify="right")
        table.add_column("Step")
        table.add_column("Action", style="dim")
        for step in store.list_steps(test_case.id):
            table.add_row(str(step.step_order), step.raw_text, step.action_json)
        console.print(table)
        return 0

    if args.test_command == "delete":
        if not store.delete_test_case(args.test_case_id):
            console.print("[red]Test case not found.[/red]")
            return 1
        console.print("[green]Test case deleted.[/green]")
        return 0

    console.print("[yellow]Choose a test action: add, list, show or delete[/yellow]")
    return 1


def print_event(event: RunUpdateEvent) -> None:
    if event.type == RunEventType.STEP_STARTED:
        console.print(f"[cyan]Step {event.step_order}...[/cyan]")
    elif event.type == RunEventType.STEP_FINISHED:
        status = event.step_status.value if event.step_status else "?"
        line = f"Step {event.step_order}: {_status_text(status)}"
        if event.message:
            line += f" [dim]{event.message}[/dim]"
        console.print(line)
    elif event.message:
        console.print(f"[bold]{event.message}[/bold]")


def print_results(orchestrator: RunOrchestrator, run_id: str) -> None:
    table = Table(title=f"Run {run_id}")
    table.add_column("#", justify="right")
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Error")
    table.add_column("Screenshot", style="dim")
    for result in orchestrator.step_results(run_id):
        table.add_row(
            str(result.step_order),
            result.step_raw_text,
            _status_text(result.status.value),
            result.error_text or "",
            result.screenshot_path or "",
        )
    console.print(table)


async def cmd_run(
    orchestrator: RunOrchestrator,
    test_case_id: str,
    browser: Optional[str],
    timeout: int,
) -> int:
    unsubscribe = orchestrator.subscribe(print_event)
    run: Optional[Run] = None
    try:
        run = orchestrator.start(test_case_id, browser)
        console.print(Panel.fit(
            f"[bold]Run:[/bold] {run.id}\n[bold]Browser:[/bold] {run.browser.value}",
            title="Stepwise",
        ))
        run = await asyncio.wait_for(orchestrator.wait_for_run(run.id), timeout=timeout)
    except asyncio.TimeoutError:
        console.print(f"\n[red]Run timed out after {timeout} seconds[/red]")
        if run is not None:
            orchestrator.cancel(run.id)
    except KeyboardInterrupt:
        console.print("\n[yellow]Run interrupted by user[/yellow]")
        if run is not None:
            orchestrator.cancel(run.id)
    finally:
        await orchestrator.shutdown()
        unsubscribe()

    if run is None:
        return 1

    print_results(orchestrator, run.id)
    final = orchestrator.status(run.id)
    return 0 if final is not None and final.status == RunStatus.PASSED else 1


def cmd_history(orchestrator: RunOrchestrator, test_case_id: str) -> int:
    table = Table(title="Run history")
    table.add_column("Run", style="dim")
    table.add_column("Browser")
    table.add_column("Status")
    table.add_column("Started")
    table.add_column("Ended")
    for run in orchestrator.history(test_case_id):
        table.add_row(
            run.id,
            run.browser.value,
            _status_text(run.status.value),
            _format_time(run.started_at),
            _format_time(run.ended_at),
        )
    console.print(table)
    return 0


def cmd_seed(store: SQLAlchemyRecordStore) -> int:
    result = seed_sample_project(store)
    console.print(json.dumps(
        {
            "project_id": result.project.id,
            "test_case_id": result.test_case.id,
            "created_project": result.created_project,
            "created_test_case": result.created_test_case,
        },
        indent=2,
    ))
    return 0


def cmd_config(config: ConfigManager, key: Optional[str]) -> int:
    if key is None:
        console.print_json(data=config.get_all(), default=str)
        return 0
    try:
        value = config.get_required(key)
    except KeyError as e:
        console.print(f"[red]Error: {e.args[0]}[/red]")
        return 1
    console.print_json(data={key: value}, default=str)
    return 0


async def dispatch(parsed_args: argparse.Namespace, settings: Settings) -> int:
    command = parsed_args.command

    if command == "parse":
        return cmd_parse(parsed_args.text)
    if command == "config":
        return cmd_config(ConfigManager(settings), parsed_args.key)

    runtime = BrowserRuntimeManager(settings=settings)
    try:
        if command == "browsers":
            return await cmd_browsers(runtime)
        if command == "install":
            return await cmd_install(runtime, BrowserName(parsed_args.browser))

        store = open_store(settings)
        try:
            if settings.enable_sample_project_seed:
                seed_sample_project(store)

            orchestrator = RunOrchestrator(store=store, runtime=runtime, settings=settings)
            if command == "project":
                return cmd_project(store, parsed_args)
            if command == "test":
                return cmd_test(store, parsed_args)
            if command == "run":
                return await cmd_run(
                    orchestrator,
                    parsed_args.test_case_id,
                    parsed_args.browser,
                    parsed_args.timeout,
                )
            if command == "history":
                return cmd_history(orchestrator, parsed_args.test_case_id)
            if command == "results":
                print_results(orchestrator, parsed_args.run_id)
                return 0
            if command == "seed":
                return cmd_seed(store)
        finally:
            store.close()
    finally:
        await runtime.stop()

    return 1


async def async_main(args: Optional[List[str]] = None) -> int:
    """Async main entry point."""
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if parsed_args.version:
        return show_version()

    if not parsed_args.command:
        parser.print_help()
        return 1

    settings = get_settings()

    if parsed_args.debug:
        settings.log_level = "DEBUG"
    settings.log_format = "json" if parsed_args.verbose else "text"
    if parsed_args.database:
        settings.database_url = parsed_args.database
    if getattr(parsed_args, "continue_on_failure", False):
        settings.continue_on_failure = True
    if getattr(parsed_args, "headed", False):
        settings.browser_headless = False

    setup_logging(
        log_level=settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file,
    )

    try:
        return await dispatch(parsed_args, settings)
    except (StepwiseError, ValueError, OSError) as e:
        logger.debug("Command failed", exc_info=True)
        console.print(f"[red]Error: {e}[/red]")
        return 1


def main(args: Optional[List[str]] = None) -> int:
    """
    Main entry point for Stepwise.

    Args:
        args: Command line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    try:
        return asyncio.run(async_main(args))
    except Exception as e:
        console.print(f"[red]Fatal error: {e}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
