import argparse
import asyncio
import datetime
import os
import subprocess
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table
from rich.text import Text

from . import daemon, system
from .config import ConfigInvalid
from .constants import CONFIG_FILE, LOG_FILE
from .coordinator import CycleReport, SyncCoordinator, SyncOutcome
from .git_wrapper import GitError, GitRepo, MergeConflict
from .registry import ProjectRegistry
from .status import StatusReporter, render_status

console = Console()


def _build(workspace: Path) -> tuple[ProjectRegistry, SyncCoordinator]:
    """Creates a registry and an unarmed coordinator for one-shot commands."""
    registry = ProjectRegistry(workspace)
    return registry, SyncCoordinator(registry)


def _print_report(report: CycleReport) -> None:
    """Summarises a check cycle on the console."""
    for name, result in sorted(report.merged.items()):
        console.print(
            f"[bold green]✔ {name}:[/bold green] merged "
            f"{result.changed_file_count} changed file(s)."
        )
    for name, reason in sorted(report.failed.items()):
        console.print(f"[bold red]✘ {name}:[/bold red] {reason}")

    if report.pending:
        console.print(
            f"[bold yellow]{len(report.pending)} project(s) have updates:[/bold yellow] "
            f"{', '.join(report.pending)}"
        )
        console.print("Run [bold cyan]context-sync sync[/bold cyan] to merge them.")
    elif not report.failed:
        console.print("[bold green]All projects are up to date![/bold green]")


def _print_outcome(outcome: SyncOutcome) -> None:
    if not outcome.merged and not outcome.failed:
        console.print("[bold green]Nothing to sync.[/bold green]")
        return
    for name, result in sorted(outcome.merged.items()):
        console.print(
            f"[bold green]✔ {name}:[/bold green] "
            f"{result.changed_file_count} file(s) changed."
        )
    for name, reason in sorted(outcome.failed.items()):
        console.print(f"[bold red]✘ {name}:[/bold red] {reason}")


def show_status(workspace: Path, refresh: bool = False) -> None:
    """Displays the daemon state, the sync settings and pending updates.

    Pending updates are only known after `--refresh`; without it the command
    makes no git calls.

    Args:
        workspace (Path): The workspace root.
        refresh (bool): Run an update check first so pending updates are current.
    """
    registry, coordinator = _build(workspace)

    pid = system.daemon_pid()
    daemon_line = Text()
    daemon_line.append("Daemon: ", style="bold")
    if pid:
        daemon_line.append(f"Running (PID {pid})", style="bold green")
    else:
        daemon_line.append("Stopped", style="bold red")
    console.print(daemon_line)

    if refresh:
        with console.status("[bold blue]Checking for updates...", spinner="dots"):
            asyncio.run(coordinator.manual_check())

    status = StatusReporter(coordinator).get_status()
    console.print(
        render_status(status, registry.list_projects(), include_timer=False)
    )


def list_projects(workspace: Path) -> None:
    """Lists every context project and whether it takes part in syncing."""
    registry = ProjectRegistry(workspace)
    projects = registry.list_projects()
    if not projects:
        console.print(f"[yellow]No projects found in {registry.contexts_path}.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Project", style="cyan")
    table.add_column("Git")
    table.add_column("Sync")
    table.add_column("Last Synced", justify="right", style="dim")

    for project in projects:
        git_text = "[green]Yes[/green]" if project.is_git_backed else "[dim]No[/dim]"
        sync_text = "[green]On[/green]" if project.enabled else "[yellow]Off[/yellow]"
        last = "-"
        if project.last_synced:
            try:
                last = (
                    datetime.datetime.fromisoformat(project.last_synced)
                    .astimezone()
                    .strftime("%Y-%m-%d %H:%M")
                )
            except ValueError:
                last = project.last_synced
        table.add_row(project.name, git_text, sync_text, last)

    console.print(table)


def check_now(workspace: Path) -> None:
    """Runs one update check with a progress spinner."""
    _, coordinator = _build(workspace)
    with console.status("[bold blue]Checking for updates...", spinner="dots"):
        report = asyncio.run(coordinator.manual_check())
    _print_report(report)


def sync_now(workspace: Path) -> None:
    """Checks for updates, then pulls every project that has some."""
    _, coordinator = _build(workspace)

    async def _check_and_sync() -> tuple[CycleReport, SyncOutcome]:
        report = await coordinator.manual_check()
        return report, await coordinator.sync_pending()

    with console.status("[bold blue]Syncing context projects...", spinner="dots"):
        report, outcome = asyncio.run(_check_and_sync())

    # Auto-merge may already have pulled some projects during the check.
    for name, result in report.merged.items():
        outcome.merged.setdefault(name, result)
    for name, reason in report.failed.items():
        if name not in outcome.merged:
            outcome.failed.setdefault(name, reason)

    _print_outcome(outcome)
    if outcome.failed:
        sys.exit(1)


def update_project(workspace: Path, name: str) -> None:
    """Pulls a single project immediately.

    Args:
        workspace (Path): The workspace root.
        name (str): The project to update.
    """
    _, coordinator = _build(workspace)
    try:
        with console.status(f"[bold blue]Updating {name}...", spinner="dots"):
            result = asyncio.run(coordinator.update_project(name))
    except KeyError:
        console.print(f"[bold red]Unknown project:[/bold red] {name}")
        sys.exit(1)
    except MergeConflict as e:
        console.print(f"[bold red]CONFLICT {name}:[/bold red] {e}")
        console.print("Resolve the conflict in the project folder, then retry.")
        sys.exit(1)
    except GitError as e:
        console.print(f"[bold red]UPDATE FAILED {name}:[/bold red] {e}")
        sys.exit(1)

    if not result.has_changes:
        console.print(f"[green]{name} is already up to date.[/green]")
        return

    console.print(
        f"[bold green]✔ Updated {name}:[/bold green] "
        f"{result.changed_file_count} file(s) changed."
    )
    for path in result.changed_files:
        console.print(f"   ~ {path}", style="dim")


def show_changes(workspace: Path, name: str, days: int = 7) -> None:
    """Shows recent commits of a git-backed project.

    Args:
        workspace (Path): The workspace root.
        name (str): The project to inspect.
        days (int): How far back to look.
    """
    registry = ProjectRegistry(workspace)
    try:
        project = registry.get_project(name)
        repo = GitRepo(project.folder_path)
        since = datetime.datetime.now() - datetime.timedelta(days=days)
        commits = repo.recent_commits(since)
    except KeyError:
        console.print(f"[bold red]Unknown project:[/bold red] {name}")
        sys.exit(1)
    except GitError as e:
        console.print(f"[bold red]Cannot read history of {name}:[/bold red] {e}")
        sys.exit(1)

    if not commits:
        console.print(f"[yellow]No commits in the last {days} day(s).[/yellow]")
        return

    table = Table(
        title=f"Recent changes: {name}", show_header=True, header_style="bold magenta"
    )
    table.add_column("Commit", style="cyan")
    table.add_column("Date", style="dim")
    table.add_column("Author")
    table.add_column("Message")
    table.add_column("Files", justify="right")

    for commit in commits:
        table.add_row(
            commit.hash[:7],
            commit.date.strftime("%Y-%m-%d %H:%M"),
            commit.author,
            commit.message,
            str(len(commit.files)),
        )

    console.print(table)


def open_config() -> None:
    """Opens the user configuration file in the system default editor."""
    if not CONFIG_FILE.exists():
        CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
        with open(CONFIG_FILE, "w") as f:
            f.write(
                "# Context Sync Configuration\n\n"
                "[sync]\n"
                "# enabled = true\n"
                '# interval_minutes = "30m"\n'
                "# auto_merge = false\n"
            )

    editor = os.environ.get("EDITOR")
    if not editor:
        if sys.platform == "darwin":
            editor = "open"
        else:
            editor = "nano"

    console.print(f"Opening [cyan]{CONFIG_FILE}[/cyan]...")

    try:
        subprocess.run([editor, str(CONFIG_FILE)])
    except OSError as e:
        console.print(f"[red]Could not open editor: {e}[/red]")


def show_config_reference() -> None:
    """Displays a formatted table of all available configuration options."""
    table = Table(title="Context Sync Configuration Schema", show_lines=True)
    table.add_column("Section", style="cyan", justify="right")
    table.add_column("Key", style="green")
    table.add_column("Type", style="dim")
    table.add_column("Default", style="yellow")
    table.add_column("Description")

    table.add_row(
        "sync", "enabled", "bool", "false", "Run periodic update checks in the daemon."
    )
    table.add_row(
        "",
        "interval_minutes",
        "int | str",
        "30",
        "Time between checks, 5 to 1440 minutes (e.g., 45, '45m', '2h').",
    )
    table.add_row(
        "",
        "auto_merge",
        "bool",
        "false",
        "Pull upstream changes automatically instead of only reporting them.",
    )
    table.add_row(
        "",
        "notify_on_updates",
        "bool",
        "true",
        "Show one notification per check summarising the updates.",
    )
    table.add_row(
        "", "run_on_startup", "bool", "true", "Check immediately when auto-sync starts."
    )
    table.add_row(
        "", "remote_name", "str", '"origin"', "The git remote fetched and pulled from."
    )
    table.add_row(
        "workspace",
        "contexts_folder",
        "str",
        '".contexts"',
        "Folder holding one sub-folder per context project.",
    )
    table.add_row(
        "limits",
        "max_log_size",
        "int | str",
        '"5mb"',
        "Max size for log files before rotation (e.g., '5mb', '1gb').",
    )

    console.print(table)


def tail_log() -> None:
    """Follows the daemon log file in real-time."""
    if not LOG_FILE.exists():
        console.print(f"[red]No log file found yet at {LOG_FILE}.[/red]")
        return

    console.print(f"Tailing [bold cyan]{LOG_FILE}[/bold cyan] (Ctrl+C to stop)...")
    try:
        subprocess.run(["tail", "-n", "1000", "-f", str(LOG_FILE)])
    except KeyboardInterrupt:
        console.print("\nStopped.", style="dim")


class ContextSyncHelpFormatter(argparse.HelpFormatter):
    """Groups the subcommands under headers in the help output."""

    def _format_action(self, action: argparse.Action) -> str:
        if isinstance(action, argparse._SubParsersAction):
            parts = []

            groups = {
                "Sync": ["check", "sync", "update"],
                "Inspect": ["status", "list", "changes"],
                "Daemon": ["run", "log"],
                "General": ["config", "help"],
            }

            subactions = list(self._iter_indented_subactions(action))

            for group_name, commands in groups.items():
                group_actions = [a for a in subactions if a.dest in commands]
                if not group_actions:
                    continue

                parts.append(f"\n  {group_name}:\n")

                self._indent()
                for subaction in group_actions:
                    parts.append(self._format_action(subaction))
                self._dedent()

            return self._join_parts(parts)

        return super()._format_action(action)


def main() -> None:
    """Main entry point for the context-sync CLI."""
    parser = argparse.ArgumentParser(
        prog="context-sync",
        usage="context-sync [-w WORKSPACE] <command>",
        formatter_class=ContextSyncHelpFormatter,
    )
    parser.add_argument(
        "-w",
        "--workspace",
        type=Path,
        default=None,
        help="Workspace root (default: current directory)",
    )

    subparsers = parser.add_subparsers(dest="command")

    status_parser = subparsers.add_parser(
        "status", help="Show auto-sync settings and pending updates"
    )
    status_parser.add_argument(
        "--refresh", action="store_true", help="Check for updates before reporting"
    )
    subparsers.add_parser("list", help="List context projects")
    subparsers.add_parser("check", help="Check all projects for upstream updates")
    subparsers.add_parser("sync", help="Check, then pull every project with updates")

    update_parser = subparsers.add_parser("update", help="Pull one project now")
    update_parser.add_argument("name", help="Project name")

    changes_parser = subparsers.add_parser(
        "changes", help="Show recent commits of a project"
    )
    changes_parser.add_argument("name", help="Project name")
    changes_parser.add_argument(
        "--days", type=int, default=7, help="How far back to look (default: 7)"
    )

    subparsers.add_parser("run", help="Run the sync daemon in the foreground")
    subparsers.add_parser("log", help="Tail the daemon log file")

    config_parser = subparsers.add_parser(
        "config", help="Open user config file or view options"
    )
    config_parser.add_argument(
        "--list",
        "-l",
        action="store_true",
        help="List all available configuration options and their descriptions",
    )
    subparsers.add_parser("help", help="Show this help message")

    args = parser.parse_args()
    workspace = (args.workspace or Path.cwd()).resolve()

    try:
        if args.command == "status":
            show_status(workspace, refresh=args.refresh)
        elif args.command == "list":
            list_projects(workspace)
        elif args.command == "check":
            check_now(workspace)
        elif args.command == "sync":
            sync_now(workspace)
        elif args.command == "update":
            update_project(workspace, args.name)
        elif args.command == "changes":
            show_changes(workspace, args.name, args.days)
        elif args.command == "run":
            daemon.main(workspace=workspace, interactive=True)
        elif args.command == "log":
            tail_log()
        elif args.command == "config":
            if getattr(args, "list", False):
                show_config_reference()
            else:
                open_config()
        else:
            parser.print_help()
    except ConfigInvalid as e:
        console.print(f"[bold red]Config Error:[/bold red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
