import datetime
from dataclasses import dataclass, field

from rich.panel import Panel
from rich.text import Text

from .coordinator import SyncCoordinator, SyncState
from .registry import ProjectRef


@dataclass(frozen=True)
class SyncStatus:
    """Point-in-time snapshot of the auto-sync subsystem.

    Attributes:
        state (SyncState): Current coordinator state.
        enabled (bool): Whether auto-sync is enabled in configuration.
        interval_minutes (int): Time between scheduled checks.
        auto_merge (bool): Whether updates are pulled automatically.
        last_check_time (datetime.datetime | None): Start of the last cycle.
        next_check_time (datetime.datetime | None): Next scheduled tick.
        pending_project_names (tuple[str, ...]): Projects with unmerged updates.
    """

    state: SyncState
    enabled: bool
    interval_minutes: int
    auto_merge: bool
    last_check_time: datetime.datetime | None = None
    next_check_time: datetime.datetime | None = None
    pending_project_names: tuple[str, ...] = field(default_factory=tuple)


class StatusReporter:
    """Read-only view over a coordinator; never triggers a check."""

    def __init__(self, coordinator: SyncCoordinator):
        self.coordinator = coordinator

    def get_status(self) -> SyncStatus:
        config = self.coordinator.config
        return SyncStatus(
            state=self.coordinator.state,
            enabled=config.enabled,
            interval_minutes=config.interval_minutes,
            auto_merge=config.auto_merge,
            last_check_time=self.coordinator.last_check_time,
            next_check_time=self.coordinator.next_check_time,
            pending_project_names=tuple(self.coordinator.pending_projects()),
        )

    def get_projects_with_updates(self) -> list[str]:
        return self.coordinator.pending_projects()


def _fmt_time(value: datetime.datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "Never"


def render_status(
    status: SyncStatus, projects: list[ProjectRef], include_timer: bool = True
) -> Panel:
    """Builds the status panel shown by `context-sync status`.

    A snapshot with no `last_check_time` has never run a check, so its empty
    pending set says nothing about upstream and is shown as unknown.

    Args:
        status (SyncStatus): The snapshot to display.
        projects (list[ProjectRef]): All projects, used for the git-tracked list.
        include_timer (bool): Show the coordinator state and next check time.
            Off when the snapshot comes from a coordinator that owns no timer.

    Returns:
        Panel: A renderable for a `rich` console.
    """
    state_styles = {
        SyncState.CHECKING: "bold blue",
        SyncState.IDLE: "green",
        SyncState.STOPPED: "bold red",
    }

    content = Text()
    content.append("Auto-sync:  ", style="bold")
    if status.enabled:
        content.append("Enabled\n", style="green")
    else:
        content.append("Disabled\n", style="dim")
    if include_timer:
        content.append("State:      ", style="bold")
        content.append(
            f"{status.state.value.capitalize()}\n", style=state_styles[status.state]
        )
    content.append(f"Interval:   {status.interval_minutes} minutes\n")
    content.append(f"Auto-merge: {'Yes' if status.auto_merge else 'No'}\n")
    content.append(f"Last check: {_fmt_time(status.last_check_time)}", style="dim")
    if include_timer:
        content.append(
            f"\nNext check: {_fmt_time(status.next_check_time)}", style="dim"
        )

    if status.last_check_time is None:
        content.append("\n\nPending updates: unknown (not checked yet).\n", style="bold")
        content.append(
            "Run 'context-sync status --refresh' to check now.", style="dim"
        )
    elif status.pending_project_names:
        content.append(
            f"\n\nPending updates ({len(status.pending_project_names)}):\n",
            style="bold yellow",
        )
        for name in status.pending_project_names:
            content.append(f"  - {name}\n", style="yellow")
        content.append("Run 'context-sync sync' to merge them.", style="yellow")
    else:
        content.append("\n\nAll projects are up to date.", style="green")

    tracked = [p for p in projects if p.is_git_backed]
    content.append(f"\n\nGit-tracked projects ({len(tracked)}):", style="bold")
    for project in tracked:
        marker = "" if project.enabled else " (disabled)"
        content.append(f"\n  - {project.name}{marker}")

    return Panel(content, title="Context Sync Status", expand=False)
