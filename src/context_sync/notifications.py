"""User-facing notices emitted by the sync coordinator.

The coordinator only hands over facts (`UpdateNotice`, conflict details);
all wording lives here.
"""

from dataclasses import dataclass, field

from rich.console import Console

from .system import SystemStrategy, get_system


@dataclass(frozen=True)
class UpdateNotice:
    """One aggregated notice per check cycle.

    Attributes:
        count (int): Number of projects named in the notice.
        project_names (tuple[str, ...]): The projects, sorted.
        auto_merged (bool): True when the updates were already pulled.
    """

    count: int
    project_names: tuple[str, ...] = field(default_factory=tuple)
    auto_merged: bool = False


def format_notice(notice: UpdateNotice) -> tuple[str, str]:
    """Renders a notice as a (title, message) pair."""
    projects = ", ".join(notice.project_names)
    if notice.auto_merged:
        return "Context Sync", f"Auto-synced {notice.count} project(s): {projects}"
    return (
        "Context Sync",
        f"{notice.count} project(s) have updates: {projects}. "
        "Run 'context-sync sync' to merge them.",
    )


def format_conflict(project: str, detail: str) -> tuple[str, str]:
    """Renders a merge failure for a single project as a (title, message) pair."""
    return "Context Sync Conflict", f"Failed to auto-sync {project}: {detail}"


class Notifier:
    """Base notifier; drops everything."""

    def updates_available(self, notice: UpdateNotice) -> None:
        pass

    def merge_conflict(self, project: str, detail: str) -> None:
        pass


class DesktopNotifier(Notifier):
    """Shows notices as OS desktop notifications."""

    def __init__(self, system: SystemStrategy | None = None):
        self.system = system or get_system()

    def updates_available(self, notice: UpdateNotice) -> None:
        self.system.notify(*format_notice(notice))

    def merge_conflict(self, project: str, detail: str) -> None:
        self.system.notify(*format_conflict(project, detail))


class ConsoleNotifier(Notifier):
    """Prints notices to the terminal; used by interactive CLI commands."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def updates_available(self, notice: UpdateNotice) -> None:
        _, message = format_notice(notice)
        style = "bold green" if notice.auto_merged else "bold yellow"
        self.console.print(message, style=style, markup=False)

    def merge_conflict(self, project: str, detail: str) -> None:
        _, message = format_conflict(project, detail)
        self.console.print(f"CONFLICT: {message}", style="bold red", markup=False)
