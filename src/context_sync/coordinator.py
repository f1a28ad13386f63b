"""The auto-sync state machine.

One `SyncCoordinator` owns the periodic timer, the set of projects with
pending upstream updates and the auto-merge/notify policy. Every trigger
(startup, timer tick, manual command, configuration change) goes through
`check_for_updates`, which guarantees at most one cycle in flight.

All coordinator state lives on the event loop thread. Blocking git work is
pushed to worker threads with `asyncio.to_thread`, and only its return
values come back to the loop, so no state is shared across threads.
"""

import asyncio
import datetime
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from . import constants
from .checker import CheckResult, UpdateChecker
from .config import SyncConfig
from .constants import APP_NAME
from .git_wrapper import GitError, GitRepo, MergeConflict, NotARepository, PullResult
from .notifications import Notifier, UpdateNotice
from .registry import ProjectRef, ProjectRegistry

logger = logging.getLogger(APP_NAME)


class SyncState(str, Enum):
    """Lifecycle state of a coordinator."""

    STOPPED = "stopped"
    IDLE = "idle"
    CHECKING = "checking"


class SyncStateError(RuntimeError):
    """Raised when the coordinator is started while its timer is already armed."""


@dataclass
class CycleReport:
    """What one check cycle saw and did.

    Attributes:
        started_at (datetime.datetime): When the cycle began.
        results (list[CheckResult]): One result per checked project.
        merged (dict[str, PullResult]): Projects pulled during the cycle.
        failed (dict[str, str]): Projects whose pull failed, with the reason.
        pending (list[str]): The pending set once the cycle finished.
        applied (bool): False when the cycle outlived a stop() and was discarded.
    """

    started_at: datetime.datetime
    results: list[CheckResult] = field(default_factory=list)
    merged: dict[str, PullResult] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)
    pending: list[str] = field(default_factory=list)
    applied: bool = True

    @property
    def updates_found(self) -> list[str]:
        return sorted(r.project for r in self.results if r.has_update)


@dataclass
class SyncOutcome:
    """Result of pulling every pending project on request."""

    merged: dict[str, PullResult] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)


class SyncCoordinator:
    """Periodically checks git-backed context projects for upstream changes.

    Attributes:
        registry (ProjectRegistry): Source of projects, config and timestamps.
        notifier (Notifier): Receives aggregated notices and conflict reports.
    """

    def __init__(
        self,
        registry: ProjectRegistry,
        notifier: Notifier | None = None,
        repo_factory: Callable[[Path], GitRepo] = GitRepo,
        checker: UpdateChecker | None = None,
    ):
        self.registry = registry
        self.notifier = notifier or Notifier()
        self._repo_factory = repo_factory
        self._checker = checker or UpdateChecker(repo_factory)

        self._pending: set[str] = set()
        self._last_check_time: datetime.datetime | None = None
        self._next_check_time: datetime.datetime | None = None
        self._config: SyncConfig | None = None

        self._timer: asyncio.Task | None = None
        self._cycle: asyncio.Task | None = None
        self._cycle_generation = 0
        # Bumped by stop(); a cycle applies results only while its generation is current.
        self._generation = 0
        self._folder_locks: dict[Path, asyncio.Lock] = {}

    # --- Read accessors (copies only) ---

    @property
    def is_running(self) -> bool:
        """True while the periodic timer is armed."""
        return self._timer is not None

    @property
    def state(self) -> SyncState:
        if self._cycle_in_flight() and self._cycle_generation == self._generation:
            return SyncState.CHECKING
        return SyncState.IDLE if self.is_running else SyncState.STOPPED

    @property
    def config(self) -> SyncConfig:
        """The settings of the armed timer or last cycle, else a fresh read."""
        if self._config is not None:
            return self._config
        return self.registry.get_config()

    @property
    def last_check_time(self) -> datetime.datetime | None:
        return self._last_check_time

    @property
    def next_check_time(self) -> datetime.datetime | None:
        return self._next_check_time

    def pending_projects(self) -> list[str]:
        return sorted(self._pending)

    # --- Lifecycle ---

    def start(self) -> bool:
        """Arms the periodic timer if auto-sync is enabled.

        Must be called from within a running event loop.

        Returns:
            bool: True if the timer was armed, False if auto-sync is disabled.

        Raises:
            SyncStateError: If the timer is already armed.
            ConfigInvalid: If the current configuration is out of range.
        """
        if self._timer is not None:
            raise SyncStateError("Auto-sync is already running; stop it first.")

        config = self.registry.get_config()
        if not config.enabled:
            logger.info("Auto-sync is disabled.")
            return False

        self._config = config
        self._timer = asyncio.get_running_loop().create_task(
            self._run_timer(config), name="context-sync-timer"
        )
        logger.info(
            f"Auto-sync started (interval: {config.interval_minutes} minutes, "
            f"auto-merge: {'on' if config.auto_merge else 'off'})."
        )
        return True

    def stop(self) -> None:
        """Cancels the timer and forgets all cycle state.

        An in-flight cycle is not aborted; its results are discarded when it
        completes. Calling stop() on a stopped coordinator is harmless.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            logger.info("Auto-sync stopped.")

        self._generation += 1
        self._pending.clear()
        self._last_check_time = None
        self._next_check_time = None
        self._config = None

    async def wait_idle(self) -> None:
        """Waits until no cycle is in flight, without cancelling anything."""
        if self._cycle_in_flight():
            await asyncio.wait({self._cycle})

    # --- Triggers ---

    async def check_for_updates(self) -> CycleReport:
        """Runs one check cycle, or joins the one already in flight.

        Returns:
            CycleReport: The report of the cycle this call ran or joined.
        """
        while True:
            cycle = self._cycle
            # Check-and-set below has no await in between: at most one cycle starts.
            if cycle is None or cycle.done():
                generation = self._generation
                cycle = asyncio.get_running_loop().create_task(
                    self._run_cycle(generation), name="context-sync-cycle"
                )
                self._cycle, self._cycle_generation = cycle, generation
                return await asyncio.shield(cycle)

            if self._cycle_generation == self._generation:
                logger.debug("Update check already in progress; joining it.")
                return await asyncio.shield(cycle)

            # A cycle from before the last stop() is still draining. Let it
            # finish so two cycles never touch the same folders at once.
            await asyncio.wait({cycle})

    async def manual_check(self) -> CycleReport:
        """User-initiated check; progress display is the caller's concern."""
        logger.info("Manual update check requested.")
        return await self.check_for_updates()

    async def update_project(self, name: str) -> PullResult:
        """Pulls a single project now, regardless of the pending set.

        Args:
            name (str): The project to update.

        Returns:
            PullResult: The files changed by the pull.

        Raises:
            KeyError: If the project does not exist.
            GitError: If the pull fails (including MergeConflict).
        """
        project = self.registry.get_project(name)
        remote = self.registry.get_config().remote_name

        async with self._folder_lock(project.folder_path):
            result = await asyncio.to_thread(self._pull, project.folder_path, remote)

        self._pending.discard(name)
        self._record_sync(name)
        logger.info(
            f"SUCCESS {name}: updated {result.changed_file_count} changed file(s)."
        )
        return result

    async def sync_pending(self) -> SyncOutcome:
        """Pulls every project currently in the pending set, one at a time."""
        outcome = SyncOutcome()
        for name in self.pending_projects():
            try:
                outcome.merged[name] = await self.update_project(name)
            except KeyError:
                logger.warning(f"SKIPPED {name}: project no longer exists.")
                self._pending.discard(name)
            except MergeConflict as e:
                outcome.failed[name] = str(e)
                logger.error(f"MERGE CONFLICT {name}: {e}")
                self._notify_conflict(name, str(e))
            except GitError as e:
                outcome.failed[name] = str(e)
                logger.warning(f"PULL FAILED {name}: {e}")
        return outcome

    # --- Internals ---

    def _cycle_in_flight(self) -> bool:
        return self._cycle is not None and not self._cycle.done()

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _folder_lock(self, path: Path) -> asyncio.Lock:
        return self._folder_locks.setdefault(Path(path).resolve(), asyncio.Lock())

    async def _run_timer(self, config: SyncConfig) -> None:
        interval = config.interval_minutes * constants.SECONDS_PER_MINUTE
        if config.run_on_startup:
            await self._tick()
        while True:
            self._next_check_time = datetime.datetime.now() + datetime.timedelta(
                seconds=interval
            )
            await asyncio.sleep(interval)
            await self._tick()

    async def _tick(self) -> None:
        try:
            await self.check_for_updates()
        except Exception:
            logger.exception("LOOP ERROR: scheduled update check failed")

    async def _run_cycle(self, generation: int) -> CycleReport:
        config = self.registry.get_config()
        report = CycleReport(started_at=datetime.datetime.now())

        if self._is_current(generation):
            self._config = config
            self._last_check_time = report.started_at
            self._pending.clear()

        projects = [
            p for p in self.registry.list_projects() if p.enabled and p.is_git_backed
        ]

        if not projects:
            logger.info("No git projects to check.")
        else:
            logger.info(f"Checking {len(projects)} git project(s) for updates...")
            async with asyncio.TaskGroup() as group:
                for project in projects:
                    group.create_task(
                        self._process_project(project, config, generation, report)
                    )

        if not self._is_current(generation):
            logger.info("Discarding results of an update check that outlived stop().")
            report.applied = False
            return report

        report.pending = self.pending_projects()
        if config.notify_on_updates and (notice := self._build_notice(report, config)):
            self._notify_updates(notice)

        logger.info(
            f"Update check complete: {len(report.updates_found)} with updates, "
            f"{len(report.merged)} merged, {len(report.pending)} pending."
        )
        return report

    async def _process_project(
        self,
        project: ProjectRef,
        config: SyncConfig,
        generation: int,
        report: CycleReport,
    ) -> None:
        """Checks one project and applies the merge policy; never raises."""
        try:
            async with self._folder_lock(project.folder_path):
                result = await asyncio.to_thread(
                    self._checker.check, project, config.remote_name
                )
                report.results.append(result)
                if not result.has_update:
                    return

                if self._is_current(generation):
                    self._pending.add(project.name)
                if not config.auto_merge:
                    return
                if not self._is_current(generation):
                    logger.info(f"SKIPPED {project.name}: auto-sync stopped before merge.")
                    return

                await self._auto_merge(project, config, generation, report)
        except Exception:
            logger.exception(f"CHECK ERROR {project.name}")

    async def _auto_merge(
        self,
        project: ProjectRef,
        config: SyncConfig,
        generation: int,
        report: CycleReport,
    ) -> None:
        try:
            pulled = await asyncio.to_thread(
                self._pull, project.folder_path, config.remote_name
            )
        except NotARepository:
            logger.debug(f"SKIPPED {project.name}: no longer a git repository.")
            if self._is_current(generation):
                self._pending.discard(project.name)
            return
        except MergeConflict as e:
            report.failed[project.name] = str(e)
            logger.error(f"MERGE CONFLICT {project.name}: {e}")
            if self._is_current(generation):
                self._notify_conflict(project.name, str(e))
            return
        except GitError as e:
            report.failed[project.name] = str(e)
            logger.warning(f"PULL FAILED {project.name}: {e}")
            return

        report.merged[project.name] = pulled
        if self._is_current(generation):
            self._pending.discard(project.name)
        self._record_sync(project.name)
        logger.info(
            f"SUCCESS {project.name}: merged {pulled.changed_file_count} changed file(s)."
        )

    def _pull(self, path: Path, remote: str) -> PullResult:
        return self._repo_factory(path).pull(remote)

    def _record_sync(self, name: str) -> None:
        """Fire-and-forget timestamp write; the registry is not read back."""
        try:
            self.registry.record_sync_timestamp(name)
        except (KeyError, OSError) as e:
            logger.warning(f"Could not record sync time for {name}: {e}")

    @staticmethod
    def _build_notice(report: CycleReport, config: SyncConfig) -> UpdateNotice | None:
        if config.auto_merge:
            names = sorted(report.merged)
        else:
            names = report.pending
        if not names:
            return None
        return UpdateNotice(
            count=len(names), project_names=tuple(names), auto_merged=config.auto_merge
        )

    def _notify_updates(self, notice: UpdateNotice) -> None:
        try:
            self.notifier.updates_available(notice)
        except Exception as e:
            logger.warning(f"Notification failed: {e}")

    def _notify_conflict(self, project: str, detail: str) -> None:
        try:
            self.notifier.merge_conflict(project, detail)
        except Exception as e:
            logger.warning(f"Notification failed: {e}")
