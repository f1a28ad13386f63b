import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from .constants import APP_NAME
from .git_wrapper import GitError, GitRepo, GitUnavailable, NotARepository
from .registry import ProjectRef

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class CheckResult:
    """Per-project, per-cycle outcome of an update check.

    Attributes:
        project (str): The project name.
        commits_behind (int): Upstream commits not yet present locally.
    """

    project: str
    commits_behind: int = 0

    @property
    def has_update(self) -> bool:
        return self.commits_behind > 0


class UpdateChecker:
    """Read-only check: does a project's remote have commits we do not?

    The only mutation is the remote-tracking ref update performed by fetch.
    Failures never propagate; they turn into a no-update result so one bad
    remote cannot abort a cycle for the other projects.
    """

    def __init__(self, repo_factory: Callable[[Path], GitRepo] = GitRepo):
        self._repo_factory = repo_factory
        self._git_missing_reported = False

    def check(self, project: ProjectRef, remote: str = "origin") -> CheckResult:
        """Fetches `remote` for the project and counts commits behind.

        Args:
            project (ProjectRef): The project to check.
            remote (str): The remote to compare against.

        Returns:
            CheckResult: `commits_behind == 0` whenever the check failed.
        """
        try:
            repo = self._repo_factory(project.folder_path)
            repo.fetch(remote)
            behind = repo.count_commits_behind(remote)
        except NotARepository:
            logger.debug(f"SKIPPED {project.name}: no longer a git repository.")
            return CheckResult(project.name)
        except GitUnavailable as e:
            if not self._git_missing_reported:
                logger.error(f"CHECK ERROR: {e}. Update checks cannot run.")
                self._git_missing_reported = True
            return CheckResult(project.name)
        except GitError as e:
            logger.warning(f"CHECK FAILED {project.name}: {e}")
            return CheckResult(project.name)

        if behind:
            logger.info(f"UPDATE {project.name}: {behind} commit(s) behind {remote}.")
        return CheckResult(project.name, commits_behind=behind)
