import datetime
import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from .constants import (
    APP_NAME,
    CONFLICT_MARKERS,
    GIT_LOCK_FILES,
    NETWORK_ERROR_MARKERS,
)

logger = logging.getLogger(APP_NAME)


class GitError(RuntimeError):
    """Base class for failures raised by `GitRepo`."""


class GitUnavailable(GitError):
    """The git executable could not be found on PATH."""


class NotARepository(GitError):
    """The target folder has no `.git` marker."""


class NetworkError(GitError):
    """The remote could not be reached (DNS, transport, refused credentials)."""


class MergeConflict(GitError):
    """A merge could not complete automatically, or one is already in progress."""


@dataclass
class PullResult:
    """Outcome of a successful pull.

    Attributes:
        changed_file_count (int): Number of files that differ between the old and new HEAD.
        changed_files (list[str]): Paths of those files, relative to the repository root.
    """

    changed_file_count: int = 0
    changed_files: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return self.changed_file_count > 0


@dataclass
class CommitInfo:
    """A single commit as shown in the changes view."""

    hash: str
    date: datetime.datetime
    author: str
    message: str
    files: list[str] = field(default_factory=list)


def _classify(output: str) -> type[GitError]:
    """Maps combined git output to the most specific error type."""
    lowered = output.lower()
    if any(marker in lowered for marker in NETWORK_ERROR_MARKERS):
        return NetworkError
    if any(marker in lowered for marker in CONFLICT_MARKERS):
        return MergeConflict
    return GitError


class GitRepo:
    """A wrapper around the Git command-line interface for a specific repository.

    Every method runs synchronously in the calling thread; callers that need
    concurrency (the sync coordinator) push calls onto worker threads.

    Attributes:
        path (Path): The file system path to the repository root.
    """

    def __init__(self, path: Path):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.

        Raises:
            NotARepository: If the specified path does not contain a .git entry.
        """
        self.path = Path(path)
        if not (self.path / ".git").exists():
            raise NotARepository(f"Not a git repository: {self.path}")

    @staticmethod
    def _background_env() -> dict[str, str]:
        """Environment for remote operations that must never wait on a prompt."""
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.setdefault("GIT_SSH_COMMAND", "ssh -o BatchMode=yes")
        return env

    def _run(
        self, args: list[str], capture: bool = True, env: dict | None = None
    ) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            capture (bool, optional):   Whether to capture and return stdout.
                                        Defaults to True.
            env (dict | None, optional): Environment variables to pass to the
                                         subprocess. Defaults to None.

        Returns:
            str:    The stripped stdout of the command if capture is True,
                    otherwise an empty string.

        Raises:
            GitUnavailable: If the git executable is missing.
            NetworkError: If the output points at an unreachable remote.
            MergeConflict: If the output points at a merge that cannot complete.
            GitError: For any other non-zero exit code.
        """
        try:
            res = subprocess.run(
                ["git", *args],
                cwd=self.path,
                capture_output=capture,
                text=True,
                check=True,
                env=env,
            )
            return res.stdout.strip() if capture else ""
        except FileNotFoundError as e:
            raise GitUnavailable("git executable not found on PATH") from e
        except subprocess.CalledProcessError as e:
            output = "\n".join(part for part in (e.stdout, e.stderr) if part)
            error_cls = _classify(output)
            raise error_cls(f"Git error: {output.strip() or e}") from e

    def current_branch(self) -> str:
        """Retrieves the name of the currently checked-out branch.

        Returns:
            str: The name of the current branch (empty when HEAD is detached).
        """
        return self._run(["branch", "--show-current"])

    def rev_parse(self, rev: str) -> str | None:
        """Resolves a revision (tag, branch, relative ref) to a full SHA-1 hash.

        Args:
            rev (str): The revision to parse (e.g., 'HEAD', 'origin/main').

        Returns:
            str | None: The full SHA-1 hash,
                        or None if the revision could not be resolved.
        """
        try:
            return self._run(["rev-parse", "--verify", "--quiet", rev])
        except GitUnavailable:
            raise
        except GitError as e:
            logger.debug(f"rev-parse failed for '{rev}': {e}")
            return None

    def is_busy(self) -> bool:
        """Determines if the working tree is mid-merge, mid-rebase or locked.

        Returns:
            bool: True if a git operation owns the working tree, False otherwise.
        """
        return self.merge_in_progress() or self.index_locked()

    def merge_in_progress(self) -> bool:
        git_dir = self.path / ".git"
        return any((git_dir / f).exists() for f in GIT_LOCK_FILES)

    def index_locked(self) -> bool:
        return (self.path / ".git" / "index.lock").exists()

    def upstream_ref(self, remote: str = "origin") -> str:
        """Returns the ref HEAD is compared against.

        Uses the current branch's configured upstream, falling back to the
        remote's default branch (`<remote>/HEAD`).

        Args:
            remote (str): The remote used for the fallback.

        Returns:
            str: A ref name usable in rev-list ranges.
        """
        try:
            upstream = self._run(
                ["rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{upstream}"]
            )
            if upstream:
                return upstream
        except GitUnavailable:
            raise
        except GitError as e:
            logger.debug(f"No upstream configured in {self.path.name}: {e}")
        return f"{remote}/HEAD"

    def fetch(self, remote: str = "origin") -> None:
        """Updates remote-tracking refs for `remote` without touching the working tree.

        Args:
            remote (str): The remote to fetch from.
        """
        self._run(["fetch", "--quiet", remote], env=self._background_env())

    def count_commits_behind(self, remote: str = "origin") -> int:
        """Counts commits present upstream but absent from HEAD.

        Counting `HEAD..<upstream>` reports upstream-only commits even when the
        local branch also has commits of its own.

        Args:
            remote (str): The remote whose tracking ref is compared.

        Returns:
            int: The number of upstream commits not yet merged locally.
        """
        upstream = self.upstream_ref(remote)
        output = self._run(["rev-list", "--count", f"HEAD..{upstream}"])
        try:
            return int(output or 0)
        except ValueError:
            logger.warning(f"Unexpected rev-list output in {self.path.name}: {output!r}")
            return 0

    def diff_names(self, old: str, new: str) -> list[str]:
        """Lists files that differ between two commits.

        Args:
            old (str): The base commit.
            new (str): The target commit.

        Returns:
            list[str]: Changed paths, in git's order.
        """
        output = self._run(["diff", "--name-only", old, new])
        return output.splitlines() if output else []

    def pull(self, remote: str = "origin") -> PullResult:
        """Fetches and merges the tracking branch into the working tree.

        Conflicts are surfaced, never resolved: the working tree is left in the
        state git leaves it in.

        Args:
            remote (str): The remote to pull from.

        Returns:
            PullResult: The files changed by the merge (empty when up to date).

        Raises:
            MergeConflict: If the merge cannot complete or another one is in progress.
            NetworkError: If the remote is unreachable.
            GitError: If another git process holds the index lock.
        """
        if self.merge_in_progress():
            raise MergeConflict(
                f"A merge or rebase is already in progress in {self.path.name}"
            )
        if self.index_locked():
            raise GitError(f"Another git process holds index.lock in {self.path.name}")

        before = self.rev_parse("HEAD")
        self._run(
            ["pull", "--no-edit", "--no-rebase", remote], env=self._background_env()
        )
        after = self.rev_parse("HEAD")

        if not before or not after or before == after:
            return PullResult()

        changed = self.diff_names(before, after)
        return PullResult(changed_file_count=len(changed), changed_files=changed)

    def recent_commits(self, since: datetime.datetime) -> list[CommitInfo]:
        """Lists commits on HEAD newer than `since`, newest first.

        Args:
            since (datetime.datetime): The lower bound for commit dates.

        Returns:
            list[CommitInfo]: Commits with the files each one touched.
        """
        marker = "\x1e"
        output = self._run(
            [
                "log",
                f"--since={since.isoformat()}",
                "--name-only",
                f"--format={marker}%H%x1f%cI%x1f%an%x1f%s",
            ]
        )

        commits = []
        for block in output.split(marker):
            if not block.strip():
                continue
            header, _, body = block.partition("\n")
            parts = header.split("\x1f")
            if len(parts) != 4:
                logger.debug(f"Skipping malformed log entry: {header!r}")
                continue
            sha, date, author, message = parts
            commits.append(
                CommitInfo(
                    hash=sha,
                    date=datetime.datetime.fromisoformat(date),
                    author=author,
                    message=message,
                    files=[line for line in body.splitlines() if line.strip()],
                )
            )
        return commits
