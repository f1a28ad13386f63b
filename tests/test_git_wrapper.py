import datetime
import subprocess
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from context_sync.git_wrapper import (
    GitError,
    GitRepo,
    GitUnavailable,
    MergeConflict,
    NetworkError,
    NotARepository,
)


@pytest.fixture
def repo(tmp_path: Path) -> GitRepo:
    (tmp_path / ".git").mkdir()
    return GitRepo(tmp_path)


def _failed(stderr: str) -> subprocess.CalledProcessError:
    return subprocess.CalledProcessError(1, ["git"], output="", stderr=stderr)


def test_requires_git_marker(tmp_path: Path) -> None:
    with pytest.raises(NotARepository):
        GitRepo(tmp_path)


def test_missing_git_executable_raises_git_unavailable(
    mocker: MagicMock, repo: GitRepo
) -> None:
    mocker.patch("subprocess.run", side_effect=FileNotFoundError("git"))

    with pytest.raises(GitUnavailable):
        repo.fetch()


@pytest.mark.parametrize(
    ("stderr", "expected"),
    [
        ("fatal: unable to access 'https://x/': Could not resolve host: x", NetworkError),
        ("fatal: could not read Username: terminal prompts disabled", NetworkError),
        ("CONFLICT (content): Merge conflict in notes.md", MergeConflict),
        (
            "error: Your local changes would be overwritten by merge:\n  notes.md",
            MergeConflict,
        ),
        ("fatal: ambiguous argument 'nope'", GitError),
    ],
)
def test_failures_are_classified(
    mocker: MagicMock, repo: GitRepo, stderr: str, expected: type[GitError]
) -> None:
    mocker.patch("subprocess.run", side_effect=_failed(stderr))

    with pytest.raises(GitError) as excinfo:
        repo._run(["pull"])

    assert type(excinfo.value) is expected
    assert stderr.splitlines()[0] in str(excinfo.value)


def test_fetch_runs_non_interactively(mocker: MagicMock, repo: GitRepo) -> None:
    mock_run = mocker.patch("subprocess.run")
    mock_run.return_value.stdout = ""

    repo.fetch("upstream")

    args, kwargs = mock_run.call_args
    assert args[0] == ["git", "fetch", "--quiet", "upstream"]
    assert kwargs["cwd"] == repo.path
    assert kwargs["env"]["GIT_TERMINAL_PROMPT"] == "0"
    assert "BatchMode=yes" in kwargs["env"]["GIT_SSH_COMMAND"]


def test_count_commits_behind_uses_configured_upstream(
    mocker: MagicMock, repo: GitRepo
) -> None:
    mock_run = mocker.patch.object(repo, "_run", side_effect=["origin/main", "3"])

    assert repo.count_commits_behind() == 3
    mock_run.assert_called_with(["rev-list", "--count", "HEAD..origin/main"])


def test_count_commits_behind_falls_back_to_remote_head(
    mocker: MagicMock, repo: GitRepo
) -> None:
    mock_run = mocker.patch.object(
        repo, "_run", side_effect=[GitError("no upstream"), "0"]
    )

    assert repo.count_commits_behind("upstream") == 0
    mock_run.assert_called_with(["rev-list", "--count", "HEAD..upstream/HEAD"])


def test_pull_reports_changed_files(mocker: MagicMock, repo: GitRepo) -> None:
    calls = []

    def fake_run(args: list[str], capture: bool = True, env: dict | None = None) -> str:
        calls.append(args)
        if args[0] == "rev-parse":
            return "aaa" if len(calls) == 1 else "bbb"
        if args[0] == "diff":
            return "notes.md\nrefs/links.md"
        return ""

    mocker.patch.object(repo, "_run", side_effect=fake_run)

    result = repo.pull()

    assert result.changed_file_count == 2
    assert result.changed_files == ["notes.md", "refs/links.md"]
    assert ["pull", "--no-edit", "--no-rebase", "origin"] in calls
    assert ["diff", "--name-only", "aaa", "bbb"] in calls


def test_pull_already_up_to_date(mocker: MagicMock, repo: GitRepo) -> None:
    mocker.patch.object(repo, "_run", side_effect=["aaa", "", "aaa"])

    result = repo.pull()

    assert result.changed_file_count == 0
    assert not result.has_changes


def test_pull_refuses_during_merge(mocker: MagicMock, repo: GitRepo) -> None:
    (repo.path / ".git" / "MERGE_HEAD").write_text("abc")
    mock_run = mocker.patch.object(repo, "_run")

    with pytest.raises(MergeConflict, match="already in progress"):
        repo.pull()
    mock_run.assert_not_called()


def test_pull_refuses_while_index_is_locked(mocker: MagicMock, repo: GitRepo) -> None:
    (repo.path / ".git" / "index.lock").touch()
    mock_run = mocker.patch.object(repo, "_run")

    with pytest.raises(GitError, match="index.lock") as excinfo:
        repo.pull()

    assert not isinstance(excinfo.value, MergeConflict)
    assert repo.is_busy()
    mock_run.assert_not_called()


def test_rev_parse_returns_none_for_unknown_rev(
    mocker: MagicMock, repo: GitRepo
) -> None:
    mocker.patch.object(repo, "_run", side_effect=GitError("bad rev"))

    assert repo.rev_parse("nope") is None


def test_recent_commits_parses_log(mocker: MagicMock, repo: GitRepo) -> None:
    output = (
        "\x1eabc123\x1f2026-10-01T12:00:00+00:00\x1fAda\x1fAdd notes\n\n"
        "notes.md\nrefs.md\n"
        "\x1edef456\x1f2026-09-30T08:30:00+00:00\x1fBob\x1fInitial import\n\n"
        "README.md"
    )
    mock_run = mocker.patch.object(repo, "_run", return_value=output)

    commits = repo.recent_commits(datetime.datetime(2026, 9, 1))

    assert [c.hash for c in commits] == ["abc123", "def456"]
    assert commits[0].author == "Ada"
    assert commits[0].files == ["notes.md", "refs.md"]
    assert commits[1].date.day == 30
    assert mock_run.call_args[0][0][1].startswith("--since=2026-09-01")
