"""Shared fixtures: an on-disk workspace and an in-memory git stand-in."""

import json
import threading
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from context_sync.git_wrapper import NotARepository, PullResult
from context_sync.notifications import Notifier, UpdateNotice
from context_sync.registry import ProjectRegistry


class FakeGit:
    """Factory standing in for `GitRepo`, with per-project scripted behaviour.

    Blocking calls run on worker threads, so every counter is guarded by a lock.
    Setting `gate` makes `fetch` block until the test releases it.
    """

    def __init__(self) -> None:
        self.behind: dict[str, int] = {}
        self.fetch_errors: dict[str, Exception] = {}
        self.pull_errors: dict[str, Exception] = {}
        self.fetched: list[str] = []
        self.pulled: list[str] = []
        self.gate: threading.Event | None = None
        self.fetch_started = threading.Event()
        self._lock = threading.Lock()

    def __call__(self, path: Path) -> "FakeRepo":
        if not (Path(path) / ".git").exists():
            raise NotARepository(f"Not a git repository: {path}")
        return FakeRepo(self, Path(path))


class FakeRepo:
    def __init__(self, git: FakeGit, path: Path) -> None:
        self.git = git
        self.path = path
        self.name = path.name

    def fetch(self, remote: str = "origin") -> None:
        with self.git._lock:
            self.git.fetched.append(self.name)
        self.git.fetch_started.set()
        if self.git.gate is not None:
            self.git.gate.wait(timeout=5)
        if error := self.git.fetch_errors.get(self.name):
            raise error

    def count_commits_behind(self, remote: str = "origin") -> int:
        return self.git.behind.get(self.name, 0)

    def pull(self, remote: str = "origin") -> PullResult:
        with self.git._lock:
            self.git.pulled.append(self.name)
        if error := self.git.pull_errors.get(self.name):
            raise error
        self.git.behind[self.name] = 0
        return PullResult(changed_file_count=2, changed_files=["notes.md", "refs.md"])


class RecordingNotifier(Notifier):
    """Keeps every notice it receives."""

    def __init__(self) -> None:
        self.notices: list[UpdateNotice] = []
        self.conflicts: list[tuple[str, str]] = []

    def updates_available(self, notice: UpdateNotice) -> None:
        self.notices.append(notice)

    def merge_conflict(self, project: str, detail: str) -> None:
        self.conflicts.append((project, detail))


class Workspace:
    """Builds a workspace with a `.contexts` folder on disk."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.contexts = root / ".contexts"
        self.contexts.mkdir()
        self.config_file = root / "context-sync.toml"

    def add_project(self, name: str, git: bool = True, enabled: bool = True) -> Path:
        folder = self.contexts / name
        folder.mkdir()
        if git:
            (folder / ".git").mkdir()

        metadata_path = self.contexts / ".metadata.json"
        metadata = (
            json.loads(metadata_path.read_text()) if metadata_path.exists() else {}
        )
        metadata[name] = {"name": name, "enabled": enabled}
        metadata_path.write_text(json.dumps(metadata))
        return folder

    def write_config(self, **sync: object) -> None:
        lines = ["[sync]"]
        for key, value in sync.items():
            if isinstance(value, bool):
                lines.append(f"{key} = {'true' if value else 'false'}")
            elif isinstance(value, str):
                lines.append(f'{key} = "{value}"')
            else:
                lines.append(f"{key} = {value}")
        self.config_file.write_text("\n".join(lines) + "\n")

    def metadata(self) -> dict:
        return json.loads((self.contexts / ".metadata.json").read_text())

    def registry(self) -> ProjectRegistry:
        return ProjectRegistry(self.root)


@pytest.fixture(autouse=True)
def isolate_global_config(tmp_path: Path, mocker: MagicMock) -> Path:
    """Points the user-wide config file at a path that does not exist."""
    global_config = tmp_path / "global" / "config.toml"
    mocker.patch("context_sync.config.CONFIG_FILE", global_config)
    return global_config


@pytest.fixture
def workspace(tmp_path: Path) -> Workspace:
    root = tmp_path / "workspace"
    root.mkdir()
    return Workspace(root)


@pytest.fixture
def fake_git() -> FakeGit:
    return FakeGit()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
