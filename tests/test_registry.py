"""Tests for the file-backed project registry."""

import shutil

import pytest

from context_sync.config import SyncConfig
from context_sync.registry import ProjectRegistry

from .conftest import Workspace


def test_list_projects_reconciles_folders_with_metadata(workspace: Workspace) -> None:
    workspace.add_project("alpha")
    workspace.add_project("beta", enabled=False)
    (workspace.contexts / "gamma").mkdir()  # folder without metadata
    shutil.rmtree(workspace.contexts / "beta")  # metadata without folder

    projects = workspace.registry().list_projects()

    assert [p.name for p in projects] == ["alpha", "gamma"]
    metadata = workspace.metadata()
    assert set(metadata) == {"alpha", "gamma"}
    assert metadata["gamma"]["enabled"] is True
    assert "createdAt" in metadata["gamma"]


def test_project_flags(workspace: Workspace) -> None:
    workspace.add_project("alpha", git=True, enabled=False)
    workspace.add_project("beta", git=False)

    alpha, beta = workspace.registry().list_projects()

    assert alpha.is_git_backed and not alpha.enabled
    assert not beta.is_git_backed and beta.enabled


def test_is_git_backed_is_reevaluated(workspace: Workspace) -> None:
    folder = workspace.add_project("alpha")
    (project,) = workspace.registry().list_projects()
    assert project.is_git_backed

    shutil.rmtree(folder / ".git")

    assert not project.is_git_backed


def test_record_sync_timestamp(workspace: Workspace) -> None:
    workspace.add_project("alpha")
    registry = workspace.registry()

    registry.record_sync_timestamp("alpha")

    entry = workspace.metadata()["alpha"]
    assert entry["lastSyncedAt"] == entry["updatedAt"]
    assert registry.get_project("alpha").last_synced == entry["lastSyncedAt"]
    assert not (workspace.contexts / ".metadata.tmp").exists()


def test_unknown_project_raises_key_error(workspace: Workspace) -> None:
    registry = workspace.registry()

    with pytest.raises(KeyError):
        registry.record_sync_timestamp("missing")
    with pytest.raises(KeyError):
        registry.get_project("missing")


@pytest.mark.parametrize("content", ['{"alpha": {"enabled": fal', "[1, 2]"])
def test_unreadable_metadata_is_left_untouched(
    workspace: Workspace, caplog: pytest.LogCaptureFixture, content: str
) -> None:
    (workspace.contexts / "alpha").mkdir()
    metadata_file = workspace.contexts / ".metadata.json"
    metadata_file.write_text(content)
    registry = workspace.registry()

    assert registry.list_projects() == []
    with pytest.raises(OSError, match="unreadable"):
        registry.record_sync_timestamp("alpha")

    assert metadata_file.read_text() == content
    assert "metadata" in caplog.text


def test_metadata_is_used_again_once_it_parses(workspace: Workspace) -> None:
    workspace.add_project("alpha", enabled=False)
    metadata_file = workspace.contexts / ".metadata.json"
    good = metadata_file.read_text()
    metadata_file.write_text(good[: len(good) // 2])
    registry = workspace.registry()
    assert registry.list_projects() == []

    metadata_file.write_text(good)

    (alpha,) = registry.list_projects()
    assert not alpha.enabled


def test_get_config_reads_fresh_values(workspace: Workspace) -> None:
    registry = workspace.registry()
    assert registry.get_config() == SyncConfig()

    workspace.write_config(enabled=True, interval_minutes=15)

    assert registry.get_config() == SyncConfig(enabled=True, interval_minutes=15)
    with pytest.raises(ValueError, match="Unknown configuration namespace"):
        registry.get_config("editor")


def test_contexts_folder_comes_from_config(workspace: Workspace) -> None:
    (workspace.root / "context-sync.toml").write_text(
        '[workspace]\ncontexts_folder = "notes"\n'
    )

    registry = ProjectRegistry(workspace.root)

    assert registry.contexts_path == workspace.root.resolve() / "notes"
    assert registry.list_projects() == []
