"""File-backed project registry for a workspace's context projects.

Projects are the sub-folders of the contexts folder; their metadata lives in
`<contexts>/.metadata.json`, keyed by project name, in the same camelCase
shape the editor extension writes.
"""

import datetime
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .config import Config, ConfigInvalid, SyncConfig
from .constants import APP_NAME, DEFAULT_CONTEXTS_FOLDER, METADATA_FILE, SYNC_NAMESPACE

logger = logging.getLogger(APP_NAME)


def _now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


@dataclass(frozen=True)
class ProjectRef:
    """A context project as seen by the sync subsystem.

    Attributes:
        name (str): Unique project name (the folder name).
        folder_path (Path): Absolute path to the project folder.
        enabled (bool): Whether the project takes part in syncing.
        description (str | None): Free-text description from the metadata.
        last_synced (str | None): ISO timestamp of the last successful pull.
    """

    name: str
    folder_path: Path
    enabled: bool = True
    description: str | None = None
    last_synced: str | None = None

    @property
    def is_git_backed(self) -> bool:
        """Re-evaluated on every access; folders can gain or lose `.git` at any time."""
        return (self.folder_path / ".git").exists()


class ProjectRegistry:
    """Lists context projects and records sync timestamps for a workspace.

    Attributes:
        workspace (Path): The workspace root.
        contexts_path (Path): The folder holding one sub-folder per project.
        metadata_path (Path): The JSON metadata file.
    """

    def __init__(self, workspace: Path, contexts_folder: str | None = None):
        self.workspace = Path(workspace).resolve()
        if contexts_folder is None:
            try:
                contexts_folder = Config.load(self.workspace).workspace.contexts_folder
            except ConfigInvalid as e:
                logger.warning(f"{e}; using the default contexts folder.")
                contexts_folder = DEFAULT_CONTEXTS_FOLDER
        self.contexts_path = self.workspace / contexts_folder
        self.metadata_path = self.contexts_path / METADATA_FILE

    def get_config(self, namespace: str = SYNC_NAMESPACE) -> SyncConfig:
        """Reads the current sync settings for this workspace.

        Args:
            namespace (str): The configuration namespace; only 'sync' is known.

        Returns:
            SyncConfig: A fresh snapshot (never cached).

        Raises:
            ConfigInvalid: If the configured values are out of range.
        """
        if namespace != SYNC_NAMESPACE:
            raise ValueError(f"Unknown configuration namespace '{namespace}'")
        return Config.load(self.workspace).sync

    def list_projects(self) -> list[ProjectRef]:
        """Returns every project whose folder exists, reconciling metadata first.

        An unreadable metadata file yields no projects and is left untouched
        until it parses again.
        """
        metadata = self._load()
        if metadata is None:
            return []
        metadata = self._reconcile(metadata)
        projects = []
        for name, meta in sorted(metadata.items()):
            folder = self.contexts_path / name
            if not folder.is_dir():
                continue
            projects.append(
                ProjectRef(
                    name=name,
                    folder_path=folder,
                    enabled=bool(meta.get("enabled", True)),
                    description=meta.get("description"),
                    last_synced=meta.get("lastSyncedAt"),
                )
            )
        return projects

    def get_project(self, name: str) -> ProjectRef:
        """Looks up a single project by name.

        Raises:
            KeyError: If no project with that name exists.
        """
        for project in self.list_projects():
            if project.name == name:
                return project
        raise KeyError(name)

    def record_sync_timestamp(self, name: str) -> None:
        """Marks a project as freshly synced.

        Args:
            name (str): The project that was just pulled.

        Raises:
            KeyError: If the project has no metadata entry.
            OSError: If the metadata file exists but cannot be read.
        """
        metadata = self._load()
        if metadata is None:
            raise OSError(f"Refusing to rewrite unreadable {self.metadata_path}")
        if name not in metadata:
            raise KeyError(name)

        now = _now_iso()
        metadata[name]["updatedAt"] = now
        metadata[name]["lastSyncedAt"] = now
        self._save(metadata)
        logger.debug(f"Recorded sync timestamp for {name}.")

    def _folders(self) -> list[str]:
        if not self.contexts_path.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.contexts_path.iterdir()
            if entry.is_dir() and not entry.name.startswith(".")
        )

    def _reconcile(self, metadata: dict[str, dict]) -> dict[str, dict]:
        """Adds metadata for new folders and drops it for vanished ones."""
        folders = self._folders()
        changed = False

        for folder in folders:
            if folder not in metadata:
                now = _now_iso()
                metadata[folder] = {
                    "name": folder,
                    "enabled": True,
                    "createdAt": now,
                    "updatedAt": now,
                }
                changed = True

        for name in [key for key in metadata if key not in folders]:
            del metadata[name]
            changed = True

        if changed and self.contexts_path.is_dir():
            self._save(metadata)
        return metadata

    def _load(self) -> dict[str, dict] | None:
        """Reads the metadata file. Returns None when it exists but does not parse."""
        if not self.metadata_path.exists():
            return {}
        try:
            data = json.loads(self.metadata_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load metadata from {self.metadata_path}: {e}")
            return None
        if not isinstance(data, dict):
            logger.error(f"Ignoring malformed metadata in {self.metadata_path}.")
            return None
        return {k: v for k, v in data.items() if isinstance(v, dict)}

    def _save(self, metadata: dict[str, dict]) -> None:
        """Writes metadata atomically (temp file, fsync, rename)."""
        tmp_file = self.metadata_path.with_suffix(".tmp")
        try:
            with open(tmp_file, "w", encoding="utf-8") as f:
                json.dump(metadata, f, indent=2)
                f.flush()
                os.fsync(f.fileno())

            os.replace(tmp_file, self.metadata_path)
        except OSError as e:
            logger.error(f"ERROR: Could not write metadata. {e}")
            if tmp_file.exists():
                tmp_file.unlink()
            raise
