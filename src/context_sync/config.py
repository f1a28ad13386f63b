import logging
import re
import tomllib
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_CONTEXTS_FOLDER,
    DEFAULT_INTERVAL_MINUTES,
    LOCAL_CONFIG_NAME,
    MAX_INTERVAL_MINUTES,
    MIN_INTERVAL_MINUTES,
    PYPROJECT_SECTION,
)

logger = logging.getLogger(APP_NAME)


class ConfigInvalid(ValueError):
    """Raised when a configuration value is outside its accepted range."""


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_minutes(value: int | str) -> int:
    """Converts human-readable durations (e.g., '45m', '2h') to whole minutes."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration format '{value}'")
    if isinstance(value, int):
        return value
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(m|min|minute|h|hr|hour)?s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid duration format '{value}'")
    num, unit = float(match.group(1)), match.group(2) or "m"
    multiplier = {"m": 1, "min": 1, "minute": 1, "h": 60, "hr": 60, "hour": 60}
    return int(num * multiplier[unit])


@dataclass(frozen=True)
class SyncConfig:
    """Auto-sync settings, read fresh at the top of every check cycle.

    Attributes:
        enabled (bool): Whether the periodic timer runs at all.
        interval_minutes (int): Minutes between timer-driven checks (5-1440).
        auto_merge (bool): Pull upstream changes instead of only reporting them.
        notify_on_updates (bool): Emit one aggregated notice per cycle.
        run_on_startup (bool): Run a cycle as soon as the timer is armed.
        remote_name (str): The git remote fetched and pulled from.
    """

    enabled: bool = False
    interval_minutes: int = DEFAULT_INTERVAL_MINUTES
    auto_merge: bool = False
    notify_on_updates: bool = True
    run_on_startup: bool = True
    remote_name: str = "origin"

    def __post_init__(self) -> None:
        if not MIN_INTERVAL_MINUTES <= self.interval_minutes <= MAX_INTERVAL_MINUTES:
            raise ConfigInvalid(
                f"interval_minutes must be between {MIN_INTERVAL_MINUTES} and "
                f"{MAX_INTERVAL_MINUTES}, got {self.interval_minutes}"
            )


@dataclass
class WorkspaceConfig:
    """Workspace layout settings.

    Attributes:
        contexts_folder (str): Folder (relative to the workspace) holding projects.
    """

    contexts_folder: str = DEFAULT_CONTEXTS_FOLDER


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for log files before rotation.
    """

    max_log_size: int = 5 * 1024 * 1024


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        sync (SyncConfig): Auto-sync policy.
        workspace (WorkspaceConfig): Workspace layout.
        limits (LimitsConfig): Resource limits.
    """

    sync: SyncConfig = field(default_factory=SyncConfig)
    workspace: WorkspaceConfig = field(default_factory=WorkspaceConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    @classmethod
    def load(cls, workspace: Path | None = None) -> "Config":
        """Loads and merges configuration from defaults, global, and local sources.

        Nothing is cached: every call re-reads the files so that live edits
        apply on the next read.

        Args:
            workspace (Path | None): The workspace root to search for local config.

        Returns:
            Config: The fully merged configuration object.

        Raises:
            ConfigInvalid: If a merged value is out of range.
        """
        instance = cls()
        if CONFIG_FILE.exists():
            instance._merge_from_file(CONFIG_FILE)

        if workspace:
            local_toml = workspace / LOCAL_CONFIG_NAME
            pyproject = workspace / "pyproject.toml"

            if local_toml.exists():
                instance._merge_from_file(local_toml)
            elif pyproject.exists():
                instance._merge_from_file(pyproject, section=PYPROJECT_SECTION)

        return instance

    @staticmethod
    def sources(workspace: Path | None = None) -> list[Path]:
        """Lists every file `load` may read, whether or not it exists yet."""
        paths = [CONFIG_FILE]
        if workspace:
            paths.extend([workspace / LOCAL_CONFIG_NAME, workspace / "pyproject.toml"])
        return paths

    def _merge_from_file(self, path: Path, section: str | None = None) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
            section (str | None): Dot-separated section path (e.g., 'tool.context-sync').
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if section:
                for key in section.split("."):
                    data = data.get(key, {})

            if not data:
                return

            if "sync" in data:
                self.sync = self._update_dataclass("sync", self.sync, data["sync"])
            if "workspace" in data:
                self.workspace = self._update_dataclass(
                    "workspace", self.workspace, data["workspace"]
                )
            if "limits" in data:
                self.limits = self._update_dataclass(
                    "limits", self.limits, data["limits"]
                )

        except ConfigInvalid:
            raise
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except Exception as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = {f.name for f in fields(instance)}
        filtered_updates = {}

        invalid_keys = set(updates.keys()) - valid_keys
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: "
                f"{', '.join(sorted(invalid_keys))}. Ignoring."
            )

        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k == "interval_minutes":
                    filtered_updates[k] = parse_minutes(v)
                else:
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        # Range validation happens in SyncConfig.__post_init__ and propagates.
        return replace(instance, **filtered_updates)
