"""Global constants and path definitions for context-sync.

This module defines the filesystem layout (adhering to XDG standards where
applicable), application identifiers, configuration bounds and the markers
used to classify git failures.
"""

import os
from pathlib import Path

# --- Identity ---
APP_NAME = "context-sync"
"""str: The human-readable application name (also the logger name)."""

SYNC_NAMESPACE = "sync"
"""str: The configuration namespace owned by the auto-sync subsystem."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "context-sync"
"""Path: The directory for runtime state data (logs, pid file)."""

# Ensure state directory exists immediately upon module import.
STATE_DIR.mkdir(parents=True, exist_ok=True)

LOG_FILE = STATE_DIR / "daemon.log"
"""Path: The file path for the daemon process logs."""

PID_FILE = STATE_DIR / "daemon.pid"
"""Path: The file path storing the daemon's process ID."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/context-sync"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The user-wide configuration file path."""

LOCAL_CONFIG_NAME = "context-sync.toml"
"""str: The workspace-local configuration file name."""

PYPROJECT_SECTION = "tool.context-sync"
"""str: The pyproject.toml section read when no local config file exists."""

# --- Workspace Layout ---
DEFAULT_CONTEXTS_FOLDER = ".contexts"
"""str: The folder (relative to the workspace) holding context projects."""

METADATA_FILE = ".metadata.json"
"""str: The project metadata file name inside the contexts folder."""

# --- Sync Policy ---
DEFAULT_INTERVAL_MINUTES = 30
"""int: Minutes between background update checks when none is configured."""

MIN_INTERVAL_MINUTES = 5
"""int: Smallest accepted interval_minutes; lower values raise ConfigInvalid."""

MAX_INTERVAL_MINUTES = 1440
"""int: Largest accepted interval_minutes (one day)."""

SECONDS_PER_MINUTE = 60
"""int: Multiplier applied to interval_minutes when arming the timer."""

# --- Git / Logic Constants ---
GIT_LOCK_FILES = [
    "MERGE_HEAD",
    "REBASE_HEAD",
    "CHERRY_PICK_HEAD",
    "rebase-merge",
    "rebase-apply",
]
"""
list[str]: Git internal files indicating an
active state (merge/rebase) that blocks a pull.
"""

NETWORK_ERROR_MARKERS = [
    "could not resolve host",
    "could not read from remote repository",
    "unable to access",
    "connection timed out",
    "connection refused",
    "network is unreachable",
    "terminal prompts disabled",
    "the remote end hung up unexpectedly",
    "operation timed out",
]
"""list[str]: Lower-cased git output fragments that indicate a transport failure."""

CONFLICT_MARKERS = [
    "conflict",
    "automatic merge failed",
    "would be overwritten by merge",
    "not possible to fast-forward",
    "you have not concluded your merge",
    "unmerged files",
]
"""list[str]: Lower-cased git output fragments that indicate a merge cannot complete."""
