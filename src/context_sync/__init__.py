"""Context Sync: keeps a workspace's context projects in step with their git remotes.

This package provides the command-line interface, the background daemon and
the auto-sync coordinator that periodically checks git-backed context
projects for upstream changes, then merges them or reports them as pending.
"""

from . import (
    checker,
    cli,
    config,
    constants,
    coordinator,
    daemon,
    git_wrapper,
    notifications,
    registry,
    status,
    system,
    watcher,
)

__all__ = [
    "checker",
    "cli",
    "config",
    "constants",
    "coordinator",
    "daemon",
    "git_wrapper",
    "notifications",
    "registry",
    "status",
    "system",
    "watcher",
]
