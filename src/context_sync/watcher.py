"""Reacts to configuration edits by restarting or stopping auto-sync."""

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import fields
from pathlib import Path

from .config import Config, ConfigInvalid, SyncConfig
from .constants import APP_NAME, SYNC_NAMESPACE
from .coordinator import SyncCoordinator
from .registry import ProjectRegistry

logger = logging.getLogger(APP_NAME)

ENABLED_KEY = f"{SYNC_NAMESPACE}.enabled"


def changed_keys(old: SyncConfig | None, new: SyncConfig) -> list[str]:
    """Lists the `sync.<field>` keys whose values differ between two snapshots."""
    if old is None:
        return [f"{SYNC_NAMESPACE}.{f.name}" for f in fields(new)]
    return [
        f"{SYNC_NAMESPACE}.{f.name}"
        for f in fields(new)
        if getattr(old, f.name) != getattr(new, f.name)
    ]


def _mtimes(paths: list[Path]) -> dict[Path, float | None]:
    stamps = {}
    for path in paths:
        try:
            stamps[path] = path.stat().st_mtime
        except OSError:
            stamps[path] = None
    return stamps


class ConfigurationWatcher:
    """Maps configuration change events onto coordinator lifecycle calls.

    Attributes:
        coordinator (SyncCoordinator): The coordinator to start and stop.
        registry (ProjectRegistry): Source of the fresh configuration.
    """

    def __init__(self, coordinator: SyncCoordinator, registry: ProjectRegistry):
        self.coordinator = coordinator
        self.registry = registry

    def on_config_changed(self, keys: Iterable[str]) -> None:
        """Handles a batch of changed configuration keys.

        Keys outside the sync namespace are ignored. Toggling `sync.enabled`
        starts or stops auto-sync; any other sync key restarts it when enabled
        so the new settings apply from now.

        Raises:
            ConfigInvalid: If the new configuration is out of range. The
                coordinator is left untouched in that case.
        """
        relevant = {k for k in keys if k.startswith(f"{SYNC_NAMESPACE}.")}
        if not relevant:
            return

        config = self.registry.get_config()

        if ENABLED_KEY in relevant:
            if config.enabled:
                logger.info("Auto-sync enabled by configuration change.")
                if self.coordinator.is_running:
                    self.coordinator.stop()
                self.coordinator.start()
            else:
                logger.info("Auto-sync disabled by configuration change.")
                self.coordinator.stop()
            return

        if config.enabled:
            logger.info(
                f"Sync settings changed ({', '.join(sorted(relevant))}); restarting."
            )
            self.coordinator.stop()
            self.coordinator.start()

    async def watch(
        self, paths: list[Path] | None = None, poll_seconds: float = 2.0
    ) -> None:
        """Polls config files for edits and dispatches the changed keys.

        Runs until cancelled. A rejected configuration is logged and the
        previous settings stay in force.

        Args:
            paths (list[Path] | None): Files to watch; defaults to every config source.
            poll_seconds (float): Delay between polls.
        """
        if paths is None:
            paths = Config.sources(self.registry.workspace)
        stamps = _mtimes(paths)
        try:
            current: SyncConfig | None = self.registry.get_config()
        except ConfigInvalid as e:
            logger.error(f"CONFIG REJECTED: {e}")
            current = None

        while True:
            await asyncio.sleep(poll_seconds)
            latest = _mtimes(paths)
            if latest == stamps:
                continue
            stamps = latest

            try:
                fresh = self.registry.get_config()
                keys = changed_keys(current, fresh)
                if keys:
                    self.on_config_changed(keys)
            except ConfigInvalid as e:
                logger.error(f"CONFIG REJECTED: {e}. Keeping previous settings.")
                continue
            current = fresh
