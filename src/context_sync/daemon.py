import asyncio
import atexit
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import Config, ConfigInvalid, LimitsConfig
from .constants import APP_NAME, LOG_FILE, PID_FILE
from .coordinator import SyncCoordinator
from .notifications import DesktopNotifier, Notifier
from .registry import ProjectRegistry
from .watcher import ConfigurationWatcher

logger = logging.getLogger(APP_NAME)
logger.setLevel(logging.INFO)


def setup_logging(interactive: bool, max_log_size: int = 5 * 1024 * 1024) -> None:
    """Configures the logging subsystem.

    Args:
        interactive (bool): If True, logs to stdout. If False, logs to stderr
                            and to a rotating log file.
        max_log_size (int): Rotation threshold for the log file, in bytes.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    # Always log to a stream (captured by systemd/launchd in daemon mode).
    stream_handler = logging.StreamHandler(
        sys.stderr if not interactive else sys.stdout
    )
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if not interactive:
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=max_log_size,
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def write_pid_file() -> None:
    """Records this process as the running daemon and removes the file on exit."""
    try:
        with open(PID_FILE, "w") as f:
            f.write(str(os.getpid()))

        atexit.register(lambda: PID_FILE.unlink(missing_ok=True))
    except OSError as e:
        logger.warning(f"Could not write PID file: {e}")


async def run(
    workspace: Path,
    notifier: Notifier | None = None,
    poll_seconds: float = 2.0,
) -> None:
    """Runs auto-sync for one workspace until SIGINT/SIGTERM.

    Args:
        workspace (Path): The workspace root.
        notifier (Notifier | None): Notice sink; desktop notifications by default.
        poll_seconds (float): How often config files are checked for edits.
    """
    registry = ProjectRegistry(workspace)
    coordinator = SyncCoordinator(registry, notifier or DesktopNotifier())
    watcher = ConfigurationWatcher(coordinator, registry)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Platforms without loop signal support fall back to KeyboardInterrupt.
            pass

    logger.info(f"Daemon started for workspace {registry.workspace}.")
    try:
        if not coordinator.start():
            logger.info(
                "Waiting for 'sync.enabled = true' in the configuration to start checks."
            )
    except ConfigInvalid as e:
        logger.error(f"CONFIG REJECTED: {e}. Auto-sync stays off until it is fixed.")

    watch_task = asyncio.create_task(watcher.watch(poll_seconds=poll_seconds))
    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down...")
        watch_task.cancel()
        coordinator.stop()
        await coordinator.wait_idle()
        logger.info("Daemon stopped.")


def main(workspace: Path | None = None, interactive: bool = False) -> None:
    """Entry point for the background daemon.

    Args:
        workspace (Path | None): The workspace root; defaults to the current directory.
        interactive (bool): Log to stdout and skip the PID file (CLI 'run' command).
    """
    if workspace is None:
        workspace = Path(sys.argv[1]) if len(sys.argv) > 1 else Path.cwd()
    workspace = Path(workspace).resolve()

    try:
        max_log_size = Config.load(workspace).limits.max_log_size
    except ConfigInvalid:
        max_log_size = LimitsConfig().max_log_size
    setup_logging(interactive, max_log_size)

    if not interactive:
        write_pid_file()

    try:
        asyncio.run(run(workspace))
    except KeyboardInterrupt:
        logger.info("Interrupted.")


if __name__ == "__main__":
    main()
