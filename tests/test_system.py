import os
from pathlib import Path
from unittest.mock import MagicMock

from rich.console import Console

from context_sync import system
from context_sync.notifications import (
    ConsoleNotifier,
    DesktopNotifier,
    UpdateNotice,
    format_conflict,
    format_notice,
)


def test_get_system_by_platform(mocker: MagicMock) -> None:
    mocker.patch("sys.platform", "darwin")
    assert isinstance(system.get_system(), system.MacOSStrategy)

    mocker.patch("sys.platform", "linux")
    assert isinstance(system.get_system(), system.LinuxStrategy)

    mocker.patch("sys.platform", "win32")
    assert type(system.get_system()) is system.SystemStrategy


def test_macos_notify_sanitizes_quotes(mocker: MagicMock) -> None:
    mock_run = mocker.patch("subprocess.run")

    system.MacOSStrategy().notify('Say "hi"', 'Project "alpha" updated')

    script = mock_run.call_args[0][0][2]
    assert '"alpha"' not in script
    assert "'alpha'" in script


def test_linux_notify_without_notify_send(mocker: MagicMock) -> None:
    mocker.patch("subprocess.run", side_effect=FileNotFoundError("notify-send"))

    system.LinuxStrategy().notify("Title", "Body")


def test_daemon_pid(tmp_path: Path, mocker: MagicMock) -> None:
    pid_file = tmp_path / "daemon.pid"
    mocker.patch("context_sync.system.PID_FILE", pid_file)
    assert system.daemon_pid() is None

    pid_file.write_text(str(os.getpid()))
    assert system.daemon_pid() == os.getpid()

    pid_file.write_text("garbage")
    assert system.daemon_pid() is None


def test_format_notice_wording() -> None:
    _, merged = format_notice(
        UpdateNotice(count=2, project_names=("alpha", "beta"), auto_merged=True)
    )
    _, pending = format_notice(UpdateNotice(count=1, project_names=("alpha",)))

    assert merged == "Auto-synced 2 project(s): alpha, beta"
    assert pending.startswith("1 project(s) have updates: alpha.")
    assert "context-sync sync" in pending


def test_desktop_notifier_uses_system_strategy() -> None:
    strategy = MagicMock()
    notifier = DesktopNotifier(system=strategy)

    notifier.merge_conflict("alpha", "CONFLICT in notes.md")

    strategy.notify.assert_called_once_with(*format_conflict("alpha", "CONFLICT in notes.md"))


def test_console_notifier_prints_without_markup() -> None:
    console = Console(record=True, width=120)
    notifier = ConsoleNotifier(console)

    notifier.updates_available(UpdateNotice(count=1, project_names=("[alpha]",)))
    notifier.merge_conflict("beta", "CONFLICT (content)")
    output = console.export_text()

    assert "[alpha]" in output
    assert "CONFLICT: Failed to auto-sync beta: CONFLICT (content)" in output
