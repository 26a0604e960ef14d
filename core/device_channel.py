"""
Runs PowerShell device-management commands.

Asynchronous variants are QProcess-backed and report back on the thread that
owns the channel (the GUI thread), so callers never block the event loop.
The blocking variant exists only for teardown.
"""

from __future__ import annotations

import subprocess
import sys
from typing import Callable, List, Optional, Protocol, Sequence, Set

from PySide6.QtCore import QObject, QProcess

from endurance_core.endurance_core import logger as app_logger
from shared.power_models import CommandResult

POWERSHELL_EXECUTABLE = "powershell.exe"
POWERSHELL_ARGUMENTS = ("-NoProfile", "-ExecutionPolicy", "Bypass", "-Command")
SETTLE_TIMEOUT_MS = 30000
_KILL_WAIT_MS = 3000
_CREATE_NO_WINDOW = 0x08000000

_LOGGER = app_logger.get_logger()

CapturedCallback = Callable[[CommandResult], None]
CompletionCallback = Callable[[bool], None]


class DeviceCommandChannel(Protocol):
    def run_captured(self, command: str, on_done: CapturedCallback) -> None:
        ...

    def run_fire_and_forget(self, command: str, on_done: Optional[CompletionCallback] = None) -> None:
        ...

    def run_blocking(self, command: str) -> bool:
        ...

    def settle_pending(self) -> None:
        ...


class PowerShellChannel(QObject):
    """Launches ``powershell.exe -Command <script>`` for each request."""

    def __init__(
        self,
        *,
        program: str = POWERSHELL_EXECUTABLE,
        base_arguments: Sequence[str] = POWERSHELL_ARGUMENTS,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self.program = program
        self.base_arguments = tuple(base_arguments)
        self._running: Set[_RunningCommand] = set()

    def build_arguments(self, command: str) -> List[str]:
        return [*self.base_arguments, command]

    def run_captured(self, command: str, on_done: CapturedCallback) -> None:
        self._start(command, capture=True, on_done=on_done)

    def run_fire_and_forget(self, command: str, on_done: Optional[CompletionCallback] = None) -> None:
        def _report(result: CommandResult) -> None:
            if on_done is not None:
                on_done(result.exit_succeeded)

        self._start(command, capture=False, on_done=_report)

    def run_blocking(self, command: str) -> bool:
        """Run to completion on the calling thread. Never raises."""
        _LOGGER.debug("Running blocking command: {}", command)
        creationflags = _CREATE_NO_WINDOW if sys.platform == "win32" else 0
        try:
            completed = subprocess.run(
                [self.program, *self.build_arguments(command)],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                creationflags=creationflags,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            _LOGGER.warning("Blocking command failed to run: {}", exc)
            return False
        return completed.returncode == 0

    def settle_pending(self, timeout_ms: int = SETTLE_TIMEOUT_MS) -> None:
        """
        Wait for every running command to exit, killing any that outlive
        ``timeout_ms``. Completion callbacks fire from inside this call.
        """
        for running in list(self._running):
            process = running.process
            if process.state() == QProcess.ProcessState.NotRunning:
                continue
            _LOGGER.info("Waiting for pending command to finish: {}", running.command)
            if not process.waitForFinished(timeout_ms):
                _LOGGER.warning("Pending command did not finish in {} ms; killing it.", timeout_ms)
                process.kill()
                process.waitForFinished(_KILL_WAIT_MS)

    @property
    def pending_count(self) -> int:
        return len(self._running)

    def _start(self, command: str, *, capture: bool, on_done: CapturedCallback) -> None:
        process = QProcess(self)
        process.setProgram(self.program)
        process.setArguments(self.build_arguments(command))
        if not capture:
            process.setStandardOutputFile(QProcess.nullDevice())

        running = _RunningCommand(process, command, capture, on_done, self._release)
        self._running.add(running)
        _LOGGER.debug("Starting command: {}", command)
        process.start()

    def _release(self, running: "_RunningCommand") -> None:
        self._running.discard(running)
        running.process.deleteLater()


class _RunningCommand:
    """Tracks one QProcess until it reports exactly one result."""

    def __init__(
        self,
        process: QProcess,
        command: str,
        capture: bool,
        on_done: CapturedCallback,
        release: Callable[["_RunningCommand"], None],
    ) -> None:
        self.process = process
        self.command = command
        self._capture = capture
        self._on_done = on_done
        self._release = release
        self._completed = False
        process.finished.connect(self._on_finished)  # type: ignore[arg-type]
        process.errorOccurred.connect(self._on_error)  # type: ignore[arg-type]

    def _on_finished(self, exit_code: int, exit_status: QProcess.ExitStatus) -> None:
        succeeded = exit_status == QProcess.ExitStatus.NormalExit and exit_code == 0
        output = ""
        if self._capture:
            output = bytes(self.process.readAllStandardOutput().data()).decode("utf-8", errors="replace")
        if not succeeded:
            stderr = bytes(self.process.readAllStandardError().data()).decode("utf-8", errors="replace")
            _LOGGER.warning(
                "Command exited with code {} ({}): {}",
                exit_code,
                stderr.strip()[-300:] or "no error output",
                self.command,
            )
        self._complete(CommandResult(exit_succeeded=succeeded, captured_output=output))

    def _on_error(self, error: QProcess.ProcessError) -> None:
        # Only a launch failure skips the finished signal.
        if error != QProcess.ProcessError.FailedToStart:
            return
        _LOGGER.error("Failed to launch {}: {}", self.process.program(), self.process.errorString())
        self._complete(CommandResult(exit_succeeded=False))

    def _complete(self, result: CommandResult) -> None:
        if self._completed:
            return
        self._completed = True
        self._release(self)
        self._on_done(result)
