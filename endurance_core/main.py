"""
Entry point for the endurance tray application.
"""

from __future__ import annotations

import ctypes
import sys
from typing import Iterable

from PySide6.QtWidgets import QApplication

from core.app import AppCoordinator
from endurance_core.endurance_core import logger as app_logger

_LOGGER = app_logger.get_logger()
_MUTEX_NAME = "Global\\GpuEnduranceMutex"
_ERROR_ALREADY_EXISTS = 183


class _SingleInstance:
    """
    Holds a named mutex for the process lifetime. Two instances would issue
    competing device commands. Always acquired off Windows.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._handle = None
        self.acquired = False

    def __enter__(self) -> "_SingleInstance":
        if sys.platform != "win32":
            self.acquired = True
            return self
        kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)
        ctypes.set_last_error(0)
        handle = kernel32.CreateMutexW(None, False, self._name)
        if handle and ctypes.get_last_error() == _ERROR_ALREADY_EXISTS:
            kernel32.CloseHandle(handle)
            return self
        # A mutex that could not be created at all does not block startup.
        self._handle = handle or None
        self.acquired = True
        return self

    def __exit__(self, *exc_info) -> None:
        if self._handle is None:
            return
        kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)
        kernel32.CloseHandle(self._handle)
        self._handle = None


def _run_application(argv: Iterable[str]) -> int:
    app = QApplication(list(argv))
    # Tray-first: only the Exit action ends the process.
    app.setQuitOnLastWindowClosed(False)

    coordinator = AppCoordinator()
    app.aboutToQuit.connect(coordinator.restore_hardware)
    app.commitDataRequest.connect(lambda _manager: coordinator.restore_hardware())
    coordinator.start()
    try:
        return app.exec()
    finally:
        coordinator.restore_hardware()


def main() -> int:
    with _SingleInstance(_MUTEX_NAME) as instance:
        if not instance.acquired:
            _LOGGER.debug("GPU Endurance instance already running; exiting silently.")
            return 0
        exit_code = _run_application(sys.argv)
    _LOGGER.info("Exited with code {}.", exit_code)
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
