"""
Tray coordinator wiring the endurance session to a minimal tray menu.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from PySide6.QtCore import QObject, QTimer
from PySide6.QtGui import QAction
from PySide6.QtWidgets import QApplication, QMenu, QMessageBox, QStyle, QSystemTrayIcon

from core.device_channel import PowerShellChannel
from core.endurance_controller import EnduranceController
from core.session import STATUS_ANALYZING, SessionCoordinator
from core.settings import EnduranceSettingsManager
from core.telemetry import TelemetryReader
from endurance_core.endurance_core import logger as app_logger

APP_NAME = "GPU Endurance"
APP_VERSION = "1.0.0"


@dataclass
class AppCoordinator(QObject):
    settings_manager: EnduranceSettingsManager = field(default_factory=EnduranceSettingsManager)
    telemetry: TelemetryReader = field(default_factory=TelemetryReader)

    def __post_init__(self) -> None:
        super().__init__()
        self._logger = app_logger.get_logger()
        self._settings = self.settings_manager.read_settings()
        self._manual_shutdown_requested = False

        self._channel = PowerShellChannel(parent=self)
        self._controller = EnduranceController(self._channel)
        self._session = SessionCoordinator(self._controller, self.telemetry, self._settings, parent=self)

        self._tray = QSystemTrayIcon(self)
        self._tray.setIcon(QApplication.style().standardIcon(QStyle.StandardPixmap.SP_ComputerIcon))
        self._tray.setToolTip(f"{APP_NAME} - Endurance Mode")

        menu = QMenu()
        self._status_action = self._info_action(menu, STATUS_ANALYZING)
        self._draw_action = self._info_action(menu, "Reading...")
        self._detail_action = self._info_action(menu, "")
        self._time_action = self._info_action(menu, "")
        self._impact_action = self._info_action(menu, "")
        self._impact_action.setVisible(False)
        menu.addSeparator()
        self._toggle_action = QAction("Endurance Mode", menu)
        self._toggle_action.setCheckable(True)
        self._toggle_action.setEnabled(False)
        menu.addAction(self._toggle_action)
        menu.addSeparator()
        exit_action = QAction("Exit", menu)
        menu.addAction(exit_action)
        self._menu = menu
        self._tray.setContextMenu(menu)

        self._toggle_action.toggled.connect(self._session.on_toggle_requested)
        self._session.checkedChanged.connect(self._toggle_action.setChecked)
        self._session.toggleEnabledChanged.connect(self._toggle_action.setEnabled)
        self._session.statusChanged.connect(self._status_action.setText)
        self._session.errorRaised.connect(self._show_error)
        self._tray.activated.connect(self._on_tray_activated)
        exit_action.triggered.connect(self.shutdown)

        self._poll_timer = QTimer(self)
        self._poll_timer.setInterval(self._settings.poll_interval_ms)
        self._poll_timer.timeout.connect(self._on_poll_tick)

    def start(self) -> None:
        self._logger.info("Starting {} v{}.", APP_NAME, APP_VERSION)
        self._tray.show()
        self._poll_timer.start()
        self._on_poll_tick()
        self._session.on_first_activate()

    def shutdown(self) -> None:
        self._logger.info("Shutting down application on user request.")
        self._manual_shutdown_requested = True
        self.restore_hardware()
        self._tray.hide()
        QApplication.instance().quit()

    def restore_hardware(self) -> None:
        """Called from every exit path; the session restores only once."""
        self._poll_timer.stop()
        self._session.shutdown()

    @property
    def manual_shutdown_requested(self) -> bool:
        return self._manual_shutdown_requested

    def _info_action(self, menu: QMenu, text: str) -> QAction:
        action = QAction(text, menu)
        action.setEnabled(False)
        menu.addAction(action)
        return action

    def _on_tray_activated(self, reason: QSystemTrayIcon.ActivationReason) -> None:
        if reason == QSystemTrayIcon.ActivationReason.Trigger:
            self._on_poll_tick()
            self._menu.popup(self._tray.geometry().center())

    def _on_poll_tick(self) -> None:
        status = self._session.on_poll_tick()
        self._draw_action.setText(status.current_draw_text)
        self._detail_action.setText(status.detail_text)
        self._time_action.setText(status.time_remaining_text)
        self._impact_action.setText(status.impact_text or "")
        self._impact_action.setVisible(status.impact_text is not None)
        self._tray.setToolTip(f"{APP_NAME} - {status.current_draw_text}")

    def _show_error(self, message: str) -> None:
        self._logger.error(message)
        QMessageBox.critical(None, "Error", message)
