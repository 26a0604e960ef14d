"""
Presentation-facing state machine for one endurance session.

Sequences the one-time safety check and state read, then treats toggle
requests and poll ticks as independent streams on the GUI thread.
"""

from __future__ import annotations

from typing import Optional

from PySide6.QtCore import QObject, Signal

from core.endurance_controller import EnduranceController
from core.settings import EnduranceSettings
from core.telemetry import TelemetryReader
from endurance_core.endurance_core import logger as app_logger
from shared.errors import HardwareQueryError, ToggleError
from shared.power_models import (
    EnduranceState,
    RenderableStatus,
    SafetyVerdict,
    SessionState,
    StatusKind,
    TelemetrySnapshot,
    format_time_remaining,
)

STATUS_ANALYZING = "Analyzing GPU Topology..."
STATUS_UNSAFE = "UNSAFE CONFIGURATION\nOnly 1 GPU detected. Toggling would cause a Black Screen."
STATUS_CHECK_FAILED = "SYSTEM CHECK FAILED"
STATUS_SWITCHING_ON = "Switching to Endurance Mode..."
STATUS_WAKING = "Waking up High-Performance GPU..."
STATUS_CONSERVING = "Conserving energy, dGPU disabled ♥"
STATUS_NOT_SAVING = "Not power saving"
STATUS_RESTORED = "High-Performance GPU restored. Restart to use Endurance Mode again."

REFERENCE_LOAD_NAME = "LED bulb"
FALLBACK_LOAD_NAME = "a phone charger"


def describe_impact(conserved_watts: float, threshold_watts: float, watts_per_load: float) -> Optional[str]:
    """
    Express conserved power as a count of small reference loads.

    Savings below the threshold are treated as measurement jitter.
    """
    if conserved_watts < threshold_watts:
        return None
    loads = round(conserved_watts / watts_per_load)
    if loads <= 0:
        return f"Saving {conserved_watts:.1f} W, about what {FALLBACK_LOAD_NAME} draws"
    noun = REFERENCE_LOAD_NAME if loads == 1 else f"{REFERENCE_LOAD_NAME}s"
    return f"Saving {conserved_watts:.1f} W, like switching off {loads} {noun}"


class SessionCoordinator(QObject):
    activated = Signal(object, object)  # SafetyVerdict, EnduranceState
    checkedChanged = Signal(bool)
    toggleEnabledChanged = Signal(bool)
    statusChanged = Signal(str)
    toggleFinished = Signal(bool, object)  # target_active, ToggleError | None
    errorRaised = Signal(str)

    def __init__(
        self,
        controller: EnduranceController,
        telemetry: TelemetryReader,
        settings: EnduranceSettings | None = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._logger = app_logger.get_logger()
        self._controller = controller
        self._telemetry = telemetry
        self.settings = settings or EnduranceSettings()
        self.state = SessionState()

        self._activation_started = False
        self._toggle_armed = False
        self._shut_down = False
        self._displayed_checked = False
        self._applying_programmatic = False
        self._in_flight: Optional[bool] = None
        self._queued: Optional[bool] = None

    @property
    def displayed_checked(self) -> bool:
        return self._displayed_checked

    @property
    def toggle_armed(self) -> bool:
        return self._toggle_armed

    @property
    def toggle_in_flight(self) -> bool:
        return self._in_flight is not None

    def on_first_activate(self) -> None:
        if self._activation_started:
            return
        self._activation_started = True
        self.statusChanged.emit(STATUS_ANALYZING)
        self.toggleEnabledChanged.emit(False)
        self._controller.check_safety(self._on_safety_verdict)

    def on_toggle_requested(self, target_active: bool) -> None:
        if self._applying_programmatic:
            return
        if not self._toggle_armed:
            self._logger.debug("Toggle request ignored; toggling is not armed.")
            self._set_displayed_checked(self.state.endurance_state.is_active)
            return

        self._displayed_checked = target_active
        if self._in_flight is not None:
            self._logger.info("Toggle already in progress; queueing target active={}.", target_active)
            self._queued = target_active
            return
        if target_active == self.state.endurance_state.is_active:
            return
        self._issue(target_active)

    def on_poll_tick(self) -> RenderableStatus:
        # Discharge is checked before AC: a plugged-in system can still drain
        # the battery when the adapter is underpowered.
        try:
            reading = self._telemetry.read()
        except HardwareQueryError as exc:
            self._logger.debug("Telemetry unavailable: {}", exc)
            return RenderableStatus(kind=StatusKind.READING, current_draw_text="Reading...")

        snapshot = TelemetrySnapshot.from_reading(reading)
        if snapshot.watts > 0:
            self.state.record_watts(snapshot.watts)
            return RenderableStatus(
                kind=StatusKind.DISCHARGING,
                current_draw_text=f"{snapshot.watts:.1f} W",
                detail_text=f"Peak: {self.state.peak_watts:.1f} W",
                time_remaining_text=format_time_remaining(snapshot.time_remaining),
                impact_text=self._impact_text(snapshot.watts),
                watts=snapshot.watts,
                peak_watts=self.state.peak_watts,
                time_remaining=snapshot.time_remaining,
            )
        if reading.ac_online:
            return RenderableStatus(
                kind=StatusKind.AC_POWER,
                current_draw_text="AC Power",
                detail_text="Battery is not discharging",
            )
        return RenderableStatus(kind=StatusKind.READING, current_draw_text="Reading...")

    def conserved_watts(self, watts: float) -> Optional[float]:
        baseline = self.state.baseline_watts_at_toggle
        if not self.state.endurance_state.is_active or baseline <= watts:
            return None
        return baseline - watts

    def shutdown(self) -> None:
        """
        Disarm toggling and restore the discrete GPU. Runs once per process.

        The session may outlive this call when the OS cancels a logoff, so the
        presentation is left showing a disabled, unchecked toggle.
        """
        if self._shut_down:
            return
        self._shut_down = True
        self._toggle_armed = False
        self._queued = None
        if self._in_flight is not None:
            self._logger.info("Shutdown while a toggle is pending; restoring anyway.")
        self._controller.restore_synchronously()
        self.state.endurance_state = self._controller.state
        self.state.baseline_watts_at_toggle = 0.0
        self.toggleEnabledChanged.emit(False)
        self._set_displayed_checked(self.state.endurance_state.is_active)
        self.statusChanged.emit(STATUS_RESTORED)

    def _on_safety_verdict(self, verdict: SafetyVerdict) -> None:
        if self._shut_down:
            return
        if not verdict.safe:
            if verdict.error is not None:
                self.statusChanged.emit(STATUS_CHECK_FAILED)
                self.errorRaised.emit(f"Failed to verify system safety: {verdict.error}")
            else:
                self.statusChanged.emit(STATUS_UNSAFE)
            self.activated.emit(verdict, EnduranceState.UNKNOWN)
            return
        self._controller.query_state(lambda state: self._on_initial_state(verdict, state))

    def _on_initial_state(self, verdict: SafetyVerdict, state: EnduranceState) -> None:
        if self._shut_down:
            return
        if state is EnduranceState.UNKNOWN:
            self.statusChanged.emit(STATUS_CHECK_FAILED)
            self.errorRaised.emit("Failed to read the discrete GPU state.")
            self.activated.emit(verdict, state)
            return

        self.state.endurance_state = state
        # Show the hardware state before arming, so displaying it is never
        # mistaken for a user toggle.
        self._set_displayed_checked(state.is_active)
        self._toggle_armed = True
        self.state.safety_check_complete = True
        self.statusChanged.emit(self._resting_status())
        self.toggleEnabledChanged.emit(True)
        self.activated.emit(verdict, state)

    def _issue(self, target_active: bool) -> None:
        self._in_flight = target_active
        if target_active:
            self.state.baseline_watts_at_toggle = self._capture_baseline()
            self.statusChanged.emit(STATUS_SWITCHING_ON)
            self._controller.enable(lambda error: self._on_toggle_finished(True, error))
        else:
            self.state.baseline_watts_at_toggle = 0.0
            self.statusChanged.emit(STATUS_WAKING)
            self._controller.disable(lambda error: self._on_toggle_finished(False, error))

    def _on_toggle_finished(self, target_active: bool, error: Optional[ToggleError]) -> None:
        self._in_flight = None
        if self._shut_down:
            return

        queued, self._queued = self._queued, None
        if error is None:
            self.state.endurance_state = self._controller.state
        else:
            if target_active:
                self.state.baseline_watts_at_toggle = 0.0
            queued = None
            self._set_displayed_checked(self.state.endurance_state.is_active)
            self.errorRaised.emit(f"Failed to toggle GPU: {error}")

        self.statusChanged.emit(self._resting_status())
        self.toggleFinished.emit(target_active, error)

        if queued is not None and queued != self.state.endurance_state.is_active:
            self._issue(queued)

    def _capture_baseline(self) -> float:
        if self._telemetry.is_plugged_in():
            return 0.0
        try:
            return self._telemetry.snapshot().watts
        except HardwareQueryError:
            return 0.0

    def _impact_text(self, watts: float) -> Optional[str]:
        conserved = self.conserved_watts(watts)
        if conserved is None:
            return None
        return describe_impact(
            conserved,
            self.settings.conservation_threshold_watts,
            self.settings.watts_per_reference_load,
        )

    def _set_displayed_checked(self, value: bool) -> None:
        self._displayed_checked = value
        self._applying_programmatic = True
        try:
            self.checkedChanged.emit(value)
        finally:
            self._applying_programmatic = False

    def _resting_status(self) -> str:
        if self.state.endurance_state.is_active:
            return STATUS_CONSERVING
        return STATUS_NOT_SAVING
