"""
Value types passed between the telemetry reader, the device controller and
the presentation layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Optional

from .errors import SafetyCheckError


@dataclass(frozen=True, slots=True)
class PowerReading:
    """
    Decoded battery state. ``rate_milliwatts`` is already reinterpreted as a
    signed value; discharge is usually reported as a negative rate.
    """

    ac_online: bool
    battery_present: bool
    charging: bool
    discharging: bool
    rate_milliwatts: int
    remaining_capacity_mwh: int


@dataclass(frozen=True, slots=True)
class TelemetrySnapshot:
    watts: float = 0.0
    time_remaining: Optional[timedelta] = None

    @classmethod
    def from_reading(cls, reading: PowerReading) -> "TelemetrySnapshot":
        """
        Derive draw and time-to-empty. Only a present, discharging battery
        produces a nonzero draw.
        """
        if not (reading.battery_present and reading.discharging):
            return cls()

        abs_rate_mw = abs(reading.rate_milliwatts)
        watts = abs_rate_mw / 1000.0

        time_remaining: Optional[timedelta] = None
        # mWh / mW = hours; skipped while the sensor is settling at zero.
        if abs_rate_mw > 0 and reading.remaining_capacity_mwh > 0:
            time_remaining = timedelta(hours=reading.remaining_capacity_mwh / abs_rate_mw)

        return cls(watts=watts, time_remaining=time_remaining)


class EnduranceState(Enum):
    UNKNOWN = "Unknown"
    ACTIVE = "Active"
    INACTIVE = "Inactive"

    @property
    def is_active(self) -> bool:
        return self is EnduranceState.ACTIVE


@dataclass(frozen=True, slots=True)
class SafetyVerdict:
    """Outcome of the hybrid-topology check. Truthy only when toggling is permitted."""

    safe: bool
    adapter_count: int = 0
    error: Optional[SafetyCheckError] = None

    def __bool__(self) -> bool:
        return self.safe


@dataclass(frozen=True, slots=True)
class CommandResult:
    exit_succeeded: bool
    captured_output: str = ""


@dataclass(slots=True)
class SessionState:
    safety_check_complete: bool = False
    endurance_state: EnduranceState = EnduranceState.UNKNOWN
    peak_watts: float = 0.0
    baseline_watts_at_toggle: float = 0.0

    def record_watts(self, watts: float) -> None:
        """Raise the session peak; it never decreases."""
        if watts > self.peak_watts:
            self.peak_watts = watts


class StatusKind(Enum):
    DISCHARGING = "discharging"
    AC_POWER = "ac_power"
    READING = "reading"


@dataclass(frozen=True, slots=True)
class RenderableStatus:
    kind: StatusKind
    current_draw_text: str
    detail_text: str = ""
    time_remaining_text: str = ""
    impact_text: Optional[str] = None
    watts: float = 0.0
    peak_watts: float = 0.0
    time_remaining: Optional[timedelta] = None


def format_time_remaining(remaining: Optional[timedelta]) -> str:
    if remaining is None:
        return "Calculating time..."
    total_minutes = int(remaining.total_seconds() // 60)
    hours, minutes = divmod(total_minutes, 60)
    return f"Battery Remaining: {hours}h {minutes}m"
