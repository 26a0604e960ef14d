"""
Exception types shared by the telemetry reader, controller and coordinator.
"""

from __future__ import annotations


class EnduranceError(Exception):
    """Base class for endurance-mode failures."""


class HardwareQueryError(EnduranceError):
    """The native power-information call reported failure."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class SafetyCheckError(EnduranceError):
    """Counting display adapters failed or produced unparsable output."""


class ToggleError(EnduranceError):
    """An enable/disable device command failed; the state change was not applied."""

    def __init__(self, message: str, *, target_active: bool) -> None:
        super().__init__(message)
        self.target_active = target_active
