"""
Core endurance-mode engine: telemetry, device commands and session control.
"""

from .endurance_controller import DeviceFilter, EnduranceController  # noqa: F401
from .telemetry import TelemetryReader  # noqa: F401
