"""
Registry-backed configuration for the endurance runtime.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from endurance_core.endurance_core import logger as app_logger

try:
    import winreg
except ModuleNotFoundError:  # pragma: no cover - non-Windows environments
    winreg = None

_LOGGER = app_logger.get_logger()

_BASE_SUBKEY = r"Software\GPU Endurance"
DEFAULT_POLL_INTERVAL_MS = 500
DEFAULT_CONSERVATION_THRESHOLD_WATTS = 5.0
DEFAULT_WATTS_PER_REFERENCE_LOAD = 10.0

_POLL_BOUNDS = (250, 10000)
_THRESHOLD_BOUNDS = (0.0, 100.0)
_LOAD_BOUNDS = (1.0, 500.0)


@dataclass(eq=True)
class EnduranceSettings:
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    conservation_threshold_watts: float = DEFAULT_CONSERVATION_THRESHOLD_WATTS
    watts_per_reference_load: float = DEFAULT_WATTS_PER_REFERENCE_LOAD


class EnduranceSettingsManager:
    """Loads persisted settings from HKCU and clamps invalid data."""

    def __init__(self, *, hive: Optional[int] = None, winreg_module=winreg) -> None:
        self._winreg = winreg_module
        if hive is None and winreg_module is not None:
            hive = winreg_module.HKEY_CURRENT_USER
        self.hive = hive

    def read_settings(self) -> EnduranceSettings:
        key = self._open_key()
        if key is None:
            return EnduranceSettings()

        try:
            return EnduranceSettings(
                poll_interval_ms=self._read_poll_interval(key),
                conservation_threshold_watts=self._read_watts(
                    key, "ConservationThresholdWatts", DEFAULT_CONSERVATION_THRESHOLD_WATTS, _THRESHOLD_BOUNDS
                ),
                watts_per_reference_load=self._read_watts(
                    key, "WattsPerReferenceLoad", DEFAULT_WATTS_PER_REFERENCE_LOAD, _LOAD_BOUNDS
                ),
            )
        finally:
            self._winreg.CloseKey(key)

    def _open_key(self):
        if self._winreg is None:
            return None
        try:
            return self._winreg.OpenKey(self.hive, _BASE_SUBKEY, 0, self._winreg.KEY_READ)
        except FileNotFoundError:
            return None

    def _read_poll_interval(self, key) -> int:
        try:
            value, value_type = self._winreg.QueryValueEx(key, "PollIntervalMs")
        except FileNotFoundError:
            return DEFAULT_POLL_INTERVAL_MS
        if value_type != self._winreg.REG_DWORD:
            _LOGGER.warning("Registry value PollIntervalMs has unexpected type {}.", value_type)
            return DEFAULT_POLL_INTERVAL_MS
        low, high = _POLL_BOUNDS
        raw = int(value)
        if raw < low or raw > high:
            _LOGGER.warning("Invalid poll interval {} found in registry. Clamping to safe bounds.", raw)
        return max(low, min(high, raw))

    def _read_watts(self, key, name: str, default: float, bounds: tuple[float, float]) -> float:
        try:
            value, value_type = self._winreg.QueryValueEx(key, name)
        except FileNotFoundError:
            return default
        if value_type not in (self._winreg.REG_SZ, self._winreg.REG_DWORD):
            _LOGGER.warning("Registry value {} has unexpected type {}.", name, value_type)
            return default
        try:
            raw = float(value)
        except (TypeError, ValueError):
            _LOGGER.warning("Registry value {}={!r} is not a number.", name, value)
            return default
        low, high = bounds
        if raw < low or raw > high:
            _LOGGER.warning("Invalid {} {} found in registry. Clamping to safe bounds.", name, raw)
        return max(low, min(high, raw))
