"""
Battery telemetry via powrprof ``CallNtPowerInformation(SystemBatteryState)``.
"""

from __future__ import annotations

import ctypes
from typing import Callable, Optional, Union

from shared.errors import HardwareQueryError
from shared.power_models import PowerReading, TelemetrySnapshot

SYSTEM_BATTERY_STATE_LEVEL = 5
STATUS_SUCCESS = 0


class SYSTEM_BATTERY_STATE(ctypes.Structure):
    """
    Native little-endian layout, 32 bytes: four BOOLEAN flags, three spare
    bytes, a tag byte, then six ULONG fields. ``Rate`` is declared unsigned
    by the API but carries a signed value.
    """

    _fields_ = [
        ("AcOnLine", ctypes.c_ubyte),
        ("BatteryPresent", ctypes.c_ubyte),
        ("Charging", ctypes.c_ubyte),
        ("Discharging", ctypes.c_ubyte),
        ("Spare1", ctypes.c_ubyte * 3),
        ("Tag", ctypes.c_ubyte),
        ("MaxCapacity", ctypes.c_uint32),
        ("RemainingCapacity", ctypes.c_uint32),  # mWh
        ("Rate", ctypes.c_uint32),  # mW
        ("EstimatedTime", ctypes.c_uint32),
        ("DefaultAlert1", ctypes.c_uint32),
        ("DefaultAlert2", ctypes.c_uint32),
    ]


PowerInformationCall = Callable[..., int]


def decode_battery_state(raw: Union[SYSTEM_BATTERY_STATE, bytes, bytearray]) -> PowerReading:
    """
    Turn the raw structure (or its bytes) into a ``PowerReading``.

    The rate bit pattern is reinterpreted as a signed 32-bit integer; reading
    it as unsigned turns a small negative discharge into ~4.29 MW.
    """
    if isinstance(raw, (bytes, bytearray)):
        if len(raw) < ctypes.sizeof(SYSTEM_BATTERY_STATE):
            raise HardwareQueryError(f"Battery state buffer too short ({len(raw)} bytes).")
        raw = SYSTEM_BATTERY_STATE.from_buffer_copy(bytes(raw))

    return PowerReading(
        ac_online=bool(raw.AcOnLine),
        battery_present=bool(raw.BatteryPresent),
        charging=bool(raw.Charging),
        discharging=bool(raw.Discharging),
        rate_milliwatts=ctypes.c_int32(raw.Rate).value,
        remaining_capacity_mwh=int(raw.RemainingCapacity),
    )


class TelemetryReader:
    """Reads the battery state block on demand; nothing is cached between reads."""

    def __init__(self, power_information: Optional[PowerInformationCall] = None) -> None:
        self._power_information = power_information

    def read(self) -> PowerReading:
        state = SYSTEM_BATTERY_STATE()
        call = self._power_information or _load_power_information()
        try:
            status = call(
                SYSTEM_BATTERY_STATE_LEVEL,
                None,
                0,
                ctypes.pointer(state),
                ctypes.sizeof(state),
            )
        except OSError as exc:
            raise HardwareQueryError(f"CallNtPowerInformation raised: {exc}") from exc

        if status != STATUS_SUCCESS:
            raise HardwareQueryError(
                f"CallNtPowerInformation returned 0x{status & 0xFFFFFFFF:08X}",
                status=status,
            )
        return decode_battery_state(state)

    def snapshot(self) -> TelemetrySnapshot:
        return TelemetrySnapshot.from_reading(self.read())

    def is_plugged_in(self) -> bool:
        try:
            return self.read().ac_online
        except HardwareQueryError:
            return False


_NATIVE_CALL: Optional[PowerInformationCall] = None


def _load_power_information() -> PowerInformationCall:
    global _NATIVE_CALL
    if _NATIVE_CALL is not None:
        return _NATIVE_CALL

    windll = getattr(ctypes, "windll", None)
    if windll is None:
        raise HardwareQueryError("Battery telemetry requires Windows (powrprof.dll).")
    try:
        func = windll.powrprof.CallNtPowerInformation  # type: ignore[attr-defined]
    except OSError as exc:
        raise HardwareQueryError(f"Unable to load powrprof.dll: {exc}") from exc

    func.argtypes = [
        ctypes.c_int,
        ctypes.c_void_p,
        ctypes.c_ulong,
        ctypes.POINTER(SYSTEM_BATTERY_STATE),
        ctypes.c_ulong,
    ]
    func.restype = ctypes.c_long
    _NATIVE_CALL = func
    return func
