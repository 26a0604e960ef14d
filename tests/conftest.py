import os
import struct
import tempfile

os.environ.setdefault("LOCALAPPDATA", tempfile.mkdtemp(prefix="gpu-endurance-tests-"))

import pytest  # noqa: E402
from PySide6.QtCore import QCoreApplication  # noqa: E402

from shared.errors import HardwareQueryError  # noqa: E402
from shared.power_models import CommandResult, PowerReading, TelemetrySnapshot  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def qt_app():
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


def pack_battery_state(
    *,
    ac_online: int = 0,
    present: int = 1,
    charging: int = 0,
    discharging: int = 1,
    max_capacity: int = 50000,
    remaining: int = 36000,
    rate: int = -12000,
    estimated_time: int = 0,
) -> bytes:
    """Little-endian SYSTEM_BATTERY_STATE with the rate stored as an unsigned bit pattern."""
    return struct.pack(
        "<BBBB3sB6I",
        ac_online,
        present,
        charging,
        discharging,
        b"\x00\x00\x00",
        0,
        max_capacity,
        remaining,
        rate & 0xFFFFFFFF,
        estimated_time,
        0,
        0,
    )


class FakeChannel:
    """
    Scripted stand-in for the PowerShell channel.

    With ``defer=True`` completions are held in ``pending`` until resolved,
    mimicking a slow external process.
    """

    def __init__(self, *, captured=None, toggles=None, blocking_result=True, defer=False):
        self.captured = list(captured or [])
        self.toggles = list(toggles or [])
        self.blocking_result = blocking_result
        self.defer = defer
        self.commands = []
        self.pending = []

    def run_captured(self, command, on_done):
        self.commands.append(("captured", command))
        result = self.captured.pop(0) if self.captured else CommandResult(exit_succeeded=False)
        self._complete(lambda: on_done(result))

    def run_fire_and_forget(self, command, on_done=None):
        self.commands.append(("async", command))
        succeeded = self.toggles.pop(0) if self.toggles else True
        if on_done is not None:
            self._complete(lambda: on_done(succeeded))

    def run_blocking(self, command):
        self.commands.append(("blocking", command))
        if isinstance(self.blocking_result, Exception):
            raise self.blocking_result
        return self.blocking_result

    def settle_pending(self):
        self.commands.append(("settle", ""))
        while self.pending:
            self.resolve_next()

    def resolve_next(self):
        self.pending.pop(0)()

    def kinds(self):
        return [kind for kind, _ in self.commands]

    def _complete(self, callback):
        if self.defer:
            self.pending.append(callback)
        else:
            callback()


class FakeTelemetry:
    def __init__(self, reading=None):
        self.reading = reading
        self.reads = 0

    def read(self):
        self.reads += 1
        if isinstance(self.reading, Exception):
            raise self.reading
        if self.reading is None:
            raise HardwareQueryError("no battery data")
        return self.reading

    def snapshot(self):
        return TelemetrySnapshot.from_reading(self.read())

    def is_plugged_in(self):
        try:
            return self.read().ac_online
        except HardwareQueryError:
            return False


def battery(watts: float, *, ac_online: bool = False, remaining: int = 36000) -> PowerReading:
    rate = -int(round(watts * 1000))
    return PowerReading(
        ac_online=ac_online,
        battery_present=True,
        charging=False,
        discharging=watts > 0,
        rate_milliwatts=rate,
        remaining_capacity_mwh=remaining,
    )
