import ctypes
from datetime import timedelta

import pytest

from conftest import pack_battery_state
from core.telemetry import SYSTEM_BATTERY_STATE, TelemetryReader, decode_battery_state
from shared.errors import HardwareQueryError
from shared.power_models import PowerReading, TelemetrySnapshot


def _native_call(raw: bytes, status: int = 0):
    calls = []

    def fake_call(level, in_buffer, in_size, out, out_size):
        calls.append((level, out_size))
        ctypes.memmove(ctypes.addressof(out.contents), raw, len(raw))
        return status

    return fake_call, calls


def test_structure_matches_native_layout():
    assert ctypes.sizeof(SYSTEM_BATTERY_STATE) == 32
    assert SYSTEM_BATTERY_STATE.RemainingCapacity.offset == 12
    assert SYSTEM_BATTERY_STATE.Rate.offset == 16


def test_negative_rate_is_reinterpreted_as_signed():
    reading = decode_battery_state(pack_battery_state(rate=-12000))

    assert reading.rate_milliwatts == -12000
    assert reading.discharging is True
    assert reading.ac_online is False


def test_three_hours_remaining_for_twelve_watts_from_36_wh():
    reading = decode_battery_state(pack_battery_state(remaining=36000, rate=-12000))
    snapshot = TelemetrySnapshot.from_reading(reading)

    assert snapshot.watts == pytest.approx(12.0)
    assert snapshot.time_remaining == timedelta(hours=3)


@pytest.mark.parametrize("rate", [-1, -12000, 12000, -250000, 0, 2147483647, -2147483648])
def test_watts_is_absolute_rate_in_watts(rate):
    snapshot = TelemetrySnapshot.from_reading(decode_battery_state(pack_battery_state(rate=rate)))

    assert snapshot.watts >= 0
    assert snapshot.watts == abs(rate) / 1000.0


@pytest.mark.parametrize("rate", [-15000, 0, 15000])
def test_watts_zero_when_not_discharging(rate):
    reading = decode_battery_state(pack_battery_state(discharging=0, charging=1, ac_online=1, rate=rate))
    snapshot = TelemetrySnapshot.from_reading(reading)

    assert snapshot.watts == 0.0
    assert snapshot.time_remaining is None


def test_time_remaining_undefined_while_rate_or_capacity_is_zero():
    settling = TelemetrySnapshot.from_reading(decode_battery_state(pack_battery_state(rate=0)))
    empty = TelemetrySnapshot.from_reading(decode_battery_state(pack_battery_state(remaining=0)))

    assert settling.watts == 0.0
    assert settling.time_remaining is None
    assert empty.watts == pytest.approx(12.0)
    assert empty.time_remaining is None


def test_short_buffer_is_rejected():
    with pytest.raises(HardwareQueryError):
        decode_battery_state(b"\x01\x01\x00\x01")


def test_reader_requests_battery_state_block():
    fake_call, calls = _native_call(pack_battery_state(ac_online=1, discharging=0, rate=0))
    reader = TelemetryReader(power_information=fake_call)

    reading = reader.read()

    assert calls == [(5, 32)]
    assert reading == PowerReading(
        ac_online=True,
        battery_present=True,
        charging=False,
        discharging=False,
        rate_milliwatts=0,
        remaining_capacity_mwh=36000,
    )


def test_reader_raises_on_failure_status():
    fake_call, _ = _native_call(pack_battery_state(), status=0xC0000022)
    reader = TelemetryReader(power_information=fake_call)

    with pytest.raises(HardwareQueryError) as excinfo:
        reader.read()
    assert excinfo.value.status == 0xC0000022


def test_plugged_in_requires_successful_query():
    failing, _ = _native_call(pack_battery_state(ac_online=1), status=1)
    succeeding, _ = _native_call(pack_battery_state(ac_online=1))

    assert TelemetryReader(power_information=failing).is_plugged_in() is False
    assert TelemetryReader(power_information=succeeding).is_plugged_in() is True


def test_plugged_in_is_independent_of_discharge():
    # Underpowered adapter: on AC yet still draining the battery.
    fake_call, _ = _native_call(pack_battery_state(ac_online=1, discharging=1, rate=-8000))
    reader = TelemetryReader(power_information=fake_call)

    assert reader.is_plugged_in() is True
    assert reader.snapshot().watts == pytest.approx(8.0)
