"""
Safety-gated control of the discrete GPU through PnP device commands.

Endurance mode *active* means the discrete adapter is disabled. Nothing here
persists across restarts; the hardware itself is the source of truth and is
re-queried at startup.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from core.device_channel import DeviceCommandChannel
from endurance_core.endurance_core import logger as app_logger
from shared.errors import SafetyCheckError, ToggleError
from shared.power_models import CommandResult, EnduranceState, SafetyVerdict

_LOGGER = app_logger.get_logger()

SafetyCallback = Callable[[SafetyVerdict], None]
StateCallback = Callable[[EnduranceState], None]
ToggleCallback = Callable[[Optional[ToggleError]], None]


@dataclass(frozen=True)
class DeviceFilter:
    """
    Selects discrete display adapters by PCI vendor while excluding adapters
    whose friendly name looks integrated or like the basic display driver.
    """

    device_class: str = "Display"
    vendor_ids: Tuple[str, ...] = ("VEN_10DE", "VEN_1002")  # NVIDIA, AMD
    excluded_names: Tuple[str, ...] = ("Intel", "Basic")

    def expression(self) -> str:
        vendors = " -or ".join(f"$_.InstanceId -match '{vid}'" for vid in self.vendor_ids)
        clauses = [f"({vendors})"]
        clauses.extend(f"($_.FriendlyName -notmatch '{name}')" for name in self.excluded_names)
        return f"Get-PnpDevice -Class {self.device_class} | Where-Object {{ {' -and '.join(clauses)} }}"

    def count_all_adapters_command(self) -> str:
        return f"@(Get-PnpDevice -Class {self.device_class}).Count"

    def count_not_ok_command(self) -> str:
        return f"@({self.expression()} | Where-Object {{ $_.Status -ne 'OK' }}).Count"

    def disable_command(self) -> str:
        return f"{self.expression()} | Disable-PnpDevice -Confirm:$false"

    def enable_command(self) -> str:
        return f"{self.expression()} | Enable-PnpDevice -Confirm:$false"


DISCRETE_GPU_FILTER = DeviceFilter()


def parse_count(output: str) -> Optional[int]:
    """Return the integer on the last non-empty output line, or None."""
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    if not lines:
        return None
    try:
        return int(lines[-1])
    except ValueError:
        return None


class EnduranceController:
    """
    Owns what is safe and which transitions are legal.

    Asynchronous operations report through callbacks and never raise into
    the event loop. ``restore_synchronously`` blocks and is for teardown only.
    """

    def __init__(self, channel: DeviceCommandChannel, device_filter: DeviceFilter = DISCRETE_GPU_FILTER) -> None:
        self._channel = channel
        self.device_filter = device_filter
        self._verdict: Optional[SafetyVerdict] = None
        self._state = EnduranceState.UNKNOWN

    @property
    def state(self) -> EnduranceState:
        return self._state

    @property
    def verdict(self) -> Optional[SafetyVerdict]:
        return self._verdict

    @property
    def toggling_permitted(self) -> bool:
        return self._verdict is not None and self._verdict.safe

    def check_safety(self, on_result: SafetyCallback) -> None:
        """
        Count every display adapter, enabled or not. Fewer than two means a
        disabled discrete GPU would leave no display at all. The verdict is
        final for the lifetime of this controller.
        """
        if self._verdict is not None:
            on_result(self._verdict)
            return

        def _finished(result: CommandResult) -> None:
            verdict = self._verdict_from(result)
            self._verdict = verdict
            if verdict.error is not None:
                _LOGGER.error("Safety check failed: {}", verdict.error)
            elif verdict.safe:
                _LOGGER.info("Hybrid topology confirmed ({} display adapters).", verdict.adapter_count)
            else:
                _LOGGER.warning(
                    "Unsafe configuration: {} display adapter(s); toggling disabled.",
                    verdict.adapter_count,
                )
            on_result(verdict)

        self._channel.run_captured(self.device_filter.count_all_adapters_command(), _finished)

    def query_state(self, on_result: StateCallback) -> None:
        """Active iff at least one discrete adapter reports a status other than OK."""
        if not self.toggling_permitted:
            _LOGGER.debug("State query skipped; safety not confirmed.")
            on_result(EnduranceState.UNKNOWN)
            return

        def _finished(result: CommandResult) -> None:
            if not result.exit_succeeded:
                _LOGGER.error("Discrete adapter status query failed.")
                on_result(self._state)
                return
            count = parse_count(result.captured_output) or 0
            self._state = EnduranceState.ACTIVE if count > 0 else EnduranceState.INACTIVE
            _LOGGER.info("Endurance mode is {} ({} discrete adapter(s) not OK).", self._state.value, count)
            on_result(self._state)

        self._channel.run_captured(self.device_filter.count_not_ok_command(), _finished)

    def enable(self, on_done: ToggleCallback) -> None:
        """Enter endurance mode by disabling the discrete adapter."""
        self._toggle(True, on_done)

    def disable(self, on_done: ToggleCallback) -> None:
        """Leave endurance mode by re-enabling the discrete adapter."""
        self._toggle(False, on_done)

    def restore_synchronously(self) -> None:
        """
        Re-enable the discrete adapter and wait. Errors are logged and dropped.

        Pending toggles are settled first; a disable still running after the
        enable would otherwise leave the adapter off.
        """
        _LOGGER.info("Restoring discrete GPU before exit.")
        try:
            self._channel.settle_pending()
            succeeded = self._channel.run_blocking(self.device_filter.enable_command())
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning("Discrete GPU restore raised: {}", exc)
            return
        if succeeded:
            self._state = EnduranceState.INACTIVE
        else:
            _LOGGER.warning("Discrete GPU restore command did not succeed.")

    def _toggle(self, target_active: bool, on_done: ToggleCallback) -> None:
        if not self.toggling_permitted:
            on_done(
                ToggleError(
                    "Toggling is disabled because a hybrid GPU setup was not confirmed.",
                    target_active=target_active,
                )
            )
            return

        if target_active:
            command = self.device_filter.disable_command()
        else:
            command = self.device_filter.enable_command()

        def _finished(succeeded: bool) -> None:
            if not succeeded:
                action = "Disabling" if target_active else "Re-enabling"
                error = ToggleError(f"{action} the discrete GPU failed.", target_active=target_active)
                _LOGGER.error("{} (state stays {})", error, self._state.value)
                on_done(error)
                return
            self._state = EnduranceState.ACTIVE if target_active else EnduranceState.INACTIVE
            _LOGGER.info("Endurance mode is now {}.", self._state.value)
            on_done(None)

        self._channel.run_fire_and_forget(command, _finished)

    @staticmethod
    def _verdict_from(result: CommandResult) -> SafetyVerdict:
        if not result.exit_succeeded:
            return SafetyVerdict(safe=False, error=SafetyCheckError("Display adapter count command failed."))
        count = parse_count(result.captured_output)
        if count is None:
            return SafetyVerdict(
                safe=False,
                error=SafetyCheckError(f"Unreadable display adapter count: {result.captured_output.strip()!r}"),
            )
        return SafetyVerdict(safe=count > 1, adapter_count=count)
