"""
controller.py

Typed hardware state machine for the appliance.

The two states are two classes. OffController can only be turned on and
OnController can only be read or turned off, so reading energy before the
relay is confirmed on, or turning on twice, has no call path. Every
transition consumes the object it is called on: the hardware handles move to
the returned state and the old object raises IllegalStateError if used again.
"""

import logging
from typing import Optional, Tuple

from dryer_control.communicator.meter_communicator import PowerMeter
from dryer_control.errors import DryerControlError, IllegalStateError, TransportIOError, TurnOnError
from dryer_control.models import MeterReading
from dryer_control.switch import ApplianceSwitch


class _ControllerState:
    """Holds the meter and switch for exactly one live state object."""

    def __init__(self, meter: PowerMeter, switch: ApplianceSwitch,
                 logger: Optional[logging.Logger] = None):
        self._meter: Optional[PowerMeter] = meter
        self._switch: Optional[ApplianceSwitch] = switch
        self.logger = logger or logging.getLogger(__name__)

    @property
    def spent(self) -> bool:
        return self._meter is None

    def _hardware(self) -> Tuple[PowerMeter, ApplianceSwitch]:
        if self._meter is None or self._switch is None:
            raise IllegalStateError(f"{self.__class__.__name__} was already consumed by a transition")
        return self._meter, self._switch

    def _take(self) -> Tuple[PowerMeter, ApplianceSwitch]:
        meter, switch = self._hardware()
        self._meter = None
        self._switch = None
        return meter, switch


class OffController(_ControllerState):
    """
    The appliance is de-energized.
    """

    def turn_on(self) -> "OnController":
        """
        Closes the relay, then resets and verifies the meter's energy counter.

        Returns:
            The On state, with an energy baseline of zero.

        Raises:
            TurnOnError: Carries the Off state to keep using. If the meter reset
                failed the relay has been rolled back off (best effort).
        """
        meter, switch = self._take()
        try:
            switch.turn_on()
        except TransportIOError as e:
            self.logger.error(f"Relay failed to turn on: {e}")
            raise TurnOnError(OffController(meter, switch, self.logger), e) from e

        try:
            meter.reset_energy()
        except DryerControlError as e:
            self.logger.error(f"Meter reset failed after relay on, rolling back: {e}")
            try:
                switch.turn_off()
            except TransportIOError as off_error:
                self.logger.critical(
                    f"Relay rollback failed, appliance may still be energized; "
                    f"operator intervention required: {off_error}"
                )
            raise TurnOnError(OffController(meter, switch, self.logger), e) from e

        return OnController(meter, switch, self.logger)

    def ensure_off(self) -> None:
        """
        Re-asserts the relay off level. Failures are logged, not raised.
        """
        _, switch = self._hardware()
        try:
            switch.turn_off()
        except TransportIOError as e:
            self.logger.critical(f"Failed to release relay while Off: {e}")


class OnController(_ControllerState):
    """
    The appliance is energized and the meter counts energy from zero.
    """

    energy_baseline_wh = 0

    def read(self) -> MeterReading:
        """
        Reads the meter. Errors propagate and never change the state.
        """
        meter, _ = self._hardware()
        return meter.read()

    def turn_off(self) -> OffController:
        """
        Opens the relay. Never fails: the Off state is returned even when the
        relay reports an error, which is logged for the operator.
        """
        meter, switch = self._take()
        try:
            switch.turn_off()
        except TransportIOError as e:
            self.logger.critical(f"Relay failed to turn off, operator intervention required: {e}")
        return OffController(meter, switch, self.logger)
