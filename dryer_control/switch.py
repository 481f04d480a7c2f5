"""
switch.py

Binary relay abstraction that physically powers the appliance.

SerialLineSwitch drives a relay board wired to the DTR or RTS control line of
a USB-serial adapter, the same lines pySerial exposes for RS485 direction
control.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import serial

from dryer_control.errors import TransportIOError


class ApplianceSwitch(ABC):
    """
    Interface for the relay. Both operations are idempotent.
    """

    @property
    @abstractmethod
    def is_on(self) -> bool:
        pass

    @abstractmethod
    def turn_on(self) -> None:
        """Energizes the appliance. Raises TransportIOError on failure."""
        pass

    @abstractmethod
    def turn_off(self) -> None:
        """De-energizes the appliance. Raises TransportIOError on failure."""
        pass

    def close(self) -> None:
        """Releases the underlying port, if any."""
        pass


class SerialLineSwitch(ApplianceSwitch):
    """
    Relay controlled through a serial port modem-control line.
    """

    def __init__(self, port: Optional[str] = None, line: str = "DTR", active_low: bool = False,
                 ser: Optional[Any] = None, logger: Optional[logging.Logger] = None):
        """
        Args:
            port: The serial port the relay board is attached to.
            line: "DTR" or "RTS".
            active_low: True if the relay closes when the line is de-asserted.
            ser: An already open serial.Serial-like object.
            logger: Optional logger instance.
        """
        line = line.upper()
        if line not in ("DTR", "RTS"):
            raise ValueError(f"Unsupported control line: {line}")
        self.port = port
        self.line = line
        self.active_low = active_low
        self.ser = ser
        self.logger = logger or logging.getLogger(__name__)
        self._on = False

    @property
    def is_on(self) -> bool:
        return self._on

    def open(self) -> None:
        """
        Opens the relay port and forces the relay off.

        Raises:
            TransportIOError: If the port cannot be opened.
        """
        if self.ser is None:
            try:
                # Keeping DTR/RTS low on open avoids a relay glitch at startup.
                self.ser = serial.Serial()
                self.ser.port = self.port
                self.ser.dtr = self.active_low
                self.ser.rts = self.active_low
                self.ser.open()
            except (serial.SerialException, OSError) as e:
                raise TransportIOError(f"Cannot open relay port {self.port}: {e}") from e
            self.logger.info(f"Relay attached to {self.line} on {self.port}")
        self._set_level(False)

    def close(self) -> None:
        if self.ser is not None and self.ser.is_open:
            self.ser.close()

    def turn_on(self) -> None:
        if self._on:
            return
        self._set_level(True)
        self.logger.info("Relay on")

    def turn_off(self) -> None:
        if not self._on:
            return
        self._set_level(False)
        self.logger.info("Relay off")

    def _set_level(self, energized: bool) -> None:
        if self.ser is None or not self.ser.is_open:
            raise TransportIOError("Relay port is not open")
        level = energized != self.active_low
        try:
            if self.line == "DTR":
                self.ser.dtr = level
            else:
                self.ser.rts = level
        except (serial.SerialException, OSError) as e:
            raise TransportIOError(f"Failed to set {self.line}={level}: {e}") from e
        self._on = energized
