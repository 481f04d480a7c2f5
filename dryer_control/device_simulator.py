#!/usr/bin/env python3
"""
device_simulator.py

This module emulates the appliance hardware for testing without a physical
dryer, meter or relay board.

SimulatedPZEM behaves like a pySerial port with a PZEM-004T v3 on the other
end: request frames written to it are decoded with the real protocol and
answered with real response frames (checksums included), so the transport,
the codec and the reset verification run unchanged on top of it. Internal
state (power, cumulative energy) evolves between requests, and faults can be
injected: silence (read timeout), corrupted frames, error responses and a
reset that does not clear the energy counter.

SimulatedSwitch stands in for the relay, with optional failures.

Usage Example:
    switch = SimulatedSwitch()
    port = SimulatedPZEM(config={"power_w": 1500.0}, switch=switch)
    meter = PowerMeter(SerialTransport(ser=port), PZEM004TProtocol())
    print(meter.read())
"""

import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional

from dryer_control.errors import ProtocolError, TransportIOError
from dryer_control.meters.protocols.pzem004t_protocol import PZEM004TProtocol
from dryer_control.models import MeterReading
from dryer_control.switch import ApplianceSwitch


class SimulatedSwitch(ApplianceSwitch):
    """
    In-memory relay. Records every level change in history.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._on = False
        self.fail_on = False
        self.fail_off = False
        self.history: List[bool] = []
        self.logger = logger or logging.getLogger("SimulatedSwitch")

    @property
    def is_on(self) -> bool:
        return self._on

    def turn_on(self) -> None:
        if self.fail_on:
            raise TransportIOError("Simulated relay failure on turn_on")
        if self._on:
            return
        self._on = True
        self.history.append(True)
        self.logger.debug("Simulated relay on")

    def turn_off(self) -> None:
        if self.fail_off:
            raise TransportIOError("Simulated relay failure on turn_off")
        if not self._on:
            return
        self._on = False
        self.history.append(False)
        self.logger.debug("Simulated relay off")


class SimulatedPZEM:
    """
    Byte-level PZEM-004T v3 simulator exposing the subset of the serial.Serial
    interface used by SerialTransport.
    """

    def __init__(self, address: int = 0x01, config: Optional[Dict[str, Any]] = None,
                 switch: Optional[ApplianceSwitch] = None,
                 clock: Callable[[], float] = time.monotonic,
                 logger: Optional[logging.Logger] = None):
        """
        Args:
            address: Modbus address the simulated meter answers to.
            config: Initial electrical values and fault probabilities.
            switch: When given, the meter sees no load while the relay is off.
            clock: Time source used to accumulate energy.
            logger: Optional logger.
        """
        self.config = {
            "voltage": 220.0,
            "frequency": 60.0,
            "power_factor": 0.95,
            "power_w": 0.0,
            "noise_level": 0.0,
            "error_probability": 0.0,
        }
        if config:
            self.config.update(config)
        self.protocol = PZEM004TProtocol(address=address)
        self.switch = switch
        self.clock = clock
        self.logger = logger or logging.getLogger("SimulatedPZEM")

        self.power_w = float(self.config["power_w"])
        self.energy_wh = 0.0
        self.alarm = 0
        self._last_update = clock()

        # Fault injection
        self.silent = False
        self.corrupt_next = False
        self.fail_reset = False
        self.error_code: Optional[int] = None
        self.trailing_garbage = b""

        self.is_open = True
        self._rx = bytearray()
        self.requests: List[bytes] = []

    # serial.Serial-like interface

    @property
    def in_waiting(self) -> int:
        return len(self._rx)

    def write(self, data: bytes) -> int:
        if not self.is_open:
            raise OSError("Simulated port is closed")
        data = bytes(data)
        self.requests.append(data)
        self.logger.debug(f"Simulated meter received: {data.hex(' ')}")
        response = self._respond(data)
        if response:
            self._rx.extend(response)
        return len(data)

    def read(self, size: int = 1) -> bytes:
        if not self.is_open:
            raise OSError("Simulated port is closed")
        chunk = bytes(self._rx[:size])
        del self._rx[:size]
        return chunk

    def flush(self) -> None:
        pass

    def reset_input_buffer(self) -> None:
        self._rx.clear()

    def reset_output_buffer(self) -> None:
        pass

    def close(self) -> None:
        self.is_open = False

    def open(self) -> None:
        self.is_open = True

    # Simulation

    def current_power(self) -> float:
        if self.switch is not None and not self.switch.is_on:
            return 0.0
        noise = self.power_w * self.config.get("noise_level", 0.0)
        if noise:
            return max(0.0, self.power_w + random.uniform(-noise, noise))
        return self.power_w

    def advance(self, seconds: float) -> None:
        """Accumulates energy for the given time at the current power."""
        self.energy_wh += self.current_power() * seconds / 3600.0

    def snapshot(self) -> MeterReading:
        power = self.current_power()
        voltage = float(self.config["voltage"])
        power_factor = float(self.config["power_factor"]) if power > 0 else 0.0
        current = power / (voltage * power_factor) if power > 0 and power_factor > 0 else 0.0
        return MeterReading(
            voltage=voltage,
            current=current,
            power_w=power,
            energy_wh=int(self.energy_wh),
            frequency=float(self.config["frequency"]),
            power_factor=power_factor,
            alarm=self.alarm,
        )

    def _update_energy(self) -> None:
        now = self.clock()
        self.advance(max(0.0, now - self._last_update))
        self._last_update = now

    def _respond(self, data: bytes) -> Optional[bytes]:
        if self.silent:
            return None
        try:
            request = self.protocol.decode_request(data)
        except ProtocolError as e:
            # A real meter stays silent on frames it cannot parse.
            self.logger.debug(f"Simulated meter ignored frame: {e}")
            return None
        if request.address != self.protocol.address:
            return None

        self._update_energy()
        if self.error_code is not None:
            return self.protocol.encode_error_response(request.function, self.error_code)
        if random.random() < self.config.get("error_probability", 0.0):
            return self.protocol.encode_error_response(request.function, 0x04)

        if request.function == self.protocol.RESET_FUNCTION:
            if not self.fail_reset:
                self.energy_wh = 0.0
            response = self.protocol.encode_ack()
        else:
            response = self.protocol.encode_read_response(self.snapshot())

        if self.corrupt_next:
            self.corrupt_next = False
            corrupted = bytearray(response)
            corrupted[len(corrupted) // 2] ^= 0xFF
            response = bytes(corrupted)
        return response + self.trailing_garbage
