"""
meter_communicator.py

Implements the PowerMeter class that combines a meter protocol with a serial
transport: it reads measurement blocks and resets (and verifies) the energy
counter.
"""

import logging
from typing import Optional

from dryer_control.communicator.base_communication import SerialTransport
from dryer_control.errors import ResetVerificationError
from dryer_control.meters.protocols.meter_protocol import MeterProtocol
from dryer_control.models import MeterReading


class PowerMeter:
    """
    Manages request/response exchanges with a serial power meter.
    """

    def __init__(self, transport: SerialTransport, protocol: MeterProtocol,
                 logger: Optional[logging.Logger] = None):
        """
        Initializes the PowerMeter.

        Args:
            transport: The serial transport the meter is attached to.
            protocol: The protocol used to build and decode frames.
            logger: Optional logger for debugging.
        """
        self.transport = transport
        self.protocol = protocol
        self.logger = logger or logging.getLogger(__name__)

    def connect(self) -> None:
        self.transport.connect()

    def disconnect(self) -> bool:
        return self.transport.disconnect()

    def read(self) -> MeterReading:
        """
        Reads the full measurement block.

        Raises:
            TransportIOError: On timeouts or serial failures.
            ProtocolError: If the response is invalid or an error frame.
        """
        protocol = self.protocol
        response = self.transport.transact(
            protocol.build_read_request(),
            response_len=protocol.READ_RESPONSE_LEN,
            header_len=protocol.HEADER_LEN,
            is_error_header=lambda h: protocol.is_error_header(h, protocol.READ_FUNCTION),
        )
        reading = protocol.decode_read_response(response)
        self.logger.debug(
            f"Meter reading: {reading.voltage:.1f} V, {reading.current:.3f} A, "
            f"{reading.power_w:.1f} W, {reading.energy_wh} Wh"
        )
        return reading

    def reset_energy(self) -> None:
        """
        Zeroes the cumulative energy counter and checks that it really reads zero.

        Raises:
            TransportIOError: On timeouts or serial failures.
            ProtocolError: If the acknowledgement or the verification read is invalid.
            ResetVerificationError: If the meter still reports energy after the reset.
        """
        protocol = self.protocol
        response = self.transport.transact(
            protocol.build_reset_energy_request(),
            response_len=protocol.RESET_FRAME_LEN,
            header_len=protocol.HEADER_LEN,
            is_error_header=lambda h: protocol.is_error_header(h, protocol.RESET_FUNCTION),
        )
        protocol.decode_ack(response)

        reading = self.read()
        if reading.energy_wh != 0:
            raise ResetVerificationError(reading.energy_wh)
        self.logger.info("Meter energy counter reset")
