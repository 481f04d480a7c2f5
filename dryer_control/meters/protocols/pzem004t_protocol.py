"""
pzem004t_protocol.py
Implements the Modbus-RTU protocol of the PZEM-004T v3 AC power meter.

Read request (8 bytes):
    [address, 0x04, reg_hi, reg_lo, count_hi, count_lo, crc_lo, crc_hi]
Read response (25 bytes):
    [address, 0x04, 20, <10 big-endian registers>, crc_lo, crc_hi]
Reset energy request / acknowledgement (4 bytes):
    [address, 0x42, crc_lo, crc_hi]
Error response:
    [address, function | 0x80, error_code(, crc_lo, crc_hi)]

32-bit values are split over two registers with the LOW word first, so the
payload has to be reassembled from non-contiguous offsets.
"""

import struct

from dryer_control.errors import DeviceErrorResponse, ProtocolError
from dryer_control.meters.protocols.meter_protocol import MeterProtocol
from dryer_control.models import MeterReading, MeterRequest


class PZEM004TProtocol(MeterProtocol):
    """
    Builds and decodes PZEM-004T v3 frames.

    Payload register map (offsets inside the 20-byte data block):
        0-1   voltage        /10   V
        2-3   current low   \\
        4-5   current high  /1000  A
        6-7   power low     \\
        8-9   power high    /10    W
        10-11 energy low    \\
        12-13 energy high   integer Wh
        14-15 frequency      /10   Hz
        16-17 power factor   /100
        18-19 alarm          integer
    """

    READ_FUNCTION = 0x04
    RESET_FUNCTION = 0x42
    ERROR_FLAG = 0x80

    FIRST_REGISTER = 0x0000
    REGISTER_COUNT = 0x000A
    PAYLOAD_LEN = REGISTER_COUNT * 2

    READ_REQUEST_LEN = 8
    READ_RESPONSE_LEN = 3 + PAYLOAD_LEN + 2
    RESET_FRAME_LEN = 4
    HEADER_LEN = 3

    # Host side

    def build_read_request(self) -> bytes:
        body = struct.pack(
            ">BBHH", self.address, self.READ_FUNCTION, self.FIRST_REGISTER, self.REGISTER_COUNT
        )
        return self.append_crc(body)

    def build_reset_energy_request(self) -> bytes:
        return self.append_crc(bytes([self.address, self.RESET_FUNCTION]))

    def decode_read_response(self, frame: bytes) -> MeterReading:
        """
        Decodes the 25-byte measurement frame.

        The checksum is validated before any other field so that any single
        corrupted byte of a full frame is reported as a ChecksumError.
        """
        frame = bytes(frame)
        if len(frame) < self.HEADER_LEN:
            raise ProtocolError(f"Response too short: {len(frame)} bytes")
        if len(frame) != self.READ_RESPONSE_LEN:
            if frame[1] != self.READ_FUNCTION:
                self._raise_error_response(frame)
            raise ProtocolError(
                f"Invalid response length: expected {self.READ_RESPONSE_LEN}, got {len(frame)}"
            )

        self.verify_crc(frame)

        if frame[1] != self.READ_FUNCTION:
            raise ProtocolError(f"Unexpected function code 0x{frame[1]:02X}")
        if frame[0] != self.address:
            raise ProtocolError(f"Response from address 0x{frame[0]:02X}, expected 0x{self.address:02X}")
        if frame[2] != self.PAYLOAD_LEN:
            raise ProtocolError(
                f"Meter returned {frame[2]} data bytes, expected {self.PAYLOAD_LEN}"
            )

        return self._decode_payload(frame[3:3 + self.PAYLOAD_LEN])

    def decode_ack(self, frame: bytes) -> None:
        frame = bytes(frame)
        if len(frame) < self.HEADER_LEN:
            raise ProtocolError(f"Acknowledgement too short: {len(frame)} bytes")
        if len(frame) != self.RESET_FRAME_LEN:
            if frame[1] != self.RESET_FUNCTION:
                self._raise_error_response(frame)
            raise ProtocolError(
                f"Invalid acknowledgement length: expected {self.RESET_FRAME_LEN}, got {len(frame)}"
            )

        self.verify_crc(frame)

        if frame[1] != self.RESET_FUNCTION:
            raise ProtocolError(f"Unexpected function code 0x{frame[1]:02X} in acknowledgement")
        if frame[0] != self.address:
            raise ProtocolError(f"Acknowledgement from address 0x{frame[0]:02X}, expected 0x{self.address:02X}")

    def is_error_header(self, header: bytes, expected_function: int) -> bool:
        """
        Returns True if the first bytes of a response announce an error frame.
        """
        return len(header) >= 2 and header[1] != expected_function

    def _raise_error_response(self, frame: bytes) -> None:
        # Full error frames carry a checksum; a bare header does not.
        if len(frame) == self.HEADER_LEN + 2:
            self.verify_crc(frame)
        raise DeviceErrorResponse(frame[1], frame[2])

    def _decode_payload(self, payload: bytes) -> MeterReading:
        (voltage, current_lo, current_hi, power_lo, power_hi,
         energy_lo, energy_hi, frequency, power_factor, alarm) = struct.unpack(">10H", payload)
        return MeterReading(
            voltage=voltage / 10.0,
            current=((current_hi << 16) | current_lo) / 1000.0,
            power_w=((power_hi << 16) | power_lo) / 10.0,
            energy_wh=(energy_hi << 16) | energy_lo,
            frequency=frequency / 10.0,
            power_factor=power_factor / 100.0,
            alarm=alarm,
        )

    # Device side, used by the simulator

    def encode_read_response(self, reading: MeterReading) -> bytes:
        """
        Serializes a MeterReading into a 25-byte response frame.
        Values are rounded to the meter's resolution.
        """
        current = self._scaled(reading.current, 1000, 0xFFFFFFFF, "current")
        power = self._scaled(reading.power_w, 10, 0xFFFFFFFF, "power_w")
        energy = self._scaled(reading.energy_wh, 1, 0xFFFFFFFF, "energy_wh")
        payload = struct.pack(
            ">10H",
            self._scaled(reading.voltage, 10, 0xFFFF, "voltage"),
            current & 0xFFFF, current >> 16,
            power & 0xFFFF, power >> 16,
            energy & 0xFFFF, energy >> 16,
            self._scaled(reading.frequency, 10, 0xFFFF, "frequency"),
            self._scaled(reading.power_factor, 100, 0xFFFF, "power_factor"),
            self._scaled(reading.alarm, 1, 0xFFFF, "alarm"),
        )
        header = bytes([self.address, self.READ_FUNCTION, self.PAYLOAD_LEN])
        return self.append_crc(header + payload)

    def encode_ack(self) -> bytes:
        return self.append_crc(bytes([self.address, self.RESET_FUNCTION]))

    def encode_error_response(self, function: int, error_code: int) -> bytes:
        body = bytes([self.address, (function | self.ERROR_FLAG) & 0xFF, error_code & 0xFF])
        return self.append_crc(body)

    def decode_request(self, frame: bytes) -> MeterRequest:
        """
        Parses a request frame as the meter would receive it.
        """
        frame = bytes(frame)
        if len(frame) < self.RESET_FRAME_LEN:
            raise ProtocolError(f"Request too short: {len(frame)} bytes")
        self.verify_crc(frame)
        address, function = frame[0], frame[1]
        if function == self.READ_FUNCTION:
            if len(frame) != self.READ_REQUEST_LEN:
                raise ProtocolError(f"Invalid read request length: {len(frame)}")
            register, count = struct.unpack(">HH", frame[2:6])
            return MeterRequest(address=address, function=function, register=register, count=count)
        if function == self.RESET_FUNCTION:
            if len(frame) != self.RESET_FRAME_LEN:
                raise ProtocolError(f"Invalid reset request length: {len(frame)}")
            return MeterRequest(address=address, function=function)
        raise ProtocolError(f"Unsupported function code 0x{function:02X}")

    @staticmethod
    def _scaled(value: float, factor: int, limit: int, name: str) -> int:
        raw = int(round(value * factor))
        if not 0 <= raw <= limit:
            raise ValueError(f"{name}={value} does not fit the register range")
        return raw
