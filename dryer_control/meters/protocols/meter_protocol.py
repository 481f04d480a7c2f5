#!/usr/bin/env python3
"""
meter_protocol.py

This module defines the abstract base class for power meter protocols. All
meter-specific protocol implementations must inherit from this class and
implement methods for:
  - Building request frames (read measurements, reset the energy counter).
  - Decoding response frames into MeterReading objects.

It also provides the CRC-16/MODBUS checksum shared by Modbus-RTU style meters.
Checksums are appended low byte first, high byte second.

Usage Example:
    protocol = SomeMeterProtocol(address=0x01)
    request = protocol.build_read_request()
    reading = protocol.decode_read_response(received_bytes)
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from dryer_control.errors import ChecksumError, ProtocolError
from dryer_control.models import MeterReading


class MeterProtocol(ABC):
    """
    Abstract base class for power meter protocols.
    Provides a standardized interface for building request frames and decoding responses.
    """

    def __init__(self, address: int = 0x01, logger: Optional[logging.Logger] = None):
        """
        Initializes the MeterProtocol.

        Args:
            address (int): The Modbus slave address of the meter (default: 0x01).
            logger (Optional[logging.Logger]): A logger instance for debugging.
        """
        if not 0x00 <= address <= 0xFF:
            raise ValueError(f"Invalid meter address: {address}")
        self.address = address
        self.logger = logger or logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def build_read_request(self) -> bytes:
        """
        Builds the frame requesting the full measurement block.

        Returns:
            bytes: The request frame, checksum included.
        """
        pass

    @abstractmethod
    def build_reset_energy_request(self) -> bytes:
        """
        Builds the frame that zeroes the meter's cumulative energy counter.

        Returns:
            bytes: The request frame, checksum included.
        """
        pass

    @abstractmethod
    def decode_read_response(self, frame: bytes) -> MeterReading:
        """
        Decodes a response to the read request.

        Args:
            frame (bytes): The complete response frame.

        Returns:
            MeterReading: The scaled measurements.

        Raises:
            ProtocolError: If the frame is malformed, fails its checksum or is an error response.
        """
        pass

    @abstractmethod
    def decode_ack(self, frame: bytes) -> None:
        """
        Validates the acknowledgement to a reset request.

        Args:
            frame (bytes): The complete response frame.

        Raises:
            ProtocolError: If the frame is not a valid acknowledgement.
        """
        pass

    @staticmethod
    def calculate_crc16(data: bytes) -> int:
        """
        Calculates a CRC-16/MODBUS checksum (init 0xFFFF, reflected polynomial 0xA001).

        Args:
            data (bytes): The input data.

        Returns:
            int: The 16-bit CRC checksum.
        """
        crc = 0xFFFF
        for byte in data:
            crc ^= byte
            for _ in range(8):
                if crc & 0x0001:
                    crc = (crc >> 1) ^ 0xA001
                else:
                    crc >>= 1
        return crc

    def append_crc(self, body: bytes) -> bytes:
        """
        Returns body followed by its checksum as [crc_lo, crc_hi].
        """
        crc = self.calculate_crc16(body)
        return bytes(body) + bytes([crc & 0xFF, (crc >> 8) & 0xFF])

    def verify_crc(self, frame: bytes) -> None:
        """
        Checks the trailing two checksum bytes of a frame.

        Raises:
            ProtocolError: If the frame is too short to carry a checksum.
            ChecksumError: If the checksum does not match.
        """
        if len(frame) < 4:
            raise ProtocolError(f"Frame too short for a checksum: {len(frame)} bytes")
        expected = self.calculate_crc16(frame[:-2])
        received = frame[-2] | (frame[-1] << 8)
        if expected != received:
            raise ChecksumError(expected, received)
