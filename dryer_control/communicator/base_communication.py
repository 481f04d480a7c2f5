"""
base_communication.py

Implements the SerialTransport class that provides the request/response
exchange with a serial device. Every call is bounded by the port timeouts and
any failure (write error, short read, closed port) surfaces as a
TransportIOError. Nothing is retried inside a call.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

import serial
from serial.tools import list_ports

from dryer_control.errors import TransportIOError


class SerialTransport:
    """
    Frame-level access to a serial port.
    """

    def __init__(self, port: Optional[str] = None, settings: Optional[Dict[str, Any]] = None,
                 ser: Optional[Any] = None, line_levels: Optional[Dict[str, bool]] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Initializes the transport.

        Args:
            port: The serial port identifier (e.g., "/dev/ttyUSB0").
            settings: Serial parameters overriding the defaults.
            ser: An already open serial.Serial-like object (used by the simulator).
            line_levels: Levels for the "dtr" and "rts" lines, applied before the port opens.
            logger: Optional logger instance.
        """
        self.port = port
        self.logger = logger or logging.getLogger(__name__)
        self.ser = ser
        self.line_levels = dict(line_levels or {})
        self.current_settings = {
            'baudrate': 9600,
            'bytesize': serial.EIGHTBITS,
            'parity': serial.PARITY_NONE,
            'stopbits': serial.STOPBITS_ONE,
            'timeout': 2.0,
            'write_timeout': 2.0
        }
        if settings:
            self.current_settings.update(
                {k: v for k, v in settings.items() if k in self.current_settings}
            )

    @property
    def is_connected(self) -> bool:
        return self.ser is not None and self.ser.is_open

    def connect(self) -> None:
        """
        Opens the serial port with the current settings.

        Raises:
            TransportIOError: If the port cannot be opened.
        """
        if self.is_connected:
            return
        try:
            ser = serial.Serial()
            ser.port = self.port
            for key, value in self.current_settings.items():
                setattr(ser, key, value)
            # pySerial asserts DTR/RTS on open unless they are set beforehand.
            if "dtr" in self.line_levels:
                ser.dtr = self.line_levels["dtr"]
            if "rts" in self.line_levels:
                ser.rts = self.line_levels["rts"]
            ser.open()
            self.ser = ser
            self.logger.info(f"Connected to meter on {self.port}")
        except (serial.SerialException, OSError) as e:
            raise TransportIOError(f"Cannot open {self.port}: {e}") from e

    def disconnect(self) -> bool:
        """
        Safely closes the serial connection.

        Returns:
            True if disconnected, False if the port was not open.
        """
        try:
            if self.ser and self.ser.is_open:
                self.ser.close()
                self.logger.info(f"Disconnected from {self.port}")
                return True
            return False
        except (serial.SerialException, OSError) as e:
            self.logger.error(f"Error disconnecting: {str(e)}")
            return False

    def transact(self, request: bytes, response_len: int, header_len: int,
                 is_error_header: Callable[[bytes], bool]) -> bytes:
        """
        Writes a request frame and reads the response frame.

        The header is read first; when it announces an error frame the rest of
        the input is discarded and the header alone is returned.

        Args:
            request: The complete request frame.
            response_len: Length of a successful response frame.
            header_len: Number of bytes needed to recognise an error frame.
            is_error_header: Predicate applied to the header.

        Returns:
            The response bytes.

        Raises:
            TransportIOError: On write failure, timeout or a closed port.
        """
        if not self.is_connected:
            raise TransportIOError("Not connected")
        try:
            self.ser.reset_input_buffer()
            self.logger.debug(f"Sending frame: {request.hex(' ')}")
            self.ser.write(request)
            self.ser.flush()

            header = self.ser.read(header_len)
            if len(header) < header_len:
                raise TransportIOError(
                    f"Read timeout: got {len(header)} of {header_len} header bytes"
                )
            if is_error_header(header):
                self.logger.debug(f"Error header received: {header.hex(' ')}")
                self.ser.reset_input_buffer()
                return bytes(header)

            rest = self.ser.read(response_len - header_len)
            response = bytes(header) + bytes(rest)
            if len(response) < response_len:
                raise TransportIOError(
                    f"Read timeout: got {len(response)} of {response_len} bytes"
                )
            if self.ser.in_waiting:
                self.logger.warning("Had bytes leftover in the serial line, clearing them")
                self.ser.reset_input_buffer()
            self.logger.debug(f"Received frame: {response.hex(' ')}")
            return response
        except (serial.SerialException, OSError) as e:
            raise TransportIOError(f"Serial I/O failed: {e}") from e

    @staticmethod
    def list_ports() -> List[str]:
        """
        Lists available serial ports.

        Returns:
            A list of available port names.
        """
        return [p.device for p in list_ports.comports()]
