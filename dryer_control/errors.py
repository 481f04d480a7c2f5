"""
errors.py

Exception hierarchy shared by the meter codec, the hardware state machine,
the billing session and the control loop.

Transport errors are recoverable and retried on the caller's own schedule
(the next tick or request). Protocol errors fail the current operation only.
IllegalStateError and LogicError point at defects and are surfaced loudly.
"""

from typing import Any, Optional


class DryerControlError(Exception):
    """Base class for every error raised by this package."""


class TransportIOError(DryerControlError):
    """Serial or relay I/O failed (write error, read timeout, closed port)."""


class ProtocolError(DryerControlError):
    """A frame from the meter is structurally invalid."""


class ChecksumError(ProtocolError):
    """The CRC appended to a frame does not match its contents."""

    def __init__(self, expected: int, received: int):
        super().__init__(f"CRC mismatch: expected 0x{expected:04X}, received 0x{received:04X}")
        self.expected = expected
        self.received = received


class DeviceErrorResponse(ProtocolError):
    """The meter answered with an error frame instead of the requested data."""

    def __init__(self, function: int, error_code: int):
        super().__init__(f"Meter error response: function=0x{function:02X}, code=0x{error_code:02X}")
        self.function = function
        self.error_code = error_code


class ResetVerificationError(DryerControlError):
    """The meter acknowledged an energy reset but still reports nonzero energy."""

    def __init__(self, energy_wh: int):
        super().__init__(f"Meter reported {energy_wh} Wh after an energy reset")
        self.energy_wh = energy_wh


class IllegalStateError(DryerControlError):
    """An operation was invoked in a state where it is not allowed."""


class LogicError(DryerControlError):
    """A billing invariant was violated (negative energy or cost delta)."""


class TurnOnError(DryerControlError):
    """
    Turning the appliance on failed.

    Attributes:
        off_state: The Off controller to keep using; the relay is released.
        cause: The underlying hardware error.
    """

    def __init__(self, off_state: Any, cause: Exception):
        super().__init__(f"Failed to turn appliance on: {cause}")
        self.off_state = off_state
        self.cause = cause


class TurnOnRejected(DryerControlError):
    """A turn-on request was refused before touching the hardware."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class LedgerError(DryerControlError):
    """The balance ledger could not be read or updated."""


class LedgerWriteFailed(LedgerError):
    """A debit could not be persisted; the appliance was emergency-stopped."""

    def __init__(self, user_id: int, cause: Optional[Exception] = None):
        super().__init__(f"Could not persist debit for user {user_id}: {cause}")
        self.user_id = user_id
        self.cause = cause


class ConfigError(DryerControlError):
    """Configuration values are missing or invalid."""
