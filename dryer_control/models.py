"""
models.py

Defines the data models passed between the meter codec, the billing engine and
the chat/ledger collaborators. Utilizes dataclasses to enforce structure.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional, Union


@dataclass(frozen=True)
class MeterReading:
    """
    One decoded measurement block from the power meter. Produced fresh on every
    read and never persisted.
    """
    voltage: float        # V
    current: float        # A
    power_w: float        # W
    energy_wh: int        # cumulative Wh since the last reset
    frequency: float      # Hz
    power_factor: float
    alarm: int


@dataclass(frozen=True)
class MeterRequest:
    """A request frame as seen from the device side of the wire."""
    address: int
    function: int
    register: Optional[int] = None
    count: Optional[int] = None


class RequestKind(Enum):
    """Kinds of inbound user requests understood by the supervisor."""
    STATUS = "status"
    TURN_ON = "turn_on"
    UPDATE = "update"


@dataclass(frozen=True)
class UserRequest:
    """
    Inbound request delivered by the chat transport.
    """
    user_id: int
    chat_ref: int
    kind: RequestKind
    message_ref: Optional[int] = None


@dataclass(frozen=True)
class OutgoingMessage:
    """
    Reply produced for the chat transport.
    """
    chat_ref: int
    text: str
    reply_to: Optional[int] = None
    offer_buttons: bool = False


@dataclass(frozen=True)
class LedgerUser:
    """A registered user as stored in the balance ledger."""
    id: int
    name: str
    balance: Decimal


@dataclass(frozen=True)
class SessionStats:
    """Final report of a finished billing session."""
    user_id: int
    user_name: str
    chat_ref: int
    elapsed_s: float
    total_kwh: Decimal
    total_reais: Decimal
    balance_reais: Decimal


# Tick outcomes

@dataclass(frozen=True)
class NoActiveSession:
    """The appliance is Off; nothing to bill."""


@dataclass(frozen=True)
class NotEnoughToDiscountYet:
    """Energy was integrated but the pending charge is below the billing minimum."""
    power_w: float


@dataclass(frozen=True)
class DiscountConsumed:
    """A batch of energy was billed and must be debited from the ledger."""
    user_id: int
    chat_ref: int
    delta_kwh: Decimal
    delta_reais: Decimal


@dataclass(frozen=True)
class ReadFailed:
    """The meter could not be read this tick; state is unchanged."""
    error: Exception


@dataclass(frozen=True)
class TurnedOffOutOfMoney:
    stats: SessionStats


@dataclass(frozen=True)
class TurnedOffIdle:
    stats: SessionStats


@dataclass(frozen=True)
class SessionAborted:
    """The session hit a fatal fault and the appliance was forced off."""
    stats: SessionStats
    reason: str


TickOutcome = Union[
    NoActiveSession,
    NotEnoughToDiscountYet,
    DiscountConsumed,
    ReadFailed,
    TurnedOffOutOfMoney,
    TurnedOffIdle,
    SessionAborted,
]

# Outcomes after which the appliance is Off and the session is gone.
SESSION_ENDING_OUTCOMES = (TurnedOffOutOfMoney, TurnedOffIdle, SessionAborted)
