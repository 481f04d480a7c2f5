"""
billing.py

Per-use billing session and the tick algorithm that turns instantaneous power
readings into energy and cost totals.

Energy is integrated in joules between ticks using a monotonic clock and only
billed once the pending charge reaches BillingSettings.min_billable_reais, so
the ledger sees a small number of batched debits instead of one per tick. A
crash between a flush and the ledger write loses at most one such batch.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Optional, Tuple, Union

from dryer_control.config import BillingSettings
from dryer_control.controller import OffController, OnController
from dryer_control.errors import LogicError, ProtocolError, TransportIOError, TurnOnRejected
from dryer_control.formatting import format_reais
from dryer_control.models import (
    DiscountConsumed,
    LedgerUser,
    NotEnoughToDiscountYet,
    ReadFailed,
    SessionAborted,
    SessionStats,
    TickOutcome,
    TurnedOffIdle,
    TurnedOffOutOfMoney,
)

logger = logging.getLogger(__name__)

JOULES_PER_KWH = Decimal(3_600_000)
ZERO = Decimal(0)

Clock = Callable[[], float]


@dataclass
class BillingSession:
    """
    Accumulator for one user's continuous use of the appliance.

    Invariants: balance_reais >= 0, the billed totals never decrease and
    unbilled_energy_joules only returns to zero when flushed into the totals.
    """
    user_id: int
    user_name: str
    chat_ref: int
    balance_reais: Decimal
    session_start: float
    last_tick_time: float
    unbilled_energy_joules: float = 0.0
    total_billed_kwh: Decimal = field(default=ZERO)
    total_billed_reais: Decimal = field(default=ZERO)
    zero_power_since: Optional[float] = None
    last_power_w: Optional[float] = None
    last_good_read_time: Optional[float] = None

    def __post_init__(self):
        if self.last_good_read_time is None:
            self.last_good_read_time = self.session_start

    def elapsed_s(self, now: float) -> float:
        return now - self.session_start

    def set_balance(self, new_balance: Decimal) -> None:
        """Replaces the balance with the value persisted by the ledger."""
        new_balance = Decimal(new_balance)
        self.balance_reais = new_balance if new_balance > ZERO else ZERO

    def stats(self, now: float) -> SessionStats:
        return SessionStats(
            user_id=self.user_id,
            user_name=self.user_name,
            chat_ref=self.chat_ref,
            elapsed_s=self.elapsed_s(now),
            total_kwh=self.total_billed_kwh,
            total_reais=self.total_billed_reais,
            balance_reais=self.balance_reais,
        )


@dataclass
class SupervisorOff:
    controller: OffController


@dataclass
class SupervisorOn:
    controller: OnController
    session: BillingSession


SupervisorState = Union[SupervisorOff, SupervisorOn]


def start_session(user: LedgerUser, balance: Decimal, chat_ref: int,
                  off_controller: OffController, settings: BillingSettings,
                  clock: Clock) -> Tuple[OnController, BillingSession]:
    """
    Turns the appliance on for a user and opens a fresh billing session.

    Args:
        user: The requesting user.
        balance: The user's current ledger balance.
        chat_ref: Chat where session notifications are sent.
        off_controller: The Off state; consumed only if the balance check passes.
        settings: Billing constants.
        clock: Monotonic clock in seconds.

    Returns:
        The On controller and the new session.

    Raises:
        TurnOnRejected: If the balance is not above settings.min_balance_to_start.
            Nothing is changed in that case.
        TurnOnError: If the hardware failed to turn on.
    """
    balance = Decimal(balance)
    if balance <= settings.min_balance_to_start:
        raise TurnOnRejected(
            f"Você precisa de mais de {format_reais(settings.min_balance_to_start)} de saldo "
            f"para ligar a secadora, você possui: {format_reais(balance)}."
        )
    on_controller = off_controller.turn_on()
    now = clock()
    session = BillingSession(
        user_id=user.id,
        user_name=user.name,
        chat_ref=chat_ref,
        balance_reais=balance,
        session_start=now,
        last_tick_time=now,
        last_good_read_time=now,
    )
    logger.info(f"Session started for user {user.id} ({user.name}) with balance {format_reais(balance)}")
    return on_controller, session


def tick(session: BillingSession, controller: OnController, settings: BillingSettings,
         clock: Clock) -> Tuple[SupervisorState, TickOutcome]:
    """
    Runs one billing evaluation for an active session.

    Steps: balance cutoff, power read, idle detection, idle cutoff, energy
    integration and batched flush. A negative delta is a LogicError that ends
    the session with an emergency turn-off, and so does a meter that stays
    unreadable for settings.meter_outage_timeout_s.

    Returns:
        The next supervisor state and the outcome of this tick.
    """
    now = clock()

    if session.balance_reais <= settings.out_of_money_threshold:
        logger.info(f"User {session.user_id} ran out of balance, turning off")
        return SupervisorOff(controller.turn_off()), TurnedOffOutOfMoney(session.stats(now))

    try:
        reading = controller.read()
    except (TransportIOError, ProtocolError) as e:
        return _read_failed(session, controller, settings, now, e)
    session.last_good_read_time = now

    try:
        return _integrate(session, controller, settings, reading.power_w, now)
    except LogicError as e:
        logger.error(f"Billing invariant violated, stopping session of user {session.user_id}: {e}")
        return SupervisorOff(controller.turn_off()), SessionAborted(session.stats(now), str(e))


def _read_failed(session: BillingSession, controller: OnController, settings: BillingSettings,
                 now: float, error: Exception) -> Tuple[SupervisorState, TickOutcome]:
    # Energy over an unreadable interval is unknown and is not billed.
    session.last_tick_time = max(session.last_tick_time, now)
    outage_s = now - session.last_good_read_time
    if outage_s >= settings.meter_outage_timeout_s:
        logger.error(
            f"Meter unreadable for {outage_s:.0f}s, stopping session of user {session.user_id}: {error}"
        )
        return SupervisorOff(controller.turn_off()), SessionAborted(
            session.stats(now), f"Meter unreadable for {outage_s:.0f}s: {error}"
        )
    logger.warning(f"Meter read failed, will retry next tick: {error}")
    return SupervisorOn(controller, session), ReadFailed(error)


def _integrate(session: BillingSession, controller: OnController, settings: BillingSettings,
               power_w: float, now: float) -> Tuple[SupervisorState, TickOutcome]:
    if power_w < 0:
        raise LogicError(f"Meter reported negative power: {power_w} W")

    if power_w <= settings.idle_power_threshold_w:
        if session.zero_power_since is None:
            session.zero_power_since = now
    else:
        session.zero_power_since = None
    session.last_power_w = power_w

    if session.zero_power_since is not None and now - session.zero_power_since >= settings.idle_timeout_s:
        logger.info(f"Appliance idle for {now - session.zero_power_since:.0f}s, turning off")
        return SupervisorOff(controller.turn_off()), TurnedOffIdle(session.stats(now))

    dt = now - session.last_tick_time
    if dt < 0:
        raise LogicError(f"Clock went backwards by {-dt:.3f}s")
    session.last_tick_time = now
    session.unbilled_energy_joules += power_w * dt

    delta_kwh = Decimal(str(session.unbilled_energy_joules)) / JOULES_PER_KWH
    delta_reais = delta_kwh * settings.price_per_kwh
    if delta_kwh < ZERO or delta_reais < ZERO:
        raise LogicError(f"Negative billing delta: {delta_kwh} kWh, {delta_reais} reais")

    if delta_reais < settings.min_billable_reais:
        return SupervisorOn(controller, session), NotEnoughToDiscountYet(power_w)

    session.total_billed_kwh += delta_kwh
    session.total_billed_reais += delta_reais
    session.unbilled_energy_joules = 0.0
    logger.debug(f"Billed {delta_kwh:.6f} kWh ({delta_reais:.4f} reais) to user {session.user_id}")
    return SupervisorOn(controller, session), DiscountConsumed(
        user_id=session.user_id,
        chat_ref=session.chat_ref,
        delta_kwh=delta_kwh,
        delta_reais=delta_reais,
    )
