"""
supervisor.py

Implements the SessionSupervisor, the single owner of the appliance state.

The state is exactly one of SupervisorOff(controller) or
SupervisorOn(controller, session); a session exists if and only if the
controller is On. The supervisor is driven by one thread and holds no locks.
"""

import logging
import time
from decimal import Decimal
from typing import Callable, Optional

from dryer_control import billing
from dryer_control.billing import SupervisorOff, SupervisorOn, SupervisorState
from dryer_control.config import BillingSettings
from dryer_control.controller import OffController
from dryer_control.errors import (
    IllegalStateError,
    ProtocolError,
    TransportIOError,
    TurnOnError,
    TurnOnRejected,
)
from dryer_control.formatting import format_elapsed, format_kwh, format_reais
from dryer_control.models import (
    LedgerUser,
    NoActiveSession,
    OutgoingMessage,
    RequestKind,
    SessionAborted,
    SessionStats,
    TickOutcome,
    TurnedOffIdle,
    TurnedOffOutOfMoney,
    UserRequest,
)


class SessionSupervisor:
    """
    Arbitrates user requests and periodic ticks for one appliance.
    """

    def __init__(self, off_controller: OffController, settings: BillingSettings,
                 clock: Callable[[], float] = time.monotonic,
                 operator_contact: str = "o operador",
                 logger: Optional[logging.Logger] = None):
        """
        Args:
            off_controller: The initial Off state of the hardware.
            settings: Billing constants.
            clock: Monotonic clock in seconds.
            operator_contact: Who users are told to contact on hardware errors.
            logger: Optional logger instance.
        """
        self._state: SupervisorState = SupervisorOff(off_controller)
        self.settings = settings
        self.clock = clock
        self.operator_contact = operator_contact
        self.logger = logger or logging.getLogger(__name__)

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def is_on(self) -> bool:
        return isinstance(self._state, SupervisorOn)

    @property
    def active_user_id(self) -> Optional[int]:
        if isinstance(self._state, SupervisorOn):
            return self._state.session.user_id
        return None

    def handle_request(self, request: UserRequest, user: LedgerUser) -> OutgoingMessage:
        """
        Answers one inbound request from a registered user.
        """
        if request.kind is RequestKind.TURN_ON:
            text = self.request_turn_on(user, user.balance, request.chat_ref)
        else:
            text = self.status(user, user.balance)
        return OutgoingMessage(
            chat_ref=request.chat_ref,
            text=text,
            reply_to=request.message_ref,
            offer_buttons=True,
        )

    def status(self, user: LedgerUser, external_balance: Decimal) -> str:
        """
        Describes the appliance to the requester.

        The active user's balance and cost are only shown to the active user.
        """
        state = self._state
        if isinstance(state, SupervisorOff):
            return f"A secadora está livre! Seu saldo: {format_reais(external_balance)}."

        session = state.session
        elapsed = format_elapsed(session.elapsed_s(self.clock()))
        if session.user_id != user.id:
            return f"{session.user_name} está usando a secadora há: {elapsed}."

        power_w = session.last_power_w
        try:
            power_w = state.controller.read().power_w
        except (TransportIOError, ProtocolError) as e:
            self.logger.warning(f"Live power read for status failed: {e}")
        power_text = f"{power_w:.1f} W" if power_w is not None else "indisponível"
        return (
            f"Você está usando a secadora há: {elapsed}.\n"
            f"Consumo: {format_kwh(session.total_billed_kwh)}, "
            f"custo: {format_reais(session.total_billed_reais)}.\n"
            f"Saldo restante: {format_reais(session.balance_reais)}.\n"
            f"Potência atual: {power_text}."
        )

    def request_turn_on(self, user: LedgerUser, balance: Decimal, chat_ref: Optional[int] = None) -> str:
        """
        Turns the appliance on for a user if it is free and the balance allows it.

        Returns:
            The reply text. Hardware failures are reported generically.
        """
        state = self._state
        if isinstance(state, SupervisorOn):
            session = state.session
            if session.user_id == user.id:
                return "Você já está usando a secadora."
            elapsed = format_elapsed(session.elapsed_s(self.clock()))
            return f"{session.user_name} está usando a secadora há: {elapsed}."

        try:
            on_controller, session = billing.start_session(
                user, balance, chat_ref if chat_ref is not None else user.id,
                state.controller, self.settings, self.clock,
            )
        except TurnOnRejected as e:
            return e.message
        except TurnOnError as e:
            self.logger.error(f"Hardware error turning on for user {user.id}: {e.cause!r}", exc_info=e.cause)
            self._state = SupervisorOff(e.off_state)
            return self.hardware_error_text("ao ligar a secadora")

        self._state = SupervisorOn(on_controller, session)
        return f"Ligada, você tem {format_reais(session.balance_reais)}."

    def tick(self) -> TickOutcome:
        """
        Runs one billing evaluation. Returns NoActiveSession when Off.
        """
        state = self._state
        if isinstance(state, SupervisorOff):
            return NoActiveSession()
        self._state, outcome = billing.tick(state.session, state.controller, self.settings, self.clock)
        return outcome

    def set_balance(self, new_balance: Decimal) -> None:
        """
        Stores the balance persisted by the ledger into the active session.

        Raises:
            IllegalStateError: If no session is active.
        """
        state = self._state
        if not isinstance(state, SupervisorOn):
            raise IllegalStateError("set_balance called with no active session")
        state.session.set_balance(new_balance)

    def emergency_stop(self) -> Optional[SessionStats]:
        """
        Forces the appliance Off whatever the current state. Never raises for
        relay failures; they are logged.

        Returns:
            The final stats of the interrupted session, if there was one.
        """
        state = self._state
        if isinstance(state, SupervisorOn):
            self.logger.warning(f"Emergency stop during session of user {state.session.user_id}")
            stats = state.session.stats(self.clock())
            self._state = SupervisorOff(state.controller.turn_off())
            return stats
        state.controller.ensure_off()
        return None

    def hardware_error_text(self, action: str) -> str:
        return f"Erro de hardware {action} :(, fale com {self.operator_contact}."

    def describe_outcome(self, outcome: TickOutcome) -> Optional[str]:
        """
        Returns the notification for the session owner, if the outcome needs one.
        """
        if isinstance(outcome, TurnedOffOutOfMoney):
            return "Seu saldo acabou e a secadora foi desligada.\n" + self.describe_stats(outcome.stats)
        if isinstance(outcome, TurnedOffIdle):
            return "A secadora terminou e foi desligada.\n" + self.describe_stats(outcome.stats)
        if isinstance(outcome, SessionAborted):
            return (
                self.hardware_error_text("durante o uso, a secadora foi desligada") + "\n"
                + self.describe_stats(outcome.stats)
            )
        return None

    @staticmethod
    def describe_stats(stats: SessionStats) -> str:
        return (
            f"Tempo de uso: {format_elapsed(stats.elapsed_s)}, "
            f"consumo: {format_kwh(stats.total_kwh)}, "
            f"custo: {format_reais(stats.total_reais)}, "
            f"saldo: {format_reais(stats.balance_reais)}."
        )
