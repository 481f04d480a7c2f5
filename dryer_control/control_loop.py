"""
control_loop.py

Single controlling loop for one appliance.

Each iteration pops at most one pending user request (waiting at most
request_wait_s), answers it, then always runs exactly one tick, so ticks keep
running under request load. Only the loop thread touches the supervisor.
A debit produced by a tick is written to the ledger before the iteration
ends; if that write fails the appliance is emergency-stopped and the failure
is re-raised as fatal.
"""

import logging
import queue
import threading
from typing import Optional

from dryer_control.errors import LedgerError, LedgerWriteFailed
from dryer_control.ledger import Ledger
from dryer_control.models import (
    SESSION_ENDING_OUTCOMES,
    DiscountConsumed,
    OutgoingMessage,
    TickOutcome,
    UserRequest,
)
from dryer_control.supervisor import SessionSupervisor

logger = logging.getLogger(__name__)


def offer(target: queue.Queue, item, description: str = "item") -> bool:
    """
    Enqueues without blocking. A full queue drops the item and logs it, so a
    producer's own loop is never stalled.

    Returns:
        True if the item was queued.
    """
    try:
        target.put_nowait(item)
        return True
    except queue.Full:
        logger.warning(f"Queue full, dropping {description}: {item!r}")
        return False


class ControlLoop:
    """
    Drives a SessionSupervisor from a request queue and a fixed tick cadence.
    """

    def __init__(self, supervisor: SessionSupervisor, ledger: Ledger,
                 requests: queue.Queue, outbox: queue.Queue,
                 request_wait_s: float = 5.0, logger: Optional[logging.Logger] = None):
        """
        Args:
            supervisor: The appliance supervisor; owned by this loop.
            ledger: Balance ledger used for lookups and debits.
            requests: Bounded queue fed by the chat receiver.
            outbox: Bounded queue drained by the chat sender.
            request_wait_s: Longest wait for a request before ticking.
            logger: Optional logger instance.
        """
        self.supervisor = supervisor
        self.ledger = ledger
        self.requests = requests
        self.outbox = outbox
        self.request_wait_s = request_wait_s
        self.logger = logger or logging.getLogger(__name__)

    def run(self, stop_event: threading.Event) -> None:
        """
        Runs until stop_event is set. The event is checked between iterations;
        an iteration in progress always completes.
        """
        self.logger.info("Control loop started")
        try:
            while not stop_event.is_set():
                self.run_once()
        finally:
            self.shutdown()
            self.logger.info("Control loop stopped")

    def run_once(self) -> TickOutcome:
        request = self._next_request()
        if request is not None:
            self.handle_request(request)
        return self.handle_tick()

    def _next_request(self) -> Optional[UserRequest]:
        try:
            return self.requests.get(timeout=self.request_wait_s)
        except queue.Empty:
            return None

    def handle_request(self, request: UserRequest) -> None:
        try:
            user = self.ledger.get_user(request.user_id)
        except LedgerError as e:
            self.logger.error(f"Ledger lookup failed for user {request.user_id}: {e}")
            self.send(OutgoingMessage(
                chat_ref=request.chat_ref,
                text=self.supervisor.hardware_error_text("ao consultar seu saldo"),
                reply_to=request.message_ref,
            ))
            return

        if user is None:
            self.send(OutgoingMessage(
                chat_ref=request.chat_ref,
                text=(
                    f"Você não está registrado. Envie essa mensagem para "
                    f"{self.supervisor.operator_contact} com o seu id: {request.user_id}"
                ),
                reply_to=request.message_ref,
            ))
            return

        self.send(self.supervisor.handle_request(request, user))

    def handle_tick(self) -> TickOutcome:
        outcome = self.supervisor.tick()
        if isinstance(outcome, DiscountConsumed):
            self._persist_debit(outcome)
        elif isinstance(outcome, SESSION_ENDING_OUTCOMES):
            text = self.supervisor.describe_outcome(outcome)
            self.logger.info(f"Session ended: {outcome!r}")
            if text:
                self.send(OutgoingMessage(chat_ref=outcome.stats.chat_ref, text=text, offer_buttons=True))
        return outcome

    def _persist_debit(self, outcome: DiscountConsumed) -> None:
        try:
            new_balance = self.ledger.debit(outcome.user_id, outcome.delta_reais)
        except LedgerError as e:
            self.logger.critical(
                f"Ledger debit of {outcome.delta_reais} for user {outcome.user_id} failed, "
                f"emergency stop: {e}"
            )
            stats = self.supervisor.emergency_stop()
            text = self.supervisor.hardware_error_text("ao registrar o consumo, a secadora foi desligada")
            if stats is not None:
                text += "\n" + self.supervisor.describe_stats(stats)
            self.send(OutgoingMessage(chat_ref=outcome.chat_ref, text=text))
            raise LedgerWriteFailed(outcome.user_id, e) from e
        self.supervisor.set_balance(new_balance)

    def send(self, message: OutgoingMessage) -> None:
        offer(self.outbox, message, "outgoing message")

    def shutdown(self) -> None:
        """Leaves the appliance Off."""
        stats = self.supervisor.emergency_stop()
        if stats is not None:
            self.send(OutgoingMessage(
                chat_ref=stats.chat_ref,
                text="A secadora foi desligada pelo sistema.\n" + self.supervisor.describe_stats(stats),
            ))
