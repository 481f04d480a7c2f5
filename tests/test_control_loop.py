import queue
import threading
from decimal import Decimal

import pytest

from dryer_control.control_loop import ControlLoop, offer
from dryer_control.errors import LedgerWriteFailed
from dryer_control.models import (
    DiscountConsumed,
    NoActiveSession,
    RequestKind,
    TurnedOffOutOfMoney,
    UserRequest,
)


@pytest.fixture
def loop(supervisor, ledger):
    return ControlLoop(supervisor, ledger, queue.Queue(maxsize=50), queue.Queue(maxsize=50),
                       request_wait_s=0.0)


def drain(q):
    items = []
    while not q.empty():
        items.append(q.get_nowait())
    return items


def turn_on(loop, user_id=1):
    loop.handle_request(UserRequest(user_id=user_id, chat_ref=user_id, kind=RequestKind.TURN_ON))


def test_offer_drops_when_full():
    q = queue.Queue(maxsize=1)
    assert offer(q, "a")
    assert not offer(q, "b")
    assert q.get_nowait() == "a"


def test_unregistered_user(loop):
    loop.handle_request(UserRequest(user_id=77, chat_ref=5, kind=RequestKind.STATUS, message_ref=3))
    (message,) = drain(loop.outbox)
    assert message.chat_ref == 5
    assert message.reply_to == 3
    assert "77" in message.text
    assert "@operador" in message.text


def test_run_once_handles_request_then_ticks(loop):
    loop.requests.put(UserRequest(user_id=1, chat_ref=1, kind=RequestKind.STATUS))
    outcome = loop.run_once()
    assert isinstance(outcome, NoActiveSession)
    (message,) = drain(loop.outbox)
    assert message.text.startswith("A secadora está livre!")


def test_debits_are_persisted(loop, ledger, clock):
    turn_on(loop)
    drain(loop.outbox)
    debited = Decimal(0)
    for _ in range(30):
        clock.advance(10)
        outcome = loop.handle_tick()
        if isinstance(outcome, DiscountConsumed):
            debited += outcome.delta_reais
    assert debited > 0
    assert abs(ledger.get_user(1).balance - (Decimal("10.00") - debited)) < Decimal("1e-20")
    assert loop.supervisor.state.session.balance_reais == ledger.get_user(1).balance


def test_out_of_money_notifies_owner(loop, ledger, clock, switch):
    ledger.add_user(4, "Davi", Decimal("1.02"))
    turn_on(loop, user_id=4)
    drain(loop.outbox)
    outcome = None
    for _ in range(400):
        clock.advance(10)
        outcome = loop.handle_tick()
        if isinstance(outcome, TurnedOffOutOfMoney):
            break
    assert isinstance(outcome, TurnedOffOutOfMoney)
    assert not switch.is_on
    assert ledger.get_user(4).balance <= Decimal("0.001")
    (message,) = drain(loop.outbox)
    assert message.chat_ref == 4
    assert message.text.startswith("Seu saldo acabou")


def test_ledger_failure_stops_the_dryer(loop, ledger, clock, switch):
    turn_on(loop)
    drain(loop.outbox)
    ledger.fail_writes = True
    with pytest.raises(LedgerWriteFailed):
        for _ in range(10):
            clock.advance(10)
            loop.handle_tick()
    assert not loop.supervisor.is_on
    assert not switch.is_on
    (message,) = drain(loop.outbox)
    assert message.text.startswith("Erro de hardware")


def test_run_stops_and_leaves_relay_off(loop, switch):
    turn_on(loop)
    stop = threading.Event()
    stop.set()
    loop.run(stop)
    assert not switch.is_on
