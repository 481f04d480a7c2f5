from decimal import Decimal

import pytest

from dryer_control import billing
from dryer_control.billing import BillingSession, SupervisorOff, SupervisorOn
from dryer_control.errors import TurnOnRejected
from dryer_control.models import (
    DiscountConsumed,
    LedgerUser,
    NotEnoughToDiscountYet,
    ReadFailed,
    SessionAborted,
    TurnedOffIdle,
    TurnedOffOutOfMoney,
)

ALICE = LedgerUser(id=1, name="Alice", balance=Decimal("100"))


def start(off_controller, settings, clock, balance=Decimal("100")):
    return billing.start_session(ALICE, balance, 10, off_controller, settings, clock)


def test_start_session_rejects_low_balance(off_controller, settings, clock, switch):
    with pytest.raises(TurnOnRejected) as excinfo:
        start(off_controller, settings, clock, balance=Decimal("1.0"))
    assert "R$1.00" in excinfo.value.message
    assert not switch.history
    assert not off_controller.spent


def test_start_session(off_controller, settings, clock):
    clock.advance(42)
    controller, session = start(off_controller, settings, clock)
    assert session.session_start == session.last_tick_time == 42
    assert session.balance_reais == Decimal("100")
    assert session.total_billed_kwh == 0
    assert session.unbilled_energy_joules == 0.0
    assert session.chat_ref == 10


def test_worked_example_one_hour_at_1100w(off_controller, settings, clock, pzem):
    controller, session = start(off_controller, settings, clock)
    debits = []
    previous_kwh = Decimal(0)
    for _ in range(360):
        clock.advance(10)
        state, outcome = billing.tick(session, controller, settings, clock)
        assert isinstance(state, SupervisorOn)
        assert session.total_billed_kwh >= previous_kwh
        previous_kwh = session.total_billed_kwh
        if isinstance(outcome, DiscountConsumed):
            assert outcome.delta_reais >= settings.min_billable_reais
            assert outcome.delta_reais == outcome.delta_kwh * settings.price_per_kwh
            debits.append(outcome)
        else:
            assert isinstance(outcome, NotEnoughToDiscountYet)

    assert len(debits) == 120
    assert float(session.total_billed_kwh) == pytest.approx(1.1, abs=1e-9)
    assert float(session.total_billed_reais) == pytest.approx(1.21, abs=1e-9)
    assert float(sum(d.delta_reais for d in debits)) == pytest.approx(1.21, abs=1e-9)


def test_idle_turn_off(off_controller, settings, clock, pzem, switch):
    controller, session = start(off_controller, settings, clock)
    pzem.power_w = 0.0
    outcome = None
    for _ in range(31):
        clock.advance(10)
        state, outcome = billing.tick(session, controller, settings, clock)
    assert isinstance(outcome, TurnedOffIdle)
    assert isinstance(state, SupervisorOff)
    assert outcome.stats.elapsed_s == 310
    assert not switch.is_on


def test_power_resuming_resets_idle_timer(off_controller, settings, clock, pzem):
    controller, session = start(off_controller, settings, clock)
    pzem.power_w = 0.0
    for _ in range(20):
        clock.advance(10)
        billing.tick(session, controller, settings, clock)
    pzem.power_w = 800.0
    clock.advance(10)
    billing.tick(session, controller, settings, clock)
    assert session.zero_power_since is None
    pzem.power_w = 0.0
    for _ in range(20):
        clock.advance(10)
        state, outcome = billing.tick(session, controller, settings, clock)
        assert isinstance(state, SupervisorOn)


def test_out_of_money(off_controller, settings, clock, switch):
    controller, session = start(off_controller, settings, clock)
    session.set_balance(Decimal("0.001"))
    clock.advance(10)
    state, outcome = billing.tick(session, controller, settings, clock)
    assert isinstance(outcome, TurnedOffOutOfMoney)
    assert isinstance(state, SupervisorOff)
    assert not switch.is_on


def test_read_failure_keeps_session(off_controller, settings, clock, pzem):
    controller, session = start(off_controller, settings, clock)
    pzem.silent = True
    clock.advance(10)
    state, outcome = billing.tick(session, controller, settings, clock)
    assert isinstance(outcome, ReadFailed)
    assert isinstance(state, SupervisorOn)

    # only the interval since the failed tick is integrated, at the new power
    pzem.silent = False
    pzem.power_w = 2000.0
    clock.advance(5)
    state, outcome = billing.tick(session, controller, settings, clock)
    assert isinstance(outcome, NotEnoughToDiscountYet)
    assert session.unbilled_energy_joules == pytest.approx(10000.0)
    assert session.last_good_read_time == 15


def test_meter_outage_ends_session(off_controller, settings, clock, pzem, switch):
    controller, session = start(off_controller, settings, clock)
    pzem.silent = True
    outcomes = []
    for _ in range(12):
        clock.advance(5)
        state, outcome = billing.tick(session, controller, settings, clock)
        outcomes.append(outcome)
    assert all(isinstance(o, ReadFailed) for o in outcomes[:-1])
    assert isinstance(outcomes[-1], SessionAborted)
    assert "60s" in outcomes[-1].reason
    assert isinstance(state, SupervisorOff)
    assert not switch.is_on
    assert session.total_billed_kwh == 0
    assert session.unbilled_energy_joules == 0.0


def test_good_read_restarts_outage_window(off_controller, settings, clock, pzem):
    controller, session = start(off_controller, settings, clock)
    for _ in range(3):
        pzem.silent = True
        for _ in range(11):
            clock.advance(5)
            state, _ = billing.tick(session, controller, settings, clock)
        pzem.silent = False
        clock.advance(5)
        state, _ = billing.tick(session, controller, settings, clock)
        assert isinstance(state, SupervisorOn)


def test_clock_going_backwards_aborts(off_controller, settings, clock, switch):
    controller, session = start(off_controller, settings, clock)
    clock.advance(-5)
    state, outcome = billing.tick(session, controller, settings, clock)
    assert isinstance(outcome, SessionAborted)
    assert isinstance(state, SupervisorOff)
    assert not switch.is_on


def test_set_balance_clamps_at_zero():
    session = BillingSession(user_id=1, user_name="Alice", chat_ref=1, balance_reais=Decimal("3"),
                             session_start=0.0, last_tick_time=0.0)
    session.set_balance(Decimal("-0.5"))
    assert session.balance_reais == 0
