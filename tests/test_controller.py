import pytest

from dryer_control.controller import OffController, OnController
from dryer_control.errors import (
    IllegalStateError,
    ResetVerificationError,
    TransportIOError,
    TurnOnError,
)


def test_each_state_only_exposes_its_operations():
    assert not hasattr(OffController, "read")
    assert not hasattr(OffController, "turn_off")
    assert not hasattr(OnController, "turn_on")


def test_turn_on_and_off(off_controller, switch, pzem):
    on = off_controller.turn_on()
    assert isinstance(on, OnController)
    assert switch.is_on
    assert on.energy_baseline_wh == 0
    assert on.read().power_w == pytest.approx(1100.0)

    off = on.turn_off()
    assert isinstance(off, OffController)
    assert not switch.is_on
    assert switch.history == [True, False]


def test_transitions_consume_the_old_state(off_controller):
    on = off_controller.turn_on()
    assert off_controller.spent
    with pytest.raises(IllegalStateError):
        off_controller.turn_on()

    on.turn_off()
    with pytest.raises(IllegalStateError):
        on.read()
    with pytest.raises(IllegalStateError):
        on.turn_off()


def test_relay_failure_returns_off_state(off_controller, switch):
    switch.fail_on = True
    with pytest.raises(TurnOnError) as excinfo:
        off_controller.turn_on()
    assert isinstance(excinfo.value.cause, TransportIOError)
    assert isinstance(excinfo.value.off_state, OffController)
    assert not switch.is_on

    switch.fail_on = False
    excinfo.value.off_state.turn_on()
    assert switch.is_on


def test_reset_failure_rolls_back_relay(off_controller, switch, pzem):
    pzem.energy_wh = 7.0
    pzem.fail_reset = True
    with pytest.raises(TurnOnError) as excinfo:
        off_controller.turn_on()
    assert isinstance(excinfo.value.cause, ResetVerificationError)
    assert not switch.is_on
    assert switch.history == [True, False]


def test_reset_failure_with_failed_rollback_is_logged(off_controller, switch, pzem, caplog):
    pzem.silent = True
    switch.fail_off = True
    with pytest.raises(TurnOnError) as excinfo:
        off_controller.turn_on()
    assert isinstance(excinfo.value.cause, TransportIOError)
    assert "may still be energized" in caplog.text


def test_turn_off_never_raises(off_controller, switch):
    on = off_controller.turn_on()
    switch.fail_off = True
    off = on.turn_off()
    assert isinstance(off, OffController)


def test_read_errors_keep_the_state(off_controller, pzem):
    on = off_controller.turn_on()
    pzem.silent = True
    with pytest.raises(TransportIOError):
        on.read()
    pzem.silent = False
    assert not on.spent
    on.read()
