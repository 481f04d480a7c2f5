from decimal import Decimal

import pytest

from dryer_control.communicator.base_communication import SerialTransport
from dryer_control.communicator.meter_communicator import PowerMeter
from dryer_control.config import BillingSettings
from dryer_control.controller import OffController
from dryer_control.device_simulator import SimulatedPZEM, SimulatedSwitch
from dryer_control.ledger import InMemoryLedger
from dryer_control.meters.protocols.pzem004t_protocol import PZEM004TProtocol
from dryer_control.supervisor import SessionSupervisor


class ManualClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start=0.0):
        self.now = float(start)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def switch():
    return SimulatedSwitch()


@pytest.fixture
def pzem(switch, clock):
    return SimulatedPZEM(config={"power_w": 1100.0}, switch=switch, clock=clock)


@pytest.fixture
def meter(pzem):
    meter = PowerMeter(SerialTransport(ser=pzem), PZEM004TProtocol())
    meter.connect()
    return meter


@pytest.fixture
def off_controller(meter, switch):
    return OffController(meter, switch)


@pytest.fixture
def settings():
    return BillingSettings()


@pytest.fixture
def supervisor(off_controller, settings, clock):
    return SessionSupervisor(off_controller, settings, clock=clock, operator_contact="@operador")


@pytest.fixture
def ledger():
    ledger = InMemoryLedger()
    ledger.add_user(1, "Alice", Decimal("10.00"))
    ledger.add_user(2, "Bruno", Decimal("0.50"))
    ledger.add_user(3, "Carla", Decimal("5.00"))
    return ledger
