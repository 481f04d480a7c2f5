from decimal import Decimal

from dryer_control.formatting import format_elapsed, format_kwh, format_reais


def test_format_elapsed():
    assert format_elapsed(4000) == "1h6m40s"
    assert format_elapsed(0) == "0h0m0s"
    assert format_elapsed(59.9) == "0h0m59s"


def test_format_money_and_energy():
    assert format_reais(Decimal("1.205")) == "R$1.21"
    assert format_reais(Decimal("0")) == "R$0.00"
    assert format_kwh(Decimal("1.1")) == "1.100 kWh"
