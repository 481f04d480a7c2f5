"""
formatting.py

Text helpers for user-facing messages.
"""

from decimal import ROUND_HALF_UP, Decimal


def format_elapsed(total_seconds: float) -> str:
    """
    Formats a duration as "XhYmZs" (e.g. 4000 -> "1h6m40s").
    """
    total = max(0, int(total_seconds))
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours}h{minutes}m{seconds}s"


def format_reais(amount: Decimal) -> str:
    return f"R${Decimal(amount).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)}"


def format_kwh(amount: Decimal) -> str:
    return f"{Decimal(amount).quantize(Decimal('0.001'), rounding=ROUND_HALF_UP)} kWh"
