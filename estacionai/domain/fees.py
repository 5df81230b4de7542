from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from .errors import ValidationError

"""
Calculo de tarifa: funcion pura (entrada, ahora, tarifa) -> desglose.

Todo el dinero va en centavos (int). Decimal aparece solo en los bordes
(to_cents / from_cents), nunca float.
"""

FRACTION_MINUTES = 15
CENT = Decimal("0.01")

Amount = Union[Decimal, str, int]


@dataclass(frozen=True)
class FeeBreakdown:
    elapsed_minutes: int
    hours: int
    minutes: int
    fractions: int
    total: int  # centavos


def elapsed_minutes(entered_at: datetime, now: datetime) -> int:
    # reloj desfasado -> 0
    return max(0, (now - entered_at) // timedelta(minutes=1))


def calculate_fee(entered_at: datetime, now: datetime, hourly_rate: int, fraction_rate: int) -> FeeBreakdown:
    """
    hours * hourly_rate + fractions * fraction_rate, con fractions >= 1:
    todo vehiculo estacionado paga al menos una fraccion, aun con 0 minutos
    de resto.
    """
    total_minutes = elapsed_minutes(entered_at, now)
    hours, minutes = divmod(total_minutes, 60)
    fractions = max(1, -(-minutes // FRACTION_MINUTES))
    return FeeBreakdown(
        elapsed_minutes=total_minutes,
        hours=hours,
        minutes=minutes,
        fractions=fractions,
        total=hours * hourly_rate + fractions * fraction_rate,
    )


def to_cents(amount: Amount) -> int:
    if isinstance(amount, float):
        amount = repr(amount)
    try:
        value = Decimal(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"monto invalido: {amount!r}", amount=str(amount))
    if not value.is_finite():
        raise ValidationError(f"monto invalido: {amount!r}", amount=str(amount))
    return int((value / CENT).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) * CENT).quantize(CENT)
