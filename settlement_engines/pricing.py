"""
Module: settlement_engines.pricing
Responsibility:
    Offer arithmetic between a bill's face amount, the SPV's discount rate
    and the purchase price.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Failure modes:
    - ValueError for a non-positive amount, a rate outside [0, 100], a
      purchase price above face value, or an unknown currency.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from settlement_kernel.domain.currency import CurrencyRegistry
from settlement_engines.tracer import traced_engine

HUNDRED = Decimal("100")
RATE_QUANTUM = Decimal("0.0001")


def _check_rate(discount_rate: Decimal) -> None:
    if discount_rate < 0 or discount_rate > HUNDRED:
        raise ValueError(f"Discount rate must be within [0, 100], got {discount_rate}")


@traced_engine("pricing", "1.0", fingerprint_fields=("amount", "discount_rate", "currency"))
def suggest_purchase_price(
    *,
    amount: Decimal,
    discount_rate: Decimal,
    currency: str,
) -> Decimal:
    """``amount * (1 - rate / 100)`` rounded half-up to the currency's minor unit."""
    if amount <= 0:
        raise ValueError(f"Amount must be positive, got {amount}")
    _check_rate(discount_rate)
    info = CurrencyRegistry.get_info(currency)
    if info is None:
        raise ValueError(f"Unknown currency: {currency!r}")
    price = amount * (1 - discount_rate / HUNDRED)
    return price.quantize(info.minor_unit, rounding=ROUND_HALF_UP)


def implied_discount_rate(*, amount: Decimal, purchase_price: Decimal) -> Decimal:
    """Discount rate (percent, 4 dp) implied by paying ``purchase_price`` for ``amount``."""
    if amount <= 0:
        raise ValueError(f"Amount must be positive, got {amount}")
    if purchase_price < 0 or purchase_price > amount:
        raise ValueError(
            f"Purchase price must be within [0, {amount}], got {purchase_price}"
        )
    rate = (amount - purchase_price) / amount * HUNDRED
    return rate.quantize(RATE_QUANTUM, rounding=ROUND_HALF_UP)
