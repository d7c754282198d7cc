"""
Settlement Engines - Pure calculation layer.

Stateless, deterministic calculators used by the bill and deed services.
No I/O, no clock access, no persistence.
"""

from settlement_engines.installments import (
    QuarterLabel,
    build_installment_schedule,
    quarter_sequence,
)
from settlement_engines.pricing import implied_discount_rate, suggest_purchase_price
from settlement_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "QuarterLabel",
    "build_installment_schedule",
    "quarter_sequence",
    "implied_discount_rate",
    "suggest_purchase_price",
    "compute_input_fingerprint",
    "traced_engine",
]
