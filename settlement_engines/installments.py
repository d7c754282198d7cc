"""
Module: settlement_engines.installments
Responsibility:
    Split an approved bill amount into N quarterly installments and label
    each with its fiscal quarter.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import settlement_kernel domain types.

Invariants enforced:
    - Decimal-only arithmetic.
    - Every installment but the last is ``amount / N`` truncated to the
      currency's minor unit; the last absorbs the remainder, so the
      installments always sum to ``amount`` exactly.
    - Quarter labels are consecutive and strictly increasing, wrapping
      Q4 -> Q1 with a year increment.

Failure modes:
    - ValueError for a non-positive count or amount, an unknown currency,
      or an unparseable quarter token.

Usage:
    from decimal import Decimal
    from settlement_engines.installments import build_installment_schedule

    schedule = build_installment_schedule(
        amount=Decimal("1000.00"),
        count=6,
        start_quarter="Q3 2025",
        currency="KES",
    )
    # Q3 2025, Q4 2025, Q1 2026, ... Q4 2026; amounts 166.66 x5 + 166.70
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal

from settlement_kernel.domain.bill import Installment
from settlement_kernel.domain.currency import CurrencyRegistry
from settlement_engines.tracer import traced_engine

_QUARTER_RE = re.compile(r"^Q([1-4])\s+(\d{4})$")


@dataclass(frozen=True, order=True)
class QuarterLabel:
    """
    A fiscal quarter such as ``Q3 2025``.

    Guarantees:
        - 1 <= quarter <= 4.
        - Ordering follows the calendar (year first, then quarter).
    """

    year: int
    quarter: int

    def __post_init__(self) -> None:
        if not 1 <= self.quarter <= 4:
            raise ValueError(f"quarter must be 1-4, got {self.quarter}")
        if self.year < 1:
            raise ValueError(f"year must be positive, got {self.year}")

    @classmethod
    def parse(cls, token: str) -> QuarterLabel:
        """Parse ``"Q<1-4> <YYYY>"``; surrounding whitespace is ignored."""
        if not isinstance(token, str):
            raise ValueError(f"Invalid quarter token: {token!r}")
        match = _QUARTER_RE.match(token.strip())
        if match is None:
            raise ValueError(f"Invalid quarter token: {token!r}")
        return cls(year=int(match.group(2)), quarter=int(match.group(1)))

    def next(self) -> QuarterLabel:
        if self.quarter == 4:
            return QuarterLabel(year=self.year + 1, quarter=1)
        return QuarterLabel(year=self.year, quarter=self.quarter + 1)

    def __str__(self) -> str:
        return f"Q{self.quarter} {self.year}"


def quarter_sequence(start: QuarterLabel, count: int) -> tuple[QuarterLabel, ...]:
    """``count`` consecutive quarters beginning at ``start``."""
    if count <= 0:
        raise ValueError(f"count must be positive, got {count}")
    labels = [start]
    while len(labels) < count:
        labels.append(labels[-1].next())
    return tuple(labels)


@traced_engine(
    "installments",
    "1.0",
    fingerprint_fields=("amount", "count", "start_quarter", "currency"),
)
def build_installment_schedule(
    *,
    amount: Decimal,
    count: int,
    start_quarter: str,
    currency: str,
) -> tuple[Installment, ...]:
    """Build the quarterly payment schedule for an approved bill."""
    if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
        raise ValueError(f"Installment count must be a positive integer, got {count!r}")
    if amount <= 0:
        raise ValueError(f"Amount must be positive, got {amount}")
    info = CurrencyRegistry.get_info(currency)
    if info is None:
        raise ValueError(f"Unknown currency: {currency!r}")

    labels = quarter_sequence(QuarterLabel.parse(start_quarter), count)
    share = info.quantize_down(amount / count)
    last = amount - share * (count - 1)

    return tuple(
        Installment(
            sequence=i + 1,
            quarter=str(label),
            amount=last if i == count - 1 else share,
        )
        for i, label in enumerate(labels)
    )
