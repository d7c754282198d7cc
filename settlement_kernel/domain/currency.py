"""
Currencies bills may be denominated in, with their ISO 4217 minor units.

Money never leaves a service with more decimal places than its currency
allows: installment shares are truncated to the minor unit and the
remainder is carried on the last installment.
"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import ClassVar


@dataclass(frozen=True)
class CurrencyInfo:
    code: str
    decimal_places: int
    name: str

    @property
    def minor_unit(self) -> Decimal:
        """0.01 for a two-decimal currency, 1 for a zero-decimal one."""
        return Decimal(1).scaleb(-self.decimal_places)

    def quantize_down(self, amount: Decimal) -> Decimal:
        return amount.quantize(self.minor_unit, rounding=ROUND_DOWN)


def _table(*rows: tuple[str, int, str]) -> dict[str, CurrencyInfo]:
    return {code: CurrencyInfo(code, places, name) for code, places, name in rows}


class CurrencyRegistry:
    """Lookup of supported currency codes."""

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = _table(
        ("KES", 2, "Kenyan Shilling"),
        ("NGN", 2, "Nigerian Naira"),
        ("GHS", 2, "Ghanaian Cedi"),
        ("TZS", 2, "Tanzanian Shilling"),
        ("ZAR", 2, "South African Rand"),
        ("UGX", 0, "Ugandan Shilling"),
        ("RWF", 0, "Rwandan Franc"),
        ("XOF", 0, "West African CFA Franc"),
        ("XAF", 0, "Central African CFA Franc"),
        ("USD", 2, "US Dollar"),
        ("EUR", 2, "Euro"),
        ("GBP", 2, "Pound Sterling"),
        ("JPY", 0, "Japanese Yen"),
        ("CHF", 2, "Swiss Franc"),
        ("BHD", 3, "Bahraini Dinar"),
        ("KWD", 3, "Kuwaiti Dinar"),
        ("OMR", 3, "Omani Rial"),
    )

    @staticmethod
    def _normalize(code: object) -> str | None:
        if not isinstance(code, str) or not code.strip():
            return None
        return code.strip().upper()

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        """Currency details, or None for an unknown or malformed code."""
        normalized = cls._normalize(code)
        return cls._CURRENCIES.get(normalized) if normalized else None

    @classmethod
    def validate(cls, code: str) -> str:
        """
        Return the upper-cased code.

        Raises:
            ValueError: malformed or unsupported code.
        """
        normalized = cls._normalize(code)
        if normalized is None or len(normalized) != 3 or not normalized.isalpha():
            raise ValueError(f"Invalid currency code: {code!r}")
        if normalized not in cls._CURRENCIES:
            raise ValueError(f"Unsupported currency code: {code!r}")
        return normalized
