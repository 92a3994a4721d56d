"""
Money Module

Fixed-point currency value stored as an integer count of minor units (cents).
NEVER uses float arithmetic for balances; floats accepted on input are
converted through their decimal string representation before rounding.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from dataclasses import dataclass
from typing import Any, Union

from .errors import InvalidAmount, NonPositiveAmount, Underflow

MINOR_UNITS = 100
_CENT = Decimal('0.01')


@dataclass(frozen=True, order=True)
class Money:
    """
    Immutable money value in cents.
    Instances may be negative only when a caller explicitly allowed underflow.
    """
    cents: int

    def __post_init__(self):
        if isinstance(self.cents, bool) or not isinstance(self.cents, int):
            raise TypeError("Money must be built from an integer number of cents")

    @classmethod
    def zero(cls) -> 'Money':
        return cls(0)

    @classmethod
    def from_cents(cls, cents: int) -> 'Money':
        return cls(cents)

    @classmethod
    def from_decimal(cls, value: Union[Decimal, str, int]) -> 'Money':
        """Build from a stored decimal value (zero and negatives allowed)"""
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            raise InvalidAmount(f"Invalid amount: {value!r}")
        if not amount.is_finite():
            raise InvalidAmount(f"Invalid amount: {value!r}")
        return cls(_to_cents(amount))

    @classmethod
    def parse(cls, value: Any) -> 'Money':
        """
        Parse a new monetary instruction.

        Accepts numbers or text. Text has thousands separators stripped and is
        trimmed. The result must be finite and strictly positive, and is
        rounded half away from zero to the nearest cent.

        Raises:
            InvalidAmount: missing, malformed or non-finite input
            NonPositiveAmount: zero or negative input
        """
        if value is None:
            raise InvalidAmount("Amount is required")
        if isinstance(value, bool):
            raise InvalidAmount("Invalid amount")

        if isinstance(value, Money):
            amount = value.to_decimal()
        elif isinstance(value, Decimal):
            amount = value
        elif isinstance(value, (int, float)):
            amount = Decimal(str(value))
        else:
            text = str(value).replace(',', '').strip()
            if not text:
                raise InvalidAmount("Invalid amount")
            try:
                amount = Decimal(text)
            except InvalidOperation:
                raise InvalidAmount("Invalid amount")

        if not amount.is_finite():
            raise InvalidAmount("Invalid amount")
        if amount <= 0:
            raise NonPositiveAmount("Amount must be greater than zero")

        cents = _to_cents(amount)
        if cents <= 0:
            raise NonPositiveAmount("Amount must be greater than zero")
        return cls(cents)

    def __add__(self, other: 'Money') -> 'Money':
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self.cents + other.cents)

    def __sub__(self, other: 'Money') -> 'Money':
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self.cents - other.cents)

    def add(self, other: 'Money') -> 'Money':
        return self + other

    def subtract(self, other: 'Money', allow_underflow: bool = False) -> 'Money':
        """Subtract, raising Underflow on a negative result unless allowed"""
        result = self - other
        if result.cents < 0 and not allow_underflow:
            raise Underflow(f"Cannot subtract {other.format()} from {self.format()}")
        return result

    def is_zero(self) -> bool:
        return self.cents == 0

    def is_positive(self) -> bool:
        return self.cents > 0

    def is_negative(self) -> bool:
        return self.cents < 0

    def to_decimal(self) -> Decimal:
        return (Decimal(self.cents) / MINOR_UNITS).quantize(_CENT)

    def format(self) -> str:
        """Fixed two-decimal string, e.g. ``"1234.56"``"""
        return f"{self.to_decimal():.2f}"

    def __str__(self) -> str:
        return self.format()


def _to_cents(amount: Decimal) -> int:
    # ROUND_HALF_UP on Decimal rounds half away from zero
    try:
        return int((amount * MINOR_UNITS).quantize(Decimal('1'), rounding=ROUND_HALF_UP))
    except InvalidOperation:
        raise InvalidAmount(f"Amount out of range: {amount}")
