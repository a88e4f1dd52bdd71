"""
Money value object shared by every campaign component.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Union


class CurrencyMismatchError(ValueError):
    """Raised when two Money values with different currencies are combined."""


@dataclass(frozen=True)
class Money:
    """
    Immutable monetary value with currency.

    Amounts are always Decimal, never float. Arithmetic and ordering between
    two Money values require the same currency; a mismatch is a programming
    error and raises CurrencyMismatchError. Negative amounts are allowed so
    that differences such as an overrun budget can be represented.
    """
    amount: Decimal
    currency: str

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            if isinstance(self.amount, float):
                object.__setattr__(self, 'amount', Decimal(str(self.amount)))
            else:
                object.__setattr__(self, 'amount', Decimal(self.amount))

        if not isinstance(self.currency, str) or not self.currency.strip():
            raise ValueError("Currency cannot be empty")
        object.__setattr__(self, 'currency', self.currency.strip().upper())

    @classmethod
    def zero(cls, currency: str) -> 'Money':
        return cls(Decimal("0"), currency)

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"

    def _check_currency(self, other: 'Money', operation: str) -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Cannot {operation} Money and {type(other).__name__}")
        if self.currency != other.currency:
            raise CurrencyMismatchError(
                f"Cannot {operation} money with different currencies: {self.currency} and {other.currency}"
            )

    def __add__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, multiplier: Union[Decimal, int]) -> 'Money':
        if isinstance(multiplier, float):
            multiplier = Decimal(str(multiplier))
        return Money(self.amount * multiplier, self.currency)

    __rmul__ = __mul__

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        return self.amount == 0

    def is_positive(self) -> bool:
        return self.amount > 0

    def min(self, other: 'Money') -> 'Money':
        """Return the smaller of two same-currency values."""
        return other if other < self else self

    def round(self, places: int = 2, rounding: str = ROUND_HALF_UP) -> 'Money':
        """Quantize to ``places`` decimal places, ROUND_HALF_UP unless told otherwise."""
        exponent = Decimal(1).scaleb(-places)
        return Money(self.amount.quantize(exponent, rounding=rounding), self.currency)
