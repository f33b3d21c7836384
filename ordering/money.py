"""
Fixed-point money and quantity helpers.

Amounts are Decimals paired with an ISO currency code. Percentages and splits
round ROUND_HALF_UP to the currency's minor unit; plain addition never rounds.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, ROUND_CEILING

from .constants import CURRENCY_MINOR_UNITS, max_item_qty, normalize_currency
from .exceptions import CurrencyMismatch


def minor_unit_exponent(currency: str) -> int:
    return CURRENCY_MINOR_UNITS.get(normalize_currency(currency), 2)


def _to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # repr() keeps 0.1 as 0.1.
        return Decimal(repr(value))
    return Decimal(str(value))


@dataclass(frozen=True)
class Money:
    amount: Decimal
    currency: str

    def __post_init__(self):
        object.__setattr__(self, 'amount', _to_decimal(self.amount))
        object.__setattr__(self, 'currency', normalize_currency(self.currency))

    @classmethod
    def zero(cls, currency):
        return cls(Decimal('0'), currency)

    @classmethod
    def sum(cls, values, currency):
        total = cls.zero(currency)
        for value in values:
            total = total.add(value)
        return total

    @property
    def quantum(self) -> Decimal:
        return Decimal(1).scaleb(-minor_unit_exponent(self.currency))

    def _check(self, other):
        if not isinstance(other, Money):
            raise TypeError(f'Expected Money, got {type(other).__name__}')
        if other.currency != self.currency:
            raise CurrencyMismatch(
                f'Cannot combine {self.currency} with {other.currency}',
                left=self.currency,
                right=other.currency,
            )

    def add(self, other):
        self._check(other)
        return Money(self.amount + other.amount, self.currency)

    def subtract(self, other):
        self._check(other)
        return Money(self.amount - other.amount, self.currency)

    def multiply(self, quantity):
        return Money(self.amount * _to_decimal(quantity), self.currency)

    def percentage(self, percent):
        """Return percent% of this amount, rounded half-up to minor units."""
        value = self.amount * _to_decimal(percent) / Decimal('100')
        return Money(value.quantize(self.quantum, rounding=ROUND_HALF_UP), self.currency)

    def rounded(self):
        return Money(self.amount.quantize(self.quantum, rounding=ROUND_HALF_UP), self.currency)

    def split_ceil(self, parts: int):
        """
        Ceiling division into ``parts`` shares at minor-unit precision.
        share * parts >= self and share * (parts - 1) < self for positive amounts.
        """
        if parts < 1:
            raise ValueError('parts must be >= 1')
        share = (self.amount / Decimal(parts)).quantize(self.quantum, rounding=ROUND_CEILING)
        return Money(share, self.currency)

    def ratio_to(self, other) -> Decimal:
        self._check(other)
        if other.amount == 0:
            raise ZeroDivisionError('ratio to zero amount')
        return self.amount / other.amount

    def is_non_negative(self) -> bool:
        return self.amount >= 0

    def clamp_non_negative(self):
        if self.is_non_negative():
            return self
        return Money.zero(self.currency)

    def __add__(self, other):
        return self.add(other)

    def __sub__(self, other):
        return self.subtract(other)

    def __lt__(self, other):
        self._check(other)
        return self.amount < other.amount

    def __le__(self, other):
        self._check(other)
        return self.amount <= other.amount

    def __gt__(self, other):
        self._check(other)
        return self.amount > other.amount

    def __ge__(self, other):
        self._check(other)
        return self.amount >= other.amount

    def __str__(self):
        return f'{self.rounded().amount} {self.currency}'


def clamp_quantity(quantity, upper=None) -> int:
    """Clamp into [1, MAX_ITEM_QTY]."""
    upper = upper if upper is not None else max_item_qty()
    quantity = int(quantity)
    if quantity < 1:
        return 1
    if quantity > upper:
        return upper
    return quantity
