"""Value objects for the order domain.

Immutable objects compared by value: money amounts, order notes
and normalized phone numbers.
"""

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Self

from ordercore.domain.base import ValueObject
from ordercore.domain.exceptions import (
    CurrencyMismatchError,
    InvalidOrderNoteError,
    NegativeMoneyError,
    ValidationFailedError,
)

DEFAULT_CURRENCY = "RON"


# ============================================================================
# Money Value Object
# ============================================================================


@dataclass(frozen=True)
class Money(ValueObject):
    """Represents monetary value with currency.

    Money is stored in the smallest currency unit (bani for RON)
    to avoid floating-point precision issues.

    Attributes:
        amount_cents: Amount in smallest currency unit.
        currency: ISO 4217 currency code.
    """

    amount_cents: int
    currency: str = DEFAULT_CURRENCY

    def __post_init__(self) -> None:
        """Validate money constraints."""
        if self.amount_cents < 0:
            raise NegativeMoneyError(self.amount_cents)
        object.__setattr__(self, "currency", self.currency.upper())

    @classmethod
    def zero(cls, currency: str = DEFAULT_CURRENCY) -> Self:
        """Create zero amount money.

        Args:
            currency: Currency code.

        Returns:
            Money with zero amount.
        """
        return cls(amount_cents=0, currency=currency)

    @classmethod
    def from_decimal(cls, amount: Decimal, currency: str = DEFAULT_CURRENCY) -> Self:
        """Create money from decimal amount.

        Args:
            amount: Decimal amount in major units (lei).
            currency: Currency code.

        Returns:
            Money instance.
        """
        cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        return cls(amount_cents=cents, currency=currency)

    @classmethod
    def from_float(cls, amount: float, currency: str = DEFAULT_CURRENCY) -> Self:
        """Create money from float amount.

        Args:
            amount: Float amount in major units.
            currency: Currency code.

        Returns:
            Money instance.
        """
        return cls.from_decimal(Decimal(str(amount)), currency)

    def to_decimal(self) -> Decimal:
        """Convert to decimal amount in major units.

        Returns:
            Decimal amount quantized to two places.
        """
        return (Decimal(self.amount_cents) / 100).quantize(Decimal("0.01"))

    def to_float(self) -> float:
        """Convert to float for JSON payloads."""
        return float(self.to_decimal())

    def __add__(self, other: "Money") -> "Money":
        """Add two money amounts.

        Raises:
            CurrencyMismatchError: If currencies don't match.
        """
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency, other.currency)
        return Money(
            amount_cents=self.amount_cents + other.amount_cents,
            currency=self.currency,
        )

    def __mul__(self, quantity: int) -> "Money":
        """Multiply money by quantity."""
        return Money(
            amount_cents=self.amount_cents * quantity,
            currency=self.currency,
        )

    def __rmul__(self, quantity: int) -> "Money":
        return self.__mul__(quantity)

    def divide(self, quantity: int) -> "Money":
        """Split an amount into a per-unit price, rounding half up.

        Args:
            quantity: Number of units (must be positive).

        Returns:
            Per-unit Money.
        """
        if quantity <= 0:
            return self
        unit = (Decimal(self.amount_cents) / quantity).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
        return Money(amount_cents=int(unit), currency=self.currency)

    def __str__(self) -> str:
        """Return formatted string representation (e.g., '149.99 RON')."""
        return f"{self.to_decimal():.2f} {self.currency}"


# ============================================================================
# Order Note
# ============================================================================


ORDER_NOTE_MAX_LINES = 2
ORDER_NOTE_MAX_LINE_LENGTH = 20


def normalize_order_note(note: str | None) -> str | None:
    """Validate and normalize an operator note.

    Notes are limited to two lines of twenty characters each. Each line
    is trimmed and a blank note becomes None.

    Args:
        note: Raw note text.

    Returns:
        Normalized note, or None if empty.

    Raises:
        InvalidOrderNoteError: If the note exceeds the limits.
    """
    if note is None:
        return None

    lines = [line.strip() for line in note.strip().splitlines()]
    if not any(lines):
        return None
    if len(lines) > ORDER_NOTE_MAX_LINES:
        raise InvalidOrderNoteError(
            f"at most {ORDER_NOTE_MAX_LINES} lines allowed, got {len(lines)}"
        )
    for number, line in enumerate(lines, start=1):
        if len(line) > ORDER_NOTE_MAX_LINE_LENGTH:
            raise InvalidOrderNoteError(
                f"line {number} has {len(line)} characters, "
                f"maximum is {ORDER_NOTE_MAX_LINE_LENGTH}"
            )
    return "\n".join(lines)


# ============================================================================
# Phone Numbers
# ============================================================================


_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: str) -> str:
    """Reduce a phone number to its digits.

    Customers are keyed by this form, so "0722 123 456" and
    "0722-123-456" resolve to the same customer.

    Raises:
        ValidationFailedError: If no digits remain.
    """
    digits = _NON_DIGITS.sub("", phone or "")
    if not digits:
        raise ValidationFailedError(
            f"Invalid phone number: {phone!r}",
            details={"field": "phone"},
        )
    return digits


def to_international_phone(phone: str, country_code: str = "40") -> str:
    """Convert a local phone number to +40XXXXXXXXX form.

    Args:
        phone: Phone number in any common local format.
        country_code: Country calling code without the plus sign.

    Returns:
        The number with a leading plus and country code.
    """
    digits = _NON_DIGITS.sub("", phone or "")
    if digits.startswith("0"):
        return f"+{country_code}{digits[1:]}"
    if digits.startswith(country_code):
        return f"+{digits}"
    return f"+{country_code}{digits}"


# ============================================================================
# Street Address
# ============================================================================


_STREET_NUMBER = re.compile(r"^(.+?)\s+(\d+.*)$")


@dataclass(frozen=True)
class StreetAddress(ValueObject):
    """Street and number split from a free-form address line."""

    street: str
    number: str

    @classmethod
    def parse(cls, address: str) -> Self:
        """Split "Strada Lalelelor 12 bl. A" into street and number.

        Addresses without a trailing number keep the whole line as street.
        """
        address = (address or "").strip()
        match = _STREET_NUMBER.match(address)
        if match:
            return cls(street=match.group(1).strip(), number=match.group(2).strip())
        return cls(street=address, number="")


def split_full_name(full_name: str) -> tuple[str, str]:
    """Split a full name into first and last name.

    The first word is the first name; the rest is the last name.
    """
    parts = (full_name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])
