"""Currency helpers: amounts are stored as integer cents, handled as Decimal."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")

# Upper bound for any single amount: one order total, item price or recharge.
MAX_AMOUNT = Decimal("1000000.00")


def parse_amount(value) -> Decimal:
    """
    Convert a request value (str / int / float / Decimal) to a Decimal with two places.

    Raises:
        ValueError: value is missing, not numeric, not finite, or above MAX_AMOUNT.
    """
    if value is None or isinstance(value, bool):
        raise ValueError("Amount is required")
    try:
        amount = Decimal(str(value))
        if not amount.is_finite():
            raise ValueError("Invalid amount format")
        if amount > MAX_AMOUNT:
            raise ValueError(f"Amount cannot exceed {MAX_AMOUNT}")
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError("Invalid amount format")


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def cents_to_number(cents: int) -> float:
    """JSON-friendly rendering (the frontend does arithmetic on these)."""
    return round(cents / 100, 2)
