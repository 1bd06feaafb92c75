"""Money helpers shared by the invoice, payment and vendor code paths."""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP


CENT = Decimal('0.01')
ZERO = Decimal('0.00')


def ensure_decimal(value, default='0.00'):
    """Return a Decimal instance for the given value."""
    if isinstance(value, Decimal):
        return value
    if value in (None, ''):
        return Decimal(default)
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return Decimal(default)


def quantize_money(value):
    return ensure_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percentage(part, whole):
    """``part / whole * 100`` rounded to cents, or zero when ``whole`` is not positive."""
    whole = ensure_decimal(whole)
    if whole <= 0:
        return ZERO
    return quantize_money(ensure_decimal(part) / whole * 100)


def format_money(amount, currency='Rs.'):
    return f'{currency} {quantize_money(amount):.2f}'
