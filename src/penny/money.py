from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from penny.errors import ValidationError

CENTS = Decimal("0.01")


def parse_amount(raw: str | int | float | Decimal) -> Decimal:
    """Strip commas, quotes and a leading currency sign; return a Decimal rounded to cents."""
    if isinstance(raw, Decimal):
        value = raw
    elif isinstance(raw, (int, float)):
        value = Decimal(str(raw))
    else:
        text = str(raw).replace(",", "").replace('"', "").strip().lstrip("$").strip()
        try:
            value = Decimal(text)
        except InvalidOperation:
            raise ValidationError(f"Not a valid amount: {raw!r}") from None
    if not value.is_finite():
        raise ValidationError(f"Not a valid amount: {raw!r}")
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def format_amount(value: Decimal, symbol: str = "$") -> str:
    return f"{symbol}{value:,.2f}"
