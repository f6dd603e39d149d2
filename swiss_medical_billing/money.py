from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
FIVE_CENTS = Decimal("0.05")


def round_to_step(value: Decimal, step: Decimal, rounding=ROUND_HALF_UP) -> Decimal:
    """Round ``value`` to the nearest ``step`` (e.g. 0.01 or 0.05)."""
    if step == 0:
        return value
    quant = (value / step).quantize(Decimal("1"), rounding=rounding)
    return (quant * step).quantize(step)


def swiss_round(value: Decimal) -> Decimal:
    """Round to 5 Rappen, the smallest coin in circulation."""
    return round_to_step(value, FIVE_CENTS).quantize(CENT)


def to_cents(value: Decimal) -> Decimal:
    return round_to_step(value, CENT)


def fmt_number(value: Decimal | int | float | None) -> str:
    """Plain decimal notation without exponent or trailing zeros."""
    if value is None:
        return "0"
    normalized = Decimal(str(value)).normalize()
    return format(normalized, "f")
