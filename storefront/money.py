from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

CENT = Decimal("0.01")


def parse_amount(text) -> Optional[Decimal]:
    """Parse a gateway amount such as ``"1000"``, ``"1000.0"`` or ``"1,000.0"``.

    Returns None for anything that is not a finite number.
    """
    if text is None or isinstance(text, bool):
        return None
    try:
        value = Decimal(str(text).strip().replace(",", ""))
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return value


def format_amount(value) -> str:
    # eSewa form fields: integral amounts without decimals, otherwise two places
    value = Decimal(value)
    if value == value.to_integral_value():
        return str(int(value))
    return str(value.quantize(CENT, rounding=ROUND_HALF_UP))


def round_half_up(value: Decimal) -> Decimal:
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
