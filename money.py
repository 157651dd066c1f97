from decimal import ROUND_HALF_UP, Decimal, InvalidOperation


def _to_decimal(value: str) -> Decimal:
    clean = value.strip()
    for token in ("SEK", "kr", " ", " "):
        clean = clean.replace(token, "")
    clean = clean.replace("−", "-").replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    return amount


def _round_cents(amount: Decimal) -> int:
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_amount(value: str, *, allow_negative: bool = False) -> int:
    """Parse a currency amount such as ``"1 234,50 kr"`` into cents."""
    cents = _round_cents(_to_decimal(value) * 100)
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def coerce_cents(value: object, *, allow_negative: bool = False) -> int:
    """Best-effort conversion of a cent amount to int; anything unparseable is 0.

    Every input is read in cents: ``500``, ``500.0`` and ``"500"`` are all 500.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        cents = value
    else:
        try:
            cents = _round_cents(_to_decimal(str(value)))
        except ValueError:
            return 0
    if cents < 0 and not allow_negative:
        return 0
    return cents


def round_div(numerator: int, denominator: int) -> int:
    """Integer division rounded half-up, used for averages of cent amounts."""
    if denominator == 0:
        return 0
    return _round_cents(Decimal(numerator) / Decimal(denominator))
