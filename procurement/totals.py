"""
Order totals.

net   = sum of each line's explicit amount, or quantity * rate
vat   = net * vat_rate, rounded half-up to 2 dp
gross = net + vat, rounded half-up to 2 dp

Bad numeric input never raises: missing, non-numeric and non-finite values
all count as 0.
"""
import math
import re
from decimal import Decimal, ROUND_HALF_UP, localcontext
from typing import Any, Iterable

from models.purchase_order import LineInput, OrderLine, Totals

_QUANTIZE_PRECISION = 400


def to_number(value: Any) -> float:
    """Coerce *value* to a finite float, or 0.0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        cleaned = re.sub(r"[^\d.eE+\-]", "", str(value))
        try:
            number = float(cleaned)
        except ValueError:
            return 0.0
    return number if math.isfinite(number) else 0.0


def round_money(value: float) -> float:
    """Round half-up to 2 dp (not banker's rounding).  Non-finite values give 0."""
    if not math.isfinite(value):
        return 0.0
    # quantize needs every integer digit in the context; a float has at most ~310
    with localcontext() as ctx:
        ctx.prec = _QUANTIZE_PRECISION
        return float(Decimal(repr(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def exact_sum(values: Iterable[float]) -> float:
    """math.fsum, with an overflowing total counted as 0."""
    try:
        return math.fsum(values)
    except OverflowError:
        return 0.0


def _field(line: Any, *names: str) -> Any:
    for name in names:
        if isinstance(line, dict):
            if line.get(name) is not None:
                return line[name]
        elif getattr(line, name, None) is not None:
            return getattr(line, name)
    return None


def line_amount(line: Any) -> float:
    """Explicit amount when given, else quantity * rate.  Accepts models or dicts."""
    explicit = _field(line, "amount")
    if explicit is not None:
        return to_number(explicit)
    return to_number(to_number(_field(line, "quantity", "qty")) * to_number(_field(line, "rate", "unit_rate")))


def compute_totals(lines: Iterable[Any], vat_rate: Any) -> Totals:
    rate = to_number(vat_rate)
    # fsum is exact, so the result does not depend on line order
    net = exact_sum(line_amount(line) for line in lines)
    vat = round_money(net * rate)
    gross = round_money(net + vat)
    return Totals(net=net, vat=vat, gross=gross, vat_rate=rate)


def build_line(line: LineInput, default_cost_code: str = "") -> OrderLine:
    """Turn a submitted line into a stored OrderLine."""
    quantity = to_number(line.quantity)
    rate = to_number(line.rate)
    overridden = line.amount is not None
    amount = to_number(line.amount) if overridden else to_number(quantity * rate)
    return OrderLine(
        description=line.description.strip(),
        unit=(line.unit or "").strip() or "nr",
        quantity=quantity,
        rate=rate,
        amount=amount,
        amount_overridden=overridden,
        cost_code=(line.cost_code or "").strip() or default_cost_code,
    )


def format_money(value: Any, symbol: str = "£") -> str:
    """£1,234.50 style; negatives as -£12.00."""
    number = round_money(to_number(value))
    sign = "-" if number < 0 else ""
    return f"{sign}{symbol}{abs(number):,.2f}"
