"""
Monetary Arithmetic

Decimal helpers shared by every calculation module. All cash rows are
fixed-length sequences of Decimal amounts quantized to the cent.
"""

from decimal import Decimal, ROUND_DOWN, ROUND_HALF_EVEN
from typing import Iterable, List, Sequence, Tuple

ZERO = Decimal("0")
ONE = Decimal("1")
CENT = Decimal("0.01")
MONTHS_PER_YEAR = Decimal("12")

Row = Tuple[Decimal, ...]


def to_decimal(value) -> Decimal:
    """Convert a number to Decimal, going through str for floats."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def money(value, rounding: str = ROUND_HALF_EVEN) -> Decimal:
    """Quantize an amount to the cent."""
    return to_decimal(value).quantize(CENT, rounding=rounding)


def zeros(n: int) -> List[Decimal]:
    """Build a mutable all-zero row of length n."""
    return [ZERO] * max(n, 0)


def row_sum(row: Iterable[Decimal]) -> Decimal:
    return sum(row, ZERO)


def cumulative(row: Sequence[Decimal]) -> List[Decimal]:
    """Running total of a row."""
    out = []
    running = ZERO
    for value in row:
        running += value
        out.append(running)
    return out


def add_rows(rows: Iterable[Sequence[Decimal]], horizon: int) -> List[Decimal]:
    """Element-wise sum of rows of equal length."""
    total = zeros(horizon)
    for row in rows:
        for t in range(horizon):
            total[t] += row[t]
    return total


def allocate(amount: Decimal, weights: Sequence[Decimal]) -> List[Decimal]:
    """
    Split a cent amount across weights without losing or creating cents.

    Each share is rounded down, then the leftover cents go to the largest
    fractional remainders (ties broken by position).

    Args:
        amount: Non-negative amount already quantized to the cent
        weights: Non-negative weights; zero-weight slots receive nothing

    Returns:
        Shares summing exactly to amount, or all zeros when every weight is 0
    """
    total = row_sum(weights)
    if amount <= 0 or total <= 0:
        return [ZERO] * len(weights)

    exact = [amount * w / total for w in weights]
    shares = [money(x, ROUND_DOWN) for x in exact]
    leftover = int(((amount - row_sum(shares)) / CENT).to_integral_value())

    order = sorted(
        (i for i, w in enumerate(weights) if w > 0),
        key=lambda i: (-(exact[i] - shares[i]), i),
    )
    for i in order[:leftover]:
        shares[i] += CENT

    return shares


def freeze(row: Iterable[Decimal]) -> Row:
    return tuple(row)


def to_floats(row: Iterable[Decimal]) -> List[float]:
    """Convert a row for JSON output."""
    return [float(value) for value in row]
