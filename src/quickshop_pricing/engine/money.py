"""
Integer money helpers.

Every amount handled by the engine is an int in minor units (agorot, cents).
Percentages are carried as Decimal so that 12.5% stays exact.
"""
from decimal import Decimal, ROUND_HALF_UP, ROUND_FLOOR
from typing import Sequence

HUNDRED = Decimal(100)


def to_decimal(value) -> Decimal:
    """Convert an int/float/str percentage to an exact Decimal."""
    if isinstance(value, Decimal):
        return value
    # str() first so 0.1 becomes Decimal('0.1'), not its binary expansion
    return Decimal(str(value))


def round_half_up(value: Decimal) -> int:
    """Round a Decimal to the nearest minor unit, halves away from zero."""
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def percent_of(amount: int, percent) -> int:
    """Return `percent`% of `amount`, rounded half-up to the minor unit."""
    return round_half_up(Decimal(amount) * to_decimal(percent) / HUNDRED)


def scale(amount: int, numerator: int, denominator: int) -> int:
    """Return amount * numerator / denominator, rounded half-up."""
    return round_half_up(Decimal(amount) * numerator / Decimal(denominator))


def split_evenly(total: int, parts: int) -> list[int]:
    """
    Split `total` into `parts` integer values that differ by at most one.

    The extra minor units go to the first parts, so the list is non-increasing.
    """
    if parts <= 0:
        return []
    base, remainder = divmod(total, parts)
    return [base + 1 if i < remainder else base for i in range(parts)]


def allocate(amount: int, weights: Sequence[int], caps: Sequence[int]) -> list[int]:
    """
    Distribute `amount` across slots proportionally to `weights`.

    Shares are floored from the uncapped weights, then each one is clamped
    to its slot's cap. Only the minor units lost to flooring are handed out
    again, to the first slot (in the given order) that still has capacity.
    Whatever a cap cuts off is dropped, never moved to another slot, so the
    result may sum to less than `amount`.
    """
    if len(weights) != len(caps):
        raise ValueError("weights and caps must have the same length")
    if amount <= 0:
        return [0] * len(caps)

    total_weight = sum(weights)
    if total_weight > 0:
        floored = [
            int((Decimal(amount) * w / total_weight).to_integral_value(rounding=ROUND_FLOOR))
            for w in weights
        ]
    else:
        floored = [0] * len(caps)
    shares = [min(cap, share) for cap, share in zip(caps, floored)]

    left = amount - sum(floored)
    for i, cap in enumerate(caps):
        if left <= 0:
            break
        room = cap - shares[i]
        if room > 0:
            take = min(room, left)
            shares[i] += take
            left -= take

    return shares
