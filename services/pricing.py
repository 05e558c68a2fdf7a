# services/pricing.py
from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import Iterable, List, Optional, Sequence

from errors import ValidationError

CENTS = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass
class RangeSpec:
    """A proposed or stored consumption tier; `max` None = open-ended top tier."""
    min: Optional[int]
    max: Optional[int]
    price: Optional[Decimal]
    id: Optional[int] = None

    @classmethod
    def from_model(cls, r) -> "RangeSpec":
        return cls(
            min=r.min_consumption,
            max=r.max_consumption,
            price=Decimal(str(r.price_per_unit)),
            id=r.id,
        )

    def label(self) -> str:
        top = "∞" if self.max is None else str(self.max)
        return f"[{self.min}, {top}]"


# ---------- Range validation ----------

def _check_fields(ranges: Sequence[RangeSpec]) -> None:
    if not ranges:
        raise ValidationError("at least one range is required")
    for r in ranges:
        if r.min is None or r.price is None:
            raise ValidationError("every range needs a minimum consumption and a price")
        if r.min < 0 or r.price < 0 or (r.max is not None and r.max < 0):
            raise ValidationError(f"range {r.label()} has negative values")
        if r.max is not None and r.min >= r.max:
            raise ValidationError(f"range {r.label()}: minimum must be lower than maximum")

    open_ended = [r for r in ranges if r.max is None]
    if len(open_ended) > 1:
        raise ValidationError("only the highest range may omit its maximum")
    if open_ended:
        top = open_ended[0]
        if any(r is not top and r.min >= top.min for r in ranges):
            raise ValidationError("only the highest range may omit its maximum")


def _check_duplicates(ranges: Sequence[RangeSpec]) -> None:
    seen = set()
    for r in ranges:
        key = (r.min, r.max)
        if key in seen:
            raise ValidationError(f"duplicate range {r.label()}")
        seen.add(key)

    maxima = {r.max for r in ranges if r.max is not None}
    for r in ranges:
        if r.min in maxima:
            raise ValidationError(f"range {r.label()} starts where another range ends")


def _check_contiguity(ranges: Sequence[RangeSpec]) -> None:
    ordered = sorted(ranges, key=lambda r: r.min)
    for prev, nxt in zip(ordered, ordered[1:]):
        if prev.max is None or nxt.min <= prev.max:
            raise ValidationError(f"ranges {prev.label()} and {nxt.label()} overlap")
        if nxt.min != prev.max + 1:
            raise ValidationError(f"gap between ranges {prev.label()} and {nxt.label()}")


def validate_ranges(ranges: Iterable[RangeSpec], contiguous: bool = True) -> List[RangeSpec]:
    """
    Validate a set of tiers and return it sorted by minimum consumption.

    Rules: min/price present, nothing negative, min < max, only the highest tier
    may be open-ended, no duplicate (min, max), no min equal to another tier's max,
    and (when `contiguous`) each tier starts exactly one unit after the previous max.
    """
    items = list(ranges)
    _check_fields(items)
    _check_duplicates(items)
    if contiguous:
        _check_contiguity(items)
    return sorted(items, key=lambda r: r.min)


# ---------- Pricing ----------

def _contains(r: RangeSpec, units: int) -> bool:
    return units >= r.min and (r.max is None or units <= r.max)


def calculate_amount(consumption, ranges: Sequence[RangeSpec]) -> Decimal:
    """
    Price a consumption against tiers sorted by min.

    The first tier is a flat charge; any other tier multiplies the whole
    consumption by that tier's unit price. Tiers are matched on floor(consumption).
    """
    consumption = Decimal(str(consumption))
    if consumption < 0:
        raise ValidationError("consumption cannot be negative")
    if not ranges:
        raise ValidationError("tariff has no ranges defined")

    floored = int(consumption.to_integral_value(rounding=ROUND_FLOOR))
    first, last = ranges[0], ranges[-1]

    if _contains(first, floored):
        amount = Decimal(str(first.price))
    elif floored >= last.min:
        amount = consumption * Decimal(str(last.price))
    else:
        match = next((r for r in ranges if _contains(r, floored)), None)
        if match is None:
            raise ValidationError("consumption outside defined ranges")
        amount = consumption * Decimal(str(match.price))

    return to_money(amount)
