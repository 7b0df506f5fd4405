"""Unit conversion and minimum-unit rounding for leave quantities.

All arithmetic is done in ``Decimal`` hours. Ties round half up, so 4.5h
under a one-hour minimum unit becomes 5h.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from leave_ledger.exceptions import InvalidUnitError, ZeroDurationLineError
from leave_ledger.models.enums import LeaveUnit, MinUnit

if TYPE_CHECKING:
    from collections.abc import Iterable

DEFAULT_HOURS_PER_DAY = Decimal(8)

# Ledger quantities are stored with four decimal places.
_LEDGER_QUANTUM = Decimal("0.0001")


def to_decimal(value: Decimal | int | float | str) -> Decimal:
    """Convert a numeric value to Decimal without binary float artefacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def quantize_hours(hours: Decimal, quantum: Decimal = _LEDGER_QUANTUM) -> Decimal:
    """Quantize hours half-up to the given quantum."""
    return hours.quantize(quantum, rounding=ROUND_HALF_UP)


def normalize_to_hours(
    unit: LeaveUnit | str,
    quantity: Decimal | int | float,
    hours_per_day: Decimal | int = DEFAULT_HOURS_PER_DAY,
) -> Decimal:
    """Convert a quantity in day/half/hour units to hours. No rounding."""
    try:
        leave_unit = LeaveUnit(unit)
    except ValueError:
        raise InvalidUnitError(f"Unknown leave unit: {unit!r}") from None

    amount = to_decimal(quantity)
    day_hours = to_decimal(hours_per_day)
    if leave_unit == LeaveUnit.HOUR:
        return amount
    if leave_unit == LeaveUnit.HALF:
        return day_hours / 2 * amount
    return day_hours * amount


def min_unit_step(min_unit: MinUnit | str, hours_per_day: Decimal | int = DEFAULT_HOURS_PER_DAY) -> Decimal:
    """Return the size in hours of one minimum unit."""
    try:
        unit = MinUnit(min_unit)
    except ValueError:
        raise InvalidUnitError(f"Unknown minimum unit: {min_unit!r}") from None

    day_hours = to_decimal(hours_per_day)
    if unit == MinUnit.HOUR:
        return Decimal(1)
    if unit == MinUnit.HALF_DAY:
        return day_hours / 2
    return day_hours


def round_to_min_unit_hours(
    hours: Decimal | int | float,
    min_unit: MinUnit | str,
    hours_per_day: Decimal | int = DEFAULT_HOURS_PER_DAY,
) -> Decimal:
    """Round hours to the nearest multiple of the policy's minimum unit."""
    step = min_unit_step(min_unit, hours_per_day)
    units = (to_decimal(hours) / step).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return units * step


def rounded_line_hours(
    lines: Iterable[tuple[LeaveUnit | str, Decimal | int | float]],
    min_unit: MinUnit | str,
    hours_per_day: Decimal | int = DEFAULT_HOURS_PER_DAY,
) -> list[Decimal]:
    """Rounded hours of each (unit, quantity) line, in order.

    Raises ZeroDurationLineError naming the first line that rounds to zero.
    """
    rounded: list[Decimal] = []
    for index, (unit, quantity) in enumerate(lines):
        hours = round_to_min_unit_hours(normalize_to_hours(unit, quantity, hours_per_day), min_unit, hours_per_day)
        if hours <= 0:
            raise ZeroDurationLineError(f"Line {index} rounds to zero hours", line_index=index)
        rounded.append(hours)
    return rounded


def compute_rounded_total_hours(
    lines: Iterable[tuple[LeaveUnit | str, Decimal | int | float]],
    min_unit: MinUnit | str,
    hours_per_day: Decimal | int = DEFAULT_HOURS_PER_DAY,
) -> Decimal:
    """Sum the rounded hours of each (unit, quantity) line."""
    return sum(rounded_line_hours(lines, min_unit, hours_per_day), Decimal(0))
