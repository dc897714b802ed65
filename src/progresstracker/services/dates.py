"""
Date helpers and comparison queries over stored records.

Record dates are calendar days with no time zone; every helper here works
on ``datetime.date`` values so no day shift can creep in.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

from ..models.image_record import BodyMeasurements, ImageRecord, parse_record_date
from .store import ImageStore

DAYS_PER_WEEK = 7
# Months are approximated as 30 days
DAYS_PER_MONTH = 30
MONTHS_PER_YEAR = 12

QUICK_COMPARE_OPTIONS: list[tuple[str, int]] = [
    ("1 week ago", 7),
    ("2 weeks ago", 14),
    ("1 month ago", 30),
    ("3 months ago", 90),
    ("6 months ago", 180),
    ("1 year ago", 365),
]


@dataclass(frozen=True)
class DateDifference:
    """Distance between two dates and its human-readable form."""

    days: int
    weeks: int
    months: int
    formatted: str


def parse_date(value: Any) -> date:
    """
    Parse a ``YYYY-MM-DD`` string (or ISO timestamp, or date) into a date.

    Raises:
        ValueError: If the value is not a valid date
    """
    return parse_record_date(value)


def is_valid_date(value: Any) -> bool:
    try:
        parse_date(value)
    except (TypeError, ValueError):
        return False
    return True


def format_date(value: date | str) -> str:
    """Long form, e.g. ``Jan 5, 2024``."""
    day = parse_date(value)
    return f"{day:%b} {day.day}, {day.year}"


def format_date_short(value: date | str) -> str:
    """Short form without the year, e.g. ``Jan 5``."""
    day = parse_date(value)
    return f"{day:%b} {day.day}"


def today() -> date:
    return date.today()


def date_offset(days: int, base: date | None = None) -> date:
    """The date ``days`` days before base (today by default)."""
    return (base or today()) - timedelta(days=days)


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}" if count == 1 else f"{count} {unit}s"


def date_difference(date_a: date | str, date_b: date | str) -> DateDifference:
    """
    Compute the distance between two dates.

    ``weeks`` is ``days // 7`` and ``months`` is ``days // 30``. The text is
    tiered by the largest unit that applies:

    - ``Same day``, ``1 day apart``, ``N days apart`` below a week
    - ``1 week apart`` for 7-13 days, then ``N weeks[, M days] apart``
    - ``1 month apart`` for 30-59 days, then ``N months[, M weeks] apart``
    - ``N year(s)[, M months] apart`` from 12 months on

    Zero residuals are omitted. Args may be given in either order.
    """
    days = abs((parse_date(date_b) - parse_date(date_a)).days)
    weeks = days // DAYS_PER_WEEK
    months = days // DAYS_PER_MONTH

    if days == 0:
        formatted = "Same day"
    elif days < DAYS_PER_WEEK:
        formatted = f"{_plural(days, 'day')} apart"
    elif weeks == 1:
        formatted = "1 week apart"
    elif months == 0:
        remaining_days = days % DAYS_PER_WEEK
        if remaining_days:
            formatted = f"{weeks} weeks, {_plural(remaining_days, 'day')} apart"
        else:
            formatted = f"{weeks} weeks apart"
    elif months == 1:
        formatted = "1 month apart"
    elif months < MONTHS_PER_YEAR:
        remaining_weeks = (days - months * DAYS_PER_MONTH) // DAYS_PER_WEEK
        if remaining_weeks:
            formatted = f"{months} months, {_plural(remaining_weeks, 'week')} apart"
        else:
            formatted = f"{months} months apart"
    else:
        years = months // MONTHS_PER_YEAR
        remaining_months = months % MONTHS_PER_YEAR
        if remaining_months:
            formatted = f"{_plural(years, 'year')}, {_plural(remaining_months, 'month')} apart"
        else:
            formatted = f"{_plural(years, 'year')} apart"

    return DateDifference(days=days, weeks=weeks, months=months, formatted=formatted)


def relative_time_description(date_a: date | str, date_b: date | str) -> str:
    """Where date_a falls relative to date_b: ``Same date``, ``Earlier`` or ``Later``."""
    first, second = parse_date(date_a), parse_date(date_b)
    if first == second:
        return "Same date"
    return "Earlier" if first < second else "Later"


def sort_by_date(records: Iterable[ImageRecord], order: str = "newest") -> list[ImageRecord]:
    """
    Return records sorted by date; input order is kept among equal dates.

    Raises:
        ValueError: If order is not ``newest`` or ``oldest``
    """
    if order not in ("newest", "oldest"):
        raise ValueError(f"Unknown sort order: {order!r}")
    return sorted(records, key=lambda record: record.date, reverse=order == "newest")


def closest_record(
    records: Iterable[ImageRecord], target: date | str, exclude_id: str | None = None
) -> ImageRecord | None:
    """
    Record whose date is nearest to target.

    Equidistant records are ordered by earliest upload timestamp, then id.
    """
    target_date = parse_date(target)
    candidates = [record for record in records if record.id != exclude_id]
    if not candidates:
        return None
    return min(
        candidates,
        key=lambda record: (abs((record.date - target_date).days), record.upload_timestamp, record.id),
    )


async def closest_record_to_date(
    store: ImageStore, target: date | str, exclude_id: str | None = None
) -> ImageRecord | None:
    """Nearest record to target among everything in the store."""
    return closest_record(await store.get_all(), target, exclude_id)


async def find_by_date_offset(
    store: ImageStore, base: date | str, days_offset: int, exclude_id: str | None = None
) -> ImageRecord | None:
    """Nearest record to ``base - days_offset`` days, e.g. for "1 month ago" comparisons."""
    return await closest_record_to_date(store, date_offset(days_offset, parse_date(base)), exclude_id)


def measurement_changes(
    before: BodyMeasurements | None, after: BodyMeasurements | None
) -> dict[str, float]:
    """Signed change (after - before) per measurement present in both."""
    if before is None or after is None:
        return {}
    earlier = dict(before.items())
    return {name: round(value - earlier[name], 1) for name, value in after.items() if name in earlier}
