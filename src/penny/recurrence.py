"""Date arithmetic for recurring transactions. Pure functions, no database access."""

from calendar import monthrange
from datetime import date, datetime

from dateutil.relativedelta import relativedelta

from penny.errors import ValidationError

# recurrence_type -> relativedelta keyword
_UNITS = {
    "daily": "days",
    "weekly": "weeks",
    "monthly": "months",
    "yearly": "years",
}

RECURRENCE_DEFAULTS = {"daily": 30, "weekly": 12, "monthly": 12, "yearly": 5}
MAX_OCCURRENCES = {"daily": 365, "weekly": 104, "monthly": 120, "yearly": 30}


def as_date(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value[:10])


def end_of_month(day: date) -> date:
    return day.replace(day=monthrange(day.year, day.month)[1])


def next_occurrence_date(base_date: date | str, recurrence_type: str, occurrence_number: int) -> date | None:
    """Return the date of the n-th occurrence after base_date, or None for 'none'.

    Offsets are always taken from the base date, never chained from the previous
    occurrence, so a template on Jan 31 lands on Feb 29 and then Mar 31.
    """
    if recurrence_type == "none":
        return None
    unit = _UNITS.get(recurrence_type)
    if unit is None:
        raise ValidationError(f"Unknown recurrence type: {recurrence_type}")
    return as_date(base_date) + relativedelta(**{unit: occurrence_number})


def due_occurrences(
    base_date: date | str,
    recurrence_type: str,
    max_occurrences: int | None,
    already_generated,
    today: date | None = None,
) -> list[tuple[int, str]]:
    """(occurrence number, ISO date) pairs that are due but not yet materialized.

    Occurrences run from 1 to max_occurrences and stop at the end of today's
    month. The result never pushes the lifetime count past max_occurrences.
    """
    if recurrence_type == "none" or not max_occurrences:
        return []

    already = set(already_generated)
    remaining = max_occurrences - len(already)
    if remaining <= 0:
        return []

    horizon = end_of_month(today or date.today())
    due: list[tuple[int, str]] = []
    for n in range(1, max_occurrences + 1):
        candidate = next_occurrence_date(base_date, recurrence_type, n)
        if candidate > horizon:
            break
        iso = candidate.isoformat()
        if iso in already:
            continue
        due.append((n, iso))
        if len(due) == remaining:
            break
    return due


def missing_occurrences(
    base_date: date | str,
    recurrence_type: str,
    max_occurrences: int | None,
    already_generated,
    today: date | None = None,
) -> list[str]:
    """Chronological ISO dates still to generate; see due_occurrences."""
    return [iso for _, iso in due_occurrences(base_date, recurrence_type, max_occurrences, already_generated, today)]


def validate_occurrences(recurrence_type: str, count: int | None) -> None:
    if recurrence_type not in _UNITS:
        raise ValidationError("Choose a recurrence frequency: daily, weekly, monthly or yearly")
    if count is None:
        raise ValidationError("Set the number of occurrences")
    maximum = MAX_OCCURRENCES[recurrence_type]
    if count < 1:
        raise ValidationError("The number of occurrences must be at least 1")
    if count > maximum:
        raise ValidationError(f"At most {maximum} occurrences are allowed for a {recurrence_type} schedule")


def count_occurrences_until(base_date: date | str, recurrence_type: str, end_date: date | str) -> int:
    """How many occurrences fall on or before end_date, capped at the frequency maximum."""
    if recurrence_type not in _UNITS:
        return 0
    end = as_date(end_date)
    maximum = MAX_OCCURRENCES[recurrence_type]
    count = 0
    while count < maximum and next_occurrence_date(base_date, recurrence_type, count + 1) <= end:
        count += 1
    return count
