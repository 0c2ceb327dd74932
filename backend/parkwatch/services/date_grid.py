"""
Probe grid generation.

Expands a search's date ranges and stay lengths into the concrete
(check-in, check-out) pairs sent to the booking API. Overlapping date ranges
are NOT deduplicated: the same stay can appear (and be probed) twice.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Tuple, Union

DATE_FORMAT = "%Y-%m-%d"

DateLike = Union[date, str]


@dataclass(frozen=True)
class Probe:
    """One availability check for a concrete stay."""
    check_in: str  # YYYY-MM-DD
    check_out: str
    stay_length: int


def _to_date(value: DateLike) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


def format_date(value: date) -> str:
    return value.strftime(DATE_FORMAT)


def generate_stay_dates(
    range_from: DateLike,
    range_to: DateLike,
    stay_length: int,
) -> List[Tuple[str, str]]:
    """
    All stays of `stay_length` nights that fit entirely inside [range_from, range_to].

    Check-in walks every calendar day of the range; a stay is kept only when
    its check-out day is not after range_to.
    """
    start = _to_date(range_from)
    end = _to_date(range_to)

    if stay_length <= 0 or end < start:
        return []

    stays = []
    current = start
    nights = timedelta(days=stay_length)
    while current <= end:
        check_out = current + nights
        if check_out <= end:
            stays.append((format_date(current), format_date(check_out)))
        current += timedelta(days=1)

    return stays


def build_probe_grid(search) -> List[Probe]:
    """Full probe list for a search: date_ranges x stay_lengths, in that order."""
    grid = []
    for date_range in search.date_ranges:
        for stay_length in search.stay_lengths:
            for check_in, check_out in generate_stay_dates(
                date_range.date_from, date_range.date_to, stay_length
            ):
                grid.append(Probe(check_in=check_in, check_out=check_out, stay_length=stay_length))
    return grid


def count_checks(search) -> int:
    return len(build_probe_grid(search))
