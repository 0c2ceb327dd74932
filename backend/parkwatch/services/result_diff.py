"""
Change detection between two availability snapshots.

Offers are matched on (resort, accommodation type, check-in, check-out).
Price is deliberately left out of the key, so a price move alone is not a change.
"""

from typing import Iterable, List

from parkwatch.schemas.result import Availability, AvailabilityChanges


def availability_key(availability: Availability) -> str:
    return (
        f"{availability.resort_id}-{availability.accommodation_type_id}-"
        f"{availability.date_from}-{availability.date_to}"
    )


def _keys(availabilities: Iterable[Availability]) -> set:
    return {availability_key(a) for a in availabilities}


def diff_availabilities(
    current: List[Availability],
    previous: List[Availability],
) -> AvailabilityChanges:
    """
    Split into offers that appeared and offers that disappeared.

    new: items of `current` whose key is absent from `previous`
    removed: items of `previous` whose key is absent from `current`
    Input order is preserved in both lists.
    """
    current_keys = _keys(current)
    previous_keys = _keys(previous)

    return AvailabilityChanges(
        new=[a for a in current if availability_key(a) not in previous_keys],
        removed=[a for a in previous if availability_key(a) not in current_keys],
    )
