from parkwatch.schemas.search import (
    DateRange,
    NotificationSettings,
    Search,
    SearchCreate,
    SearchSchedule,
    SearchUpdate,
)
from parkwatch.schemas.result import (
    Availability,
    AvailabilityChanges,
    NotificationLog,
    SearchExecution,
    SearchResult,
)

__all__ = [
    "DateRange",
    "NotificationSettings",
    "Search",
    "SearchCreate",
    "SearchSchedule",
    "SearchUpdate",
    "Availability",
    "AvailabilityChanges",
    "NotificationLog",
    "SearchExecution",
    "SearchResult",
]
