# SQLAlchemy models
from parkwatch.models.search import SavedSearch, ScheduleFrequency
from parkwatch.models.search_result import SearchResultRecord, AvailabilityRecord
from parkwatch.models.execution import ExecutionRecord, ExecutionStatus
from parkwatch.models.notification_log import NotificationLogRecord

__all__ = [
    "SavedSearch",
    "SearchResultRecord",
    "AvailabilityRecord",
    "ExecutionRecord",
    "NotificationLogRecord",
    # Enums
    "ScheduleFrequency",
    "ExecutionStatus",
]
