from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional

from parkwatch.models.execution import ExecutionStatus


class Availability(BaseModel):
    """One bookable offer for a concrete stay."""
    resort_id: int
    resort_name: str
    accommodation_type_id: int
    accommodation_type_name: str
    date_from: str  # YYYY-MM-DD
    date_to: str
    nights: int
    price_total: float
    price_per_night: float
    available: bool = True
    link: str

    class Config:
        from_attributes = True


class AvailabilityChanges(BaseModel):
    new: List[Availability] = Field(default_factory=list)
    removed: List[Availability] = Field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.new or self.removed)


class SearchResult(BaseModel):
    id: Optional[int] = None
    search_id: int
    timestamp: datetime
    availabilities: List[Availability] = Field(default_factory=list)
    changes: AvailabilityChanges = Field(default_factory=AvailabilityChanges)
    notification_sent: bool = False
    error: Optional[str] = None


class SearchExecution(BaseModel):
    id: Optional[int] = None
    search_id: int
    status: ExecutionStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    total_checks: int = 0
    completed_checks: int = 0
    found_availabilities: int = 0
    error: Optional[str] = None

    class Config:
        from_attributes = True


class NotificationLog(BaseModel):
    id: Optional[int] = None
    search_id: int
    result_id: int
    sent_at: datetime
    recipient: str
    subject: str
    new_availabilities: int = 0
    removed_availabilities: int = 0
    success: bool
    error: Optional[str] = None

    class Config:
        from_attributes = True
