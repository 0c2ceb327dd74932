from pydantic import BaseModel, Field, PositiveInt
from datetime import date, datetime
from typing import List, Optional

from parkwatch.models.search import ScheduleFrequency


class DateRange(BaseModel):
    """Inclusive calendar window to scan. Serialized as {"from": ..., "to": ...}."""
    date_from: date = Field(alias="from")
    date_to: date = Field(alias="to")

    class Config:
        populate_by_name = True


class SearchSchedule(BaseModel):
    frequency: ScheduleFrequency = ScheduleFrequency.HOURLY
    custom_cron: Optional[str] = None
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None


class NotificationSettings(BaseModel):
    email: Optional[str] = None
    only_changes: bool = False


class Search(BaseModel):
    id: Optional[int] = None
    name: str
    enabled: bool = True
    date_ranges: List[DateRange]
    stay_lengths: List[PositiveInt]
    resorts: List[int] = Field(default_factory=list)
    accommodation_types: List[int] = Field(default_factory=list)
    schedule: SearchSchedule = Field(default_factory=SearchSchedule)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True


class SearchCreate(BaseModel):
    name: str
    enabled: bool = True
    date_ranges: List[DateRange]
    stay_lengths: List[PositiveInt]
    resorts: List[int] = Field(default_factory=list)
    accommodation_types: List[int] = Field(default_factory=list)
    frequency: ScheduleFrequency = ScheduleFrequency.HOURLY
    custom_cron: Optional[str] = None
    notification_email: Optional[str] = None
    only_changes: bool = False

    def to_search(self) -> Search:
        return Search(
            name=self.name,
            enabled=self.enabled,
            date_ranges=self.date_ranges,
            stay_lengths=self.stay_lengths,
            resorts=self.resorts,
            accommodation_types=self.accommodation_types,
            schedule=SearchSchedule(frequency=self.frequency, custom_cron=self.custom_cron),
            notifications=NotificationSettings(
                email=self.notification_email,
                only_changes=self.only_changes,
            ),
        )


class SearchUpdate(BaseModel):
    name: Optional[str] = None
    enabled: Optional[bool] = None
    date_ranges: Optional[List[DateRange]] = None
    stay_lengths: Optional[List[PositiveInt]] = None
    resorts: Optional[List[int]] = None
    accommodation_types: Optional[List[int]] = None
    frequency: Optional[ScheduleFrequency] = None
    custom_cron: Optional[str] = None
    notification_email: Optional[str] = None
    only_changes: Optional[bool] = None
