from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON, Enum as SQLEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from parkwatch.database import Base
import enum


class ScheduleFrequency(str, enum.Enum):
    EVERY_30_MIN = "every_30_min"
    HOURLY = "hourly"
    EVERY_2_HOURS = "every_2_hours"
    EVERY_4_HOURS = "every_4_hours"
    DAILY = "daily"


class SavedSearch(Base):
    """
    A user's saved monitoring job: which dates, stay lengths, resorts and
    accommodation types to probe, how often, and who to tell.

    last_run / next_run are written only by the search executor.
    """
    __tablename__ = "searches"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    enabled = Column(Boolean, default=True, nullable=False, index=True)

    # [{"from": "YYYY-MM-DD", "to": "YYYY-MM-DD"}, ...]
    date_ranges = Column(JSON, nullable=False, default=list)
    stay_lengths = Column(JSON, nullable=False, default=list)  # nights
    # Empty list = all resorts / all accommodation types
    resorts = Column(JSON, nullable=False, default=list)
    accommodation_types = Column(JSON, nullable=False, default=list)

    schedule_frequency = Column(
        SQLEnum(ScheduleFrequency), default=ScheduleFrequency.HOURLY, nullable=False
    )
    schedule_custom_cron = Column(String(100), nullable=True)
    last_run = Column(DateTime, nullable=True)
    next_run = Column(DateTime, nullable=True, index=True)  # null = never run, due now

    notification_email = Column(String(255), nullable=True)
    notification_only_changes = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    results = relationship(
        "SearchResultRecord",
        back_populates="search",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    executions = relationship(
        "ExecutionRecord",
        back_populates="search",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    notification_logs = relationship(
        "NotificationLogRecord",
        back_populates="search",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<SavedSearch {self.id}: {self.name} ({self.schedule_frequency.value})>"
