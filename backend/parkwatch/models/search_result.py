from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, Text, ForeignKey, Index
from sqlalchemy.orm import relationship
from parkwatch.database import Base


class SearchResultRecord(Base):
    """
    Outcome of one search execution.

    Availability rows hang off the result: current offers have is_removed=0
    (is_new=1 when they were not in the previous result), offers that
    disappeared since the previous result are stored with is_removed=1.
    """
    __tablename__ = "search_results"

    id = Column(Integer, primary_key=True, index=True)
    search_id = Column(
        Integer,
        ForeignKey("searches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    timestamp = Column(DateTime, nullable=False, index=True)

    availabilities_count = Column(Integer, default=0, nullable=False)
    new_count = Column(Integer, default=0, nullable=False)
    removed_count = Column(Integer, default=0, nullable=False)

    notification_sent = Column(Boolean, default=False, nullable=False)
    error = Column(Text, nullable=True)

    search = relationship("SavedSearch", back_populates="results")
    availabilities = relationship(
        "AvailabilityRecord",
        back_populates="result",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="AvailabilityRecord.id",
    )

    __table_args__ = (
        Index("ix_search_results_search_time", "search_id", "timestamp"),
    )


class AvailabilityRecord(Base):
    __tablename__ = "availabilities"

    id = Column(Integer, primary_key=True, index=True)
    result_id = Column(
        Integer,
        ForeignKey("search_results.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    resort_id = Column(Integer, nullable=False)
    resort_name = Column(String(200), nullable=False)
    accommodation_type_id = Column(Integer, nullable=False)
    accommodation_type_name = Column(String(200), nullable=False)
    date_from = Column(String(10), nullable=False)  # YYYY-MM-DD
    date_to = Column(String(10), nullable=False)
    nights = Column(Integer, nullable=False)
    price_total = Column(Float, nullable=False)
    price_per_night = Column(Float, nullable=False)
    available = Column(Boolean, default=True, nullable=False)
    link = Column(String(500), nullable=False)

    is_new = Column(Boolean, default=False, nullable=False)
    is_removed = Column(Boolean, default=False, nullable=False)

    result = relationship("SearchResultRecord", back_populates="availabilities")
