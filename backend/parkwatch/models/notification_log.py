from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship
from parkwatch.database import Base


class NotificationLogRecord(Base):
    """Append-only audit trail of notification attempts."""
    __tablename__ = "notification_logs"

    id = Column(Integer, primary_key=True, index=True)
    search_id = Column(
        Integer,
        ForeignKey("searches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    result_id = Column(
        Integer,
        ForeignKey("search_results.id", ondelete="CASCADE"),
        nullable=False,
    )

    sent_at = Column(DateTime, nullable=False)
    recipient = Column(String(255), nullable=False)
    subject = Column(String(300), nullable=False)
    new_availabilities = Column(Integer, default=0, nullable=False)
    removed_availabilities = Column(Integer, default=0, nullable=False)
    success = Column(Boolean, default=True, nullable=False)
    error = Column(Text, nullable=True)

    search = relationship("SavedSearch", back_populates="notification_logs")
