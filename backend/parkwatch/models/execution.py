from sqlalchemy import Column, Integer, DateTime, Text, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from parkwatch.database import Base
import enum


class ExecutionStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        )


class ExecutionRecord(Base):
    """
    Progress and audit record for one run of a search.

    total_checks is written once before probing starts; completed_checks and
    found_availabilities only grow while the execution is running.
    """
    __tablename__ = "executions"

    id = Column(Integer, primary_key=True, index=True)
    search_id = Column(
        Integer,
        ForeignKey("searches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    status = Column(SQLEnum(ExecutionStatus), default=ExecutionStatus.PENDING, nullable=False)
    started_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    total_checks = Column(Integer, default=0, nullable=False)
    completed_checks = Column(Integer, default=0, nullable=False)
    found_availabilities = Column(Integer, default=0, nullable=False)

    error = Column(Text, nullable=True)

    search = relationship("SavedSearch", back_populates="executions")

    @property
    def progress_percent(self) -> float:
        if not self.total_checks:
            return 0.0
        return (self.completed_checks / self.total_checks) * 100

    def __repr__(self) -> str:
        return (
            f"<ExecutionRecord {self.id}: search={self.search_id} {self.status.value} "
            f"{self.completed_checks}/{self.total_checks}>"
        )
