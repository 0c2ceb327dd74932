"""
Storage contract used by the search executor, the scheduler and the API,
plus its SQLAlchemy implementation.

SqlPersistence opens one session per operation. Database errors are rolled
back and re-raised as PersistenceError; the ORM never leaks past this module,
callers only see the pydantic schemas.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from parkwatch.database import SessionLocal
from parkwatch.exceptions import NotFoundError, PersistenceError
from parkwatch.models import (
    AvailabilityRecord,
    ExecutionRecord,
    NotificationLogRecord,
    SavedSearch,
    SearchResultRecord,
)
from parkwatch.schemas import (
    Availability,
    AvailabilityChanges,
    DateRange,
    NotificationLog,
    NotificationSettings,
    Search,
    SearchExecution,
    SearchResult,
    SearchSchedule,
    SearchUpdate,
)
from parkwatch.services.result_diff import availability_key
from parkwatch.utils import utcnow

logger = logging.getLogger(__name__)

EXECUTION_FIELDS = {
    "status",
    "started_at",
    "completed_at",
    "total_checks",
    "completed_checks",
    "found_availabilities",
    "error",
}

# SearchUpdate fields that may be cleared by sending null
NULLABLE_SEARCH_FIELDS = {"notification_email", "custom_cron"}


class PersistenceAdapter(ABC):
    """Everything the engine needs from storage. All operations are async."""

    # Searches
    @abstractmethod
    async def create_search(self, search: Search) -> int: ...

    @abstractmethod
    async def get_search(self, search_id: int) -> Optional[Search]: ...

    @abstractmethod
    async def get_all_searches(self, enabled: Optional[bool] = None) -> List[Search]: ...

    @abstractmethod
    async def update_search(self, search_id: int, updates: SearchUpdate) -> Search: ...

    @abstractmethod
    async def delete_search(self, search_id: int) -> None: ...

    @abstractmethod
    async def update_search_schedule(
        self, search_id: int, last_run: datetime, next_run: datetime
    ) -> None: ...

    @abstractmethod
    async def get_searches_due_for_execution(
        self, now: Optional[datetime] = None
    ) -> List[Search]: ...

    # Results
    @abstractmethod
    async def save_search_result(self, result: SearchResult) -> int: ...

    @abstractmethod
    async def get_search_results(self, search_id: int, limit: int = 10) -> List[SearchResult]: ...

    @abstractmethod
    async def get_latest_search_result(
        self, search_id: int, complete_only: bool = False
    ) -> Optional[SearchResult]: ...

    @abstractmethod
    async def update_search_result(
        self,
        result_id: int,
        notification_sent: Optional[bool] = None,
        error: Optional[str] = None,
    ) -> None: ...

    # Executions
    @abstractmethod
    async def create_execution(self, execution: SearchExecution) -> int: ...

    @abstractmethod
    async def update_execution(self, execution_id: int, **updates) -> None: ...

    @abstractmethod
    async def get_execution(self, execution_id: int) -> Optional[SearchExecution]: ...

    # Notification logs
    @abstractmethod
    async def log_notification(self, log: NotificationLog) -> int: ...

    @abstractmethod
    async def get_notification_logs(self, search_id: int, limit: int = 50) -> List[NotificationLog]: ...


def search_to_schema(row: SavedSearch) -> Search:
    return Search(
        id=row.id,
        name=row.name,
        enabled=row.enabled,
        date_ranges=[DateRange.model_validate(dr) for dr in row.date_ranges or []],
        stay_lengths=list(row.stay_lengths or []),
        resorts=list(row.resorts or []),
        accommodation_types=list(row.accommodation_types or []),
        schedule=SearchSchedule(
            frequency=row.schedule_frequency,
            custom_cron=row.schedule_custom_cron,
            last_run=row.last_run,
            next_run=row.next_run,
        ),
        notifications=NotificationSettings(
            email=row.notification_email,
            only_changes=row.notification_only_changes,
        ),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _date_ranges_to_json(date_ranges: List[DateRange]) -> list:
    return [dr.model_dump(by_alias=True, mode="json") for dr in date_ranges]


def result_to_schema(record: SearchResultRecord) -> SearchResult:
    current = [Availability.model_validate(a) for a in record.availabilities if not a.is_removed]
    new = [Availability.model_validate(a) for a in record.availabilities if a.is_new and not a.is_removed]
    removed = [Availability.model_validate(a) for a in record.availabilities if a.is_removed]

    return SearchResult(
        id=record.id,
        search_id=record.search_id,
        timestamp=record.timestamp,
        availabilities=current,
        changes=AvailabilityChanges(new=new, removed=removed),
        notification_sent=record.notification_sent,
        error=record.error,
    )


def _availability_row(availability: Availability, is_new: bool = False, is_removed: bool = False) -> AvailabilityRecord:
    return AvailabilityRecord(
        resort_id=availability.resort_id,
        resort_name=availability.resort_name,
        accommodation_type_id=availability.accommodation_type_id,
        accommodation_type_name=availability.accommodation_type_name,
        date_from=availability.date_from,
        date_to=availability.date_to,
        nights=availability.nights,
        price_total=availability.price_total,
        price_per_night=availability.price_per_night,
        available=False if is_removed else availability.available,
        link=availability.link,
        is_new=is_new,
        is_removed=is_removed,
    )


class SqlPersistence(PersistenceAdapter):
    """
    SQLAlchemy-backed storage.

    Usage:
        persistence = SqlPersistence()              # application database
        persistence = SqlPersistence(TestSession)   # any sessionmaker
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or SessionLocal

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Database operation failed: {e}")
            raise PersistenceError(str(e)) from e
        finally:
            db.close()

    @staticmethod
    def _get_search_row(db: Session, search_id: int) -> SavedSearch:
        row = db.get(SavedSearch, search_id)
        if row is None:
            raise NotFoundError("Search", search_id)
        return row

    # Searches

    async def create_search(self, search: Search) -> int:
        with self._session() as db:
            row = SavedSearch(
                name=search.name,
                enabled=search.enabled,
                date_ranges=_date_ranges_to_json(search.date_ranges),
                stay_lengths=list(search.stay_lengths),
                resorts=list(search.resorts),
                accommodation_types=list(search.accommodation_types),
                schedule_frequency=search.schedule.frequency,
                schedule_custom_cron=search.schedule.custom_cron,
                last_run=search.schedule.last_run,
                next_run=search.schedule.next_run,
                notification_email=search.notifications.email,
                notification_only_changes=search.notifications.only_changes,
            )
            db.add(row)
            db.flush()
            search_id = row.id

        logger.info(f"Created search {search_id}: {search.name}")
        return search_id

    async def get_search(self, search_id: int) -> Optional[Search]:
        with self._session() as db:
            row = db.get(SavedSearch, search_id)
            return search_to_schema(row) if row else None

    async def get_all_searches(self, enabled: Optional[bool] = None) -> List[Search]:
        with self._session() as db:
            query = db.query(SavedSearch)
            if enabled is not None:
                query = query.filter(SavedSearch.enabled == enabled)
            rows = query.order_by(SavedSearch.created_at.desc(), SavedSearch.id.desc()).all()
            return [search_to_schema(row) for row in rows]

    async def update_search(self, search_id: int, updates: SearchUpdate) -> Search:
        data = {
            field: value
            for field, value in updates.model_dump(exclude_unset=True).items()
            if value is not None or field in NULLABLE_SEARCH_FIELDS
        }

        with self._session() as db:
            row = self._get_search_row(db, search_id)

            if "date_ranges" in data:
                row.date_ranges = _date_ranges_to_json(updates.date_ranges)
                data.pop("date_ranges")
            if "frequency" in data:
                row.schedule_frequency = data.pop("frequency")
            if "custom_cron" in data:
                row.schedule_custom_cron = data.pop("custom_cron")
            if "only_changes" in data:
                row.notification_only_changes = data.pop("only_changes")

            for field, value in data.items():
                setattr(row, field, value)

            row.updated_at = utcnow()
            db.flush()
            db.refresh(row)
            return search_to_schema(row)

    async def delete_search(self, search_id: int) -> None:
        with self._session() as db:
            row = self._get_search_row(db, search_id)
            db.delete(row)
        logger.info(f"Deleted search {search_id}")

    async def update_search_schedule(self, search_id: int, last_run: datetime, next_run: datetime) -> None:
        with self._session() as db:
            row = self._get_search_row(db, search_id)
            row.last_run = last_run
            row.next_run = next_run

    async def get_searches_due_for_execution(self, now: Optional[datetime] = None) -> List[Search]:
        now = now or utcnow()
        with self._session() as db:
            rows = (
                db.query(SavedSearch)
                .filter(
                    SavedSearch.enabled == True,
                    or_(SavedSearch.next_run.is_(None), SavedSearch.next_run <= now),
                )
                .order_by(SavedSearch.next_run.asc(), SavedSearch.id.asc())
                .all()
            )
            return [search_to_schema(row) for row in rows]

    # Results

    async def save_search_result(self, result: SearchResult) -> int:
        new_keys = {availability_key(a) for a in result.changes.new}

        with self._session() as db:
            self._get_search_row(db, result.search_id)

            record = SearchResultRecord(
                search_id=result.search_id,
                timestamp=result.timestamp,
                availabilities_count=len(result.availabilities),
                new_count=len(result.changes.new),
                removed_count=len(result.changes.removed),
                notification_sent=result.notification_sent,
                error=result.error,
            )
            for availability in result.availabilities:
                record.availabilities.append(
                    _availability_row(availability, is_new=availability_key(availability) in new_keys)
                )
            for availability in result.changes.removed:
                record.availabilities.append(_availability_row(availability, is_removed=True))

            db.add(record)
            db.flush()
            result_id = record.id

        logger.debug(
            f"Saved result {result_id} for search {result.search_id}: "
            f"{len(result.availabilities)} availabilities"
        )
        return result_id

    async def get_search_results(self, search_id: int, limit: int = 10) -> List[SearchResult]:
        with self._session() as db:
            records = (
                db.query(SearchResultRecord)
                .filter(SearchResultRecord.search_id == search_id)
                .order_by(SearchResultRecord.timestamp.desc(), SearchResultRecord.id.desc())
                .limit(limit)
                .all()
            )
            return [result_to_schema(record) for record in records]

    async def get_latest_search_result(self, search_id: int, complete_only: bool = False) -> Optional[SearchResult]:
        """
        Most recent result for a search.

        With complete_only, results that carry an error (e.g. cancelled runs
        holding a partial grid) are skipped.
        """
        with self._session() as db:
            query = db.query(SearchResultRecord).filter(SearchResultRecord.search_id == search_id)
            if complete_only:
                query = query.filter(SearchResultRecord.error.is_(None))
            record = query.order_by(
                SearchResultRecord.timestamp.desc(), SearchResultRecord.id.desc()
            ).first()
            return result_to_schema(record) if record else None

    async def update_search_result(
        self,
        result_id: int,
        notification_sent: Optional[bool] = None,
        error: Optional[str] = None,
    ) -> None:
        with self._session() as db:
            record = db.get(SearchResultRecord, result_id)
            if record is None:
                raise NotFoundError("Result", result_id)
            if notification_sent is not None:
                record.notification_sent = notification_sent
            if error is not None:
                record.error = error

    # Executions

    async def create_execution(self, execution: SearchExecution) -> int:
        with self._session() as db:
            record = ExecutionRecord(
                search_id=execution.search_id,
                status=execution.status,
                started_at=execution.started_at,
                completed_at=execution.completed_at,
                total_checks=execution.total_checks,
                completed_checks=execution.completed_checks,
                found_availabilities=execution.found_availabilities,
                error=execution.error,
            )
            db.add(record)
            db.flush()
            return record.id

    async def update_execution(self, execution_id: int, **updates) -> None:
        unknown = set(updates) - EXECUTION_FIELDS
        if unknown:
            raise ValueError(f"Unknown execution fields: {sorted(unknown)}")

        with self._session() as db:
            record = db.get(ExecutionRecord, execution_id)
            if record is None:
                raise NotFoundError("Execution", execution_id)
            for field, value in updates.items():
                setattr(record, field, value)

    async def get_execution(self, execution_id: int) -> Optional[SearchExecution]:
        with self._session() as db:
            record = db.get(ExecutionRecord, execution_id)
            return SearchExecution.model_validate(record) if record else None

    # Notification logs

    async def log_notification(self, log: NotificationLog) -> int:
        with self._session() as db:
            record = NotificationLogRecord(**log.model_dump(exclude={"id"}))
            db.add(record)
            db.flush()
            return record.id

    async def get_notification_logs(self, search_id: int, limit: int = 50) -> List[NotificationLog]:
        with self._session() as db:
            records = (
                db.query(NotificationLogRecord)
                .filter(NotificationLogRecord.search_id == search_id)
                .order_by(NotificationLogRecord.sent_at.desc(), NotificationLogRecord.id.desc())
                .limit(limit)
                .all()
            )
            return [NotificationLog.model_validate(r) for r in records]
