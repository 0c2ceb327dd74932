"""
Search execution engine.

One run of a saved search:
  load search -> open execution -> probe every grid cell -> diff against the
  last complete result -> store result -> close execution -> notify -> reschedule

Probes go through the shared RateLimiter, the request ConcurrencyLimiter and
the RetryStrategy. A probe that still fails after its retries is logged and
skipped; only missing searches and storage failures abort a run.
"""
import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from parkwatch.exceptions import NotFoundError, ProbeError
from parkwatch.models.execution import ExecutionStatus
from parkwatch.models.search import ScheduleFrequency
from parkwatch.schemas import (
    Availability,
    AvailabilityChanges,
    NotificationLog,
    Search,
    SearchExecution,
    SearchResult,
)
from parkwatch.services.date_grid import Probe, build_probe_grid
from parkwatch.services.notification import NotificationAdapter, build_notification_subject
from parkwatch.services.persistence import PersistenceAdapter
from parkwatch.services.rate_limiter import ConcurrencyLimiter, RateLimiter
from parkwatch.services.result_diff import diff_availabilities
from parkwatch.services.retry import RetryStrategy
from parkwatch.utils import utcnow

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Cancelled by user"
PROGRESS_LOG_EVERY = 10

ProgressCallback = Callable[[SearchExecution], None]

FREQUENCY_DELTAS = {
    ScheduleFrequency.EVERY_30_MIN: timedelta(minutes=30),
    ScheduleFrequency.HOURLY: timedelta(hours=1),
    ScheduleFrequency.EVERY_2_HOURS: timedelta(hours=2),
    ScheduleFrequency.EVERY_4_HOURS: timedelta(hours=4),
}


def calculate_next_run(frequency, now: Optional[datetime] = None) -> datetime:
    """
    Next run time for a schedule frequency.

    daily runs at 09:00 the following day; unknown frequencies fall back to hourly.
    """
    now = now or utcnow()

    try:
        frequency = ScheduleFrequency(frequency)
    except ValueError:
        logger.warning(f"Unknown schedule frequency {frequency!r}, defaulting to hourly")
        return now + timedelta(hours=1)

    if frequency == ScheduleFrequency.DAILY:
        return (now + timedelta(days=1)).replace(hour=9, minute=0, second=0, microsecond=0)
    return now + FREQUENCY_DELTAS[frequency]


class SearchExecutor:
    """
    Runs saved searches against the booking API.

    The limiters are injected so one process-wide instance of each can be
    shared by every executor (see parkwatch.services.runtime).
    """

    def __init__(
        self,
        persistence: PersistenceAdapter,
        booking_client,
        notifier: Optional[NotificationAdapter] = None,
        rate_limiter: Optional[RateLimiter] = None,
        request_limiter: Optional[ConcurrencyLimiter] = None,
        search_limiter: Optional[ConcurrencyLimiter] = None,
        retry_strategy: Optional[RetryStrategy] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.persistence = persistence
        self.booking_client = booking_client
        self.notifier = notifier
        self.rate_limiter = rate_limiter or RateLimiter()
        self.request_limiter = request_limiter or ConcurrencyLimiter(1, name="requests")
        self.search_limiter = search_limiter or ConcurrencyLimiter(2, name="searches")
        self.retry_strategy = retry_strategy or RetryStrategy()
        self._clock = clock

    async def execute_search(
        self,
        search_id: int,
        cancel_event: Optional[asyncio.Event] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SearchResult:
        """
        Run one search to completion (or cancellation) and return its result.

        The execution record is created as pending before the run waits for a
        search slot, so a queued run already has an id and can be cancelled.

        Args:
            search_id: Saved search to run
            cancel_event: When set, probing stops before the next grid cell
            on_progress: Called with a snapshot after every execution update

        Raises:
            NotFoundError: the search does not exist
            PersistenceError: storage failed before a result was saved; the
                execution is marked failed
        """
        search = await self.persistence.get_search(search_id)
        if search is None:
            raise NotFoundError("Search", search_id)

        execution = SearchExecution(
            search_id=search_id,
            status=ExecutionStatus.PENDING,
            started_at=self._clock(),
        )
        execution.id = await self.persistence.create_execution(execution)
        self._emit(on_progress, execution)

        try:
            return await self.search_limiter.execute(
                self._execute_search, search, execution, cancel_event, on_progress
            )
        except asyncio.CancelledError:
            if execution.status == ExecutionStatus.PENDING:
                await self._mark_failed(
                    execution, on_progress, "Execution interrupted", ExecutionStatus.CANCELLED
                )
            raise

    async def _execute_search(
        self,
        search: Search,
        execution: SearchExecution,
        cancel_event: Optional[asyncio.Event],
        on_progress: Optional[ProgressCallback],
    ) -> SearchResult:
        search_id = search.id
        logger.info(f"Starting execution for search: {search.name} ({search_id})")
        run_started = time.monotonic()

        try:
            await self._update_execution(
                execution, on_progress, status=ExecutionStatus.RUNNING, started_at=self._clock()
            )

            grid = build_probe_grid(search)
            await self._update_execution(execution, on_progress, total_checks=len(grid))

            availabilities, cancelled = await self._run_probes(
                search, grid, execution, cancel_event, on_progress
            )

            if cancelled:
                return await self._finish_cancelled(search, execution, availabilities, on_progress)

            previous = await self.persistence.get_latest_search_result(search_id, complete_only=True)
            changes = diff_availabilities(
                availabilities, previous.availabilities if previous else []
            )

            result = SearchResult(
                search_id=search_id,
                timestamp=self._clock(),
                availabilities=availabilities,
                changes=changes,
                notification_sent=False,
            )
            result.id = await self.persistence.save_search_result(result)

            await self._update_execution(
                execution,
                on_progress,
                status=ExecutionStatus.COMPLETED,
                completed_at=self._clock(),
                found_availabilities=len(availabilities),
            )
        except asyncio.CancelledError:
            await self._mark_failed(
                execution, on_progress, "Execution interrupted", ExecutionStatus.CANCELLED
            )
            raise
        except Exception as e:
            logger.error(f"Failed to execute search {search_id}: {e}")
            await self._mark_failed(execution, on_progress, str(e))
            if self.notifier is not None:
                try:
                    await self.notifier.send_error(search, e)
                except Exception as notify_error:
                    logger.error(f"Failed to send error notification for search {search_id}: {notify_error}")
            raise

        # The result is stored; from here on failures are logged, not raised
        if self._should_notify(search, changes):
            try:
                await self._notify(search, result)
            except Exception as e:
                logger.error(f"Failed to record notification for search {search_id}: {e}")

        now = self._clock()
        next_run = calculate_next_run(search.schedule.frequency, now)
        try:
            await self.persistence.update_search_schedule(search_id, now, next_run)
        except Exception as e:
            logger.error(f"Failed to reschedule search {search_id}: {e}")

        logger.info(
            f"Completed execution for search: {search.name}. Found {len(availabilities)} "
            f"availabilities in {(time.monotonic() - run_started) * 1000:.0f}ms "
            f"({len(changes.new)} new, {len(changes.removed)} removed)"
        )
        logger.info(
            f"Request rate: {self.rate_limiter.get_request_rate()} req/min, "
            f"Avg response time: {self.rate_limiter.get_average_response_time()}ms"
        )
        return result

    async def _run_probes(
        self,
        search: Search,
        grid: List[Probe],
        execution: SearchExecution,
        cancel_event: Optional[asyncio.Event],
        on_progress: Optional[ProgressCallback],
    ):
        """Probe the grid in order. Returns (availabilities, cancelled)."""
        availabilities: List[Availability] = []
        completed = 0

        for probe in grid:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(
                    f"Execution {execution.id} cancelled after {completed}/{len(grid)} checks"
                )
                return availabilities, True

            try:
                availabilities.extend(await self._probe(search, probe))
            except ProbeError as e:
                logger.error(
                    f"Failed to check availability for {e.check_in} to {e.check_out} "
                    f"after retries: {e.cause}"
                )

            completed += 1
            await self._update_execution(
                execution,
                on_progress,
                completed_checks=completed,
                found_availabilities=len(availabilities),
            )

            if completed % PROGRESS_LOG_EVERY == 0:
                logger.info(
                    f"Progress: {completed}/{len(grid)} checks completed, "
                    f"{len(availabilities)} availabilities found"
                )

        # A cancel that arrives during the last probe skips nothing
        return availabilities, False

    async def _probe(self, search: Search, probe: Probe) -> List[Availability]:
        await self.rate_limiter.throttle()

        async def check():
            return await self.booking_client.check_availability(
                probe.check_in,
                probe.check_out,
                search.resorts or None,
                search.accommodation_types or None,
            )

        started = time.monotonic()
        try:
            found = await self.request_limiter.execute(self.retry_strategy.execute, check)
        except Exception as e:
            raise ProbeError(probe.check_in, probe.check_out, e) from e

        self.rate_limiter.record_response_time((time.monotonic() - started) * 1000)
        return found

    async def _finish_cancelled(
        self,
        search: Search,
        execution: SearchExecution,
        availabilities: List[Availability],
        on_progress: Optional[ProgressCallback],
    ) -> SearchResult:
        result = SearchResult(
            search_id=search.id,
            timestamp=self._clock(),
            availabilities=availabilities,
            changes=AvailabilityChanges(),
            notification_sent=False,
            error=CANCELLED_MESSAGE,
        )
        result.id = await self.persistence.save_search_result(result)

        await self._update_execution(
            execution,
            on_progress,
            status=ExecutionStatus.CANCELLED,
            completed_at=self._clock(),
            found_availabilities=len(availabilities),
            error=CANCELLED_MESSAGE,
        )
        logger.info(
            f"Search {search.name} cancelled, kept {len(availabilities)} partial availabilities"
        )
        return result

    async def _mark_failed(
        self,
        execution: SearchExecution,
        on_progress: Optional[ProgressCallback],
        message: str,
        status: ExecutionStatus = ExecutionStatus.FAILED,
    ) -> None:
        try:
            await self._update_execution(
                execution,
                on_progress,
                status=status,
                completed_at=self._clock(),
                error=message,
            )
        except Exception as e:
            logger.error(f"Could not mark execution {execution.id} as {status.value}: {e}")

    @staticmethod
    def _should_notify(search: Search, changes: AvailabilityChanges) -> bool:
        if not search.notifications.email:
            return False
        return not search.notifications.only_changes or changes.has_changes

    async def _notify(self, search: Search, result: SearchResult) -> None:
        if self.notifier is None:
            logger.debug(f"No notifier configured, skipping notification for {search.name}")
            return

        subject = build_notification_subject(search, result)
        error = None
        try:
            await self.notifier.send_notification(search, result)
        except Exception as e:
            logger.error(f"Failed to send notification for search {search.id}: {e}")
            error = str(e)

        if error is None:
            await self.persistence.update_search_result(result.id, notification_sent=True)
            result.notification_sent = True

        await self.persistence.log_notification(
            NotificationLog(
                search_id=search.id,
                result_id=result.id,
                sent_at=self._clock(),
                recipient=search.notifications.email,
                subject=subject,
                new_availabilities=len(result.changes.new),
                removed_availabilities=len(result.changes.removed),
                success=error is None,
                error=error,
            )
        )

    async def _update_execution(
        self,
        execution: SearchExecution,
        on_progress: Optional[ProgressCallback],
        **updates,
    ) -> None:
        await self.persistence.update_execution(execution.id, **updates)
        for field, value in updates.items():
            setattr(execution, field, value)
        self._emit(on_progress, execution)

    @staticmethod
    def _emit(on_progress: Optional[ProgressCallback], execution: SearchExecution) -> None:
        if on_progress is None:
            return
        try:
            on_progress(execution.model_copy())
        except Exception as e:
            logger.warning(f"Progress callback failed for execution {execution.id}: {e}")

    async def execute_all_due_searches(self) -> Dict[str, int]:
        """Run every due search one after another. Per-search failures are logged and counted."""
        searches = await self.persistence.get_searches_due_for_execution(self._clock())
        logger.info(f"Found {len(searches)} searches due for execution")

        summary = {"executed": 0, "failed": 0}
        for search in searches:
            try:
                await self.execute_search(search.id)
                summary["executed"] += 1
            except Exception as e:
                logger.error(f"Failed to execute search {search.id}: {e}")
                summary["failed"] += 1

        return summary
