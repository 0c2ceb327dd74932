"""Tests for the search execution engine with a fake booking API and real SQLite storage."""
import asyncio
from datetime import date, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from conftest import make_availability, make_search
from parkwatch.exceptions import NotFoundError, NotificationError, PersistenceError
from parkwatch.models.execution import ExecutionStatus
from parkwatch.models.search import ScheduleFrequency
from parkwatch.schemas import DateRange, NotificationSettings, SearchSchedule
from parkwatch.services.search_executor import CANCELLED_MESSAGE, calculate_next_run
from parkwatch.utils import utcnow


def offer_for(check_in, check_out):
    return [make_availability(date_from=check_in, date_to=check_out)]


def three_cell_search(**overrides):
    # 2024-06-01..05 with 2-night stays: 06-01/03, 06-02/04, 06-03/05
    return make_search(
        date_ranges=[DateRange(date_from=date(2024, 6, 1), date_to=date(2024, 6, 5))],
        **overrides,
    )


class ProgressRecorder:
    def __init__(self):
        self.snapshots = []

    def __call__(self, execution):
        self.snapshots.append(execution)

    @property
    def execution_id(self):
        return self.snapshots[0].id

    @property
    def last(self):
        return self.snapshots[-1]


class TestExecuteSearch:
    async def test_first_run_finds_and_notifies(self, executor, persistence, booking_client, notifier):
        search_id = await persistence.create_search(make_search())
        booking_client.handler = offer_for
        progress = ProgressRecorder()

        result = await executor.execute_search(search_id, on_progress=progress)

        assert len(result.availabilities) == 1
        assert len(result.changes.new) == 1
        assert result.changes.removed == []
        assert result.notification_sent is True
        notifier.send_notification.assert_awaited_once()
        assert booking_client.calls == [("2024-06-01", "2024-06-03", None, None)]

        stored = await persistence.get_latest_search_result(search_id)
        assert stored.id == result.id
        assert stored.notification_sent is True

        execution = await persistence.get_execution(progress.execution_id)
        assert execution.status == ExecutionStatus.COMPLETED
        assert (execution.total_checks, execution.completed_checks, execution.found_availabilities) == (1, 1, 1)
        assert execution.completed_at is not None
        assert progress.snapshots[0].status == ExecutionStatus.PENDING
        assert progress.snapshots[1].status == ExecutionStatus.RUNNING
        assert progress.last.status == ExecutionStatus.COMPLETED

        [log] = await persistence.get_notification_logs(search_id)
        assert log.success is True
        assert log.result_id == result.id
        assert log.recipient == "user@example.com"
        assert log.subject == "Holiday Park - Summer - 1 new availabilities!"
        assert log.new_availabilities == 1

    async def test_reschedules_after_run(self, executor, persistence):
        search_id = await persistence.create_search(make_search())

        await executor.execute_search(search_id)

        search = await persistence.get_search(search_id)
        assert search.schedule.last_run is not None
        assert search.schedule.next_run == search.schedule.last_run + timedelta(hours=1)

    async def test_filters_passed_to_booking_api(self, executor, persistence, booking_client):
        search_id = await persistence.create_search(make_search(resorts=[1, 5], accommodation_types=[2]))

        await executor.execute_search(search_id)

        assert booking_client.calls == [("2024-06-01", "2024-06-03", [1, 5], [2])]

    async def test_second_run_diffs_against_first(self, executor, persistence, booking_client):
        search_id = await persistence.create_search(three_cell_search())
        booking_client.handler = offer_for
        await executor.execute_search(search_id)

        # 06-01 offer disappears, everything else stays
        booking_client.handler = lambda ci, co: [] if ci == "2024-06-01" else offer_for(ci, co)
        result = await executor.execute_search(search_id)

        assert len(result.availabilities) == 2
        assert result.changes.new == []
        assert [a.date_from for a in result.changes.removed] == ["2024-06-01"]

    async def test_only_changes_suppresses_unchanged_notification(self, executor, persistence, booking_client, notifier):
        search_id = await persistence.create_search(
            make_search(notifications=NotificationSettings(email="user@example.com", only_changes=True))
        )
        booking_client.handler = offer_for

        first = await executor.execute_search(search_id)
        second = await executor.execute_search(search_id)

        assert first.notification_sent is True
        assert second.notification_sent is False
        assert notifier.send_notification.await_count == 1
        assert len(await persistence.get_notification_logs(search_id)) == 1

    async def test_unchanged_results_still_notify_without_only_changes(self, executor, persistence, booking_client, notifier):
        search_id = await persistence.create_search(make_search())
        booking_client.handler = offer_for

        await executor.execute_search(search_id)
        await executor.execute_search(search_id)

        assert notifier.send_notification.await_count == 2
        logs = await persistence.get_notification_logs(search_id)
        assert logs[0].subject == "Holiday Park - Summer - 1 available"

    async def test_no_email_means_no_notification(self, executor, persistence, booking_client, notifier):
        search_id = await persistence.create_search(make_search(notifications=NotificationSettings()))
        booking_client.handler = offer_for

        result = await executor.execute_search(search_id)

        assert result.notification_sent is False
        notifier.send_notification.assert_not_awaited()
        assert await persistence.get_notification_logs(search_id) == []

    async def test_notification_failure_is_logged_not_raised(self, executor, persistence, booking_client, notifier):
        search_id = await persistence.create_search(make_search())
        booking_client.handler = offer_for
        notifier.send_notification.side_effect = NotificationError("smtp down")
        progress = ProgressRecorder()

        result = await executor.execute_search(search_id, on_progress=progress)

        assert result.notification_sent is False
        assert (await persistence.get_latest_search_result(search_id)).notification_sent is False
        [log] = await persistence.get_notification_logs(search_id)
        assert log.success is False
        assert log.error == "smtp down"
        assert progress.last.status == ExecutionStatus.COMPLETED

    async def test_failed_probe_is_skipped(self, executor, persistence, booking_client):
        search_id = await persistence.create_search(three_cell_search())

        def handler(check_in, check_out):
            if check_in == "2024-06-02":
                raise RuntimeError("HTTP 503")
            return offer_for(check_in, check_out)

        booking_client.handler = handler
        progress = ProgressRecorder()

        result = await executor.execute_search(search_id, on_progress=progress)

        assert [a.date_from for a in result.availabilities] == ["2024-06-01", "2024-06-03"]
        # three attempts for the failing cell
        assert len(booking_client.calls) == 5
        execution = await persistence.get_execution(progress.execution_id)
        assert execution.status == ExecutionStatus.COMPLETED
        assert (execution.total_checks, execution.completed_checks, execution.found_availabilities) == (3, 3, 2)

    async def test_progress_counters_only_grow(self, executor, persistence, booking_client):
        search_id = await persistence.create_search(three_cell_search())
        booking_client.handler = offer_for
        progress = ProgressRecorder()

        await executor.execute_search(search_id, on_progress=progress)

        completed = [s.completed_checks for s in progress.snapshots]
        found = [s.found_availabilities for s in progress.snapshots]
        assert completed == sorted(completed)
        assert found == sorted(found)
        assert all(s.total_checks == 3 for s in progress.snapshots[2:])

    async def test_broken_progress_callback_does_not_stop_run(self, executor, persistence):
        search_id = await persistence.create_search(make_search())

        def explode(execution):
            raise RuntimeError("listener gone")

        result = await executor.execute_search(search_id, on_progress=explode)

        assert result.id is not None

    async def test_empty_grid_completes_with_no_probes(self, executor, persistence, booking_client):
        search_id = await persistence.create_search(make_search(stay_lengths=[5]))
        progress = ProgressRecorder()

        result = await executor.execute_search(search_id, on_progress=progress)

        assert result.availabilities == []
        assert booking_client.calls == []
        assert progress.last.total_checks == 0
        assert progress.last.status == ExecutionStatus.COMPLETED

    async def test_missing_search_raises(self, executor, booking_client):
        with pytest.raises(NotFoundError):
            await executor.execute_search(999)
        assert booking_client.calls == []

    async def test_storage_failure_marks_execution_failed(self, executor, persistence, notifier):
        search_id = await persistence.create_search(make_search())
        persistence.save_search_result = AsyncMock(side_effect=PersistenceError("disk full"))
        progress = ProgressRecorder()

        with pytest.raises(PersistenceError):
            await executor.execute_search(search_id, on_progress=progress)

        execution = await persistence.get_execution(progress.execution_id)
        assert execution.status == ExecutionStatus.FAILED
        assert execution.error == "disk full"
        notifier.send_error.assert_awaited_once()
        assert (await persistence.get_search(search_id)).schedule.last_run is None

    async def test_failing_error_notification_keeps_original_error(self, executor, persistence, notifier):
        search_id = await persistence.create_search(make_search())
        persistence.save_search_result = AsyncMock(side_effect=PersistenceError("disk full"))
        notifier.send_error.side_effect = RuntimeError("mail template broken")

        with pytest.raises(PersistenceError, match="disk full"):
            await executor.execute_search(search_id)

    async def test_bookkeeping_failures_after_save_do_not_fail_run(self, executor, persistence, booking_client, notifier):
        search_id = await persistence.create_search(make_search())
        booking_client.handler = offer_for
        persistence.update_search_schedule = AsyncMock(side_effect=PersistenceError("db locked"))
        persistence.log_notification = AsyncMock(side_effect=PersistenceError("db locked"))
        progress = ProgressRecorder()

        result = await executor.execute_search(search_id, on_progress=progress)

        assert result.id is not None
        assert len(result.availabilities) == 1
        assert result.notification_sent is True
        notifier.send_notification.assert_awaited_once()
        persistence.update_search_schedule.assert_awaited_once()
        execution = await persistence.get_execution(progress.execution_id)
        assert execution.status == ExecutionStatus.COMPLETED


class TestCancellation:
    async def test_cancel_between_probes_keeps_partial_result(self, executor, persistence, booking_client, notifier):
        search_id = await persistence.create_search(three_cell_search())
        cancel = asyncio.Event()

        def handler(check_in, check_out):
            cancel.set()
            return offer_for(check_in, check_out)

        booking_client.handler = handler
        progress = ProgressRecorder()

        result = await executor.execute_search(search_id, cancel_event=cancel, on_progress=progress)

        assert len(booking_client.calls) == 1
        assert result.error == CANCELLED_MESSAGE
        assert len(result.availabilities) == 1
        assert result.changes.new == [] and result.changes.removed == []
        notifier.send_notification.assert_not_awaited()

        execution = await persistence.get_execution(progress.execution_id)
        assert execution.status == ExecutionStatus.CANCELLED
        assert execution.error == CANCELLED_MESSAGE
        assert execution.completed_checks == 1
        assert (await persistence.get_search(search_id)).schedule.last_run is None

    async def test_cancel_before_start_probes_nothing(self, executor, persistence, booking_client):
        search_id = await persistence.create_search(three_cell_search())
        cancel = asyncio.Event()
        cancel.set()

        result = await executor.execute_search(search_id, cancel_event=cancel)

        assert booking_client.calls == []
        assert result.availabilities == []
        assert result.error == CANCELLED_MESSAGE

    async def test_cancelled_result_is_not_a_diff_baseline(self, executor, persistence, booking_client):
        search_id = await persistence.create_search(make_search())
        booking_client.handler = offer_for
        await executor.execute_search(search_id)

        cancel = asyncio.Event()
        cancel.set()
        await executor.execute_search(search_id, cancel_event=cancel)

        result = await executor.execute_search(search_id)

        assert result.changes.new == []
        assert result.changes.removed == []

    async def test_cancel_during_last_probe_completes_normally(self, executor, persistence, booking_client, notifier):
        search_id = await persistence.create_search(make_search())
        cancel = asyncio.Event()

        def handler(check_in, check_out):
            cancel.set()
            return offer_for(check_in, check_out)

        booking_client.handler = handler

        result = await executor.execute_search(search_id, cancel_event=cancel)

        assert result.error is None
        assert len(result.changes.new) == 1
        notifier.send_notification.assert_awaited_once()
        assert (await persistence.get_search(search_id)).schedule.last_run is not None


class TestExecuteAllDue:
    async def test_runs_only_due_enabled_searches(self, executor, persistence, booking_client):
        future = utcnow() + timedelta(days=1)
        due_ids = [
            await persistence.create_search(make_search(name="a")),
            await persistence.create_search(make_search(name="b")),
        ]
        await persistence.create_search(make_search(name="later", schedule=SearchSchedule(next_run=future)))
        await persistence.create_search(make_search(name="off", enabled=False))

        summary = await executor.execute_all_due_searches()

        assert summary == {"executed": 2, "failed": 0}
        for search_id in due_ids:
            assert await persistence.get_latest_search_result(search_id) is not None


class TestCalculateNextRun:
    NOW = datetime(2024, 5, 1, 14, 25)

    @pytest.mark.parametrize(
        "frequency,expected",
        [
            (ScheduleFrequency.EVERY_30_MIN, datetime(2024, 5, 1, 14, 55)),
            (ScheduleFrequency.HOURLY, datetime(2024, 5, 1, 15, 25)),
            (ScheduleFrequency.EVERY_2_HOURS, datetime(2024, 5, 1, 16, 25)),
            (ScheduleFrequency.EVERY_4_HOURS, datetime(2024, 5, 1, 18, 25)),
            (ScheduleFrequency.DAILY, datetime(2024, 5, 2, 9, 0)),
            ("daily", datetime(2024, 5, 2, 9, 0)),
        ],
    )
    def test_frequencies(self, frequency, expected):
        assert calculate_next_run(frequency, self.NOW) == expected

    def test_unknown_frequency_falls_back_to_hourly(self):
        assert calculate_next_run("weekly", self.NOW) == datetime(2024, 5, 1, 15, 25)
