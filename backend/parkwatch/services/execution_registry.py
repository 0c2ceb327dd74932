"""
In-flight execution tracking for fire-and-forget runs.

HTTP handlers start a search without waiting for it; the registry keeps the
background task and its cancel event keyed by execution id so the run can be
looked up or cancelled later.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from parkwatch.schemas import SearchExecution

logger = logging.getLogger(__name__)

EXECUTION_ID_TIMEOUT_SECONDS = 10.0


@dataclass
class _RunningExecution:
    search_id: int
    task: Optional[asyncio.Task] = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    execution_id_known: asyncio.Event = field(default_factory=asyncio.Event)
    execution_id: Optional[int] = None
    latest: Optional[SearchExecution] = None


class ExecutionRegistry:
    def __init__(self, executor):
        self.executor = executor
        self._by_execution_id: Dict[int, _RunningExecution] = {}
        self._pending: List[_RunningExecution] = []

    def start(self, search_id: int) -> asyncio.Task:
        """Launch execute_search in the background and return its task."""
        entry = _RunningExecution(search_id=search_id)

        def on_progress(execution: SearchExecution) -> None:
            entry.latest = execution
            if entry.execution_id is None and execution.id is not None:
                entry.execution_id = execution.id
                self._by_execution_id[execution.id] = entry
                entry.execution_id_known.set()

        entry.task = asyncio.create_task(
            self.executor.execute_search(
                search_id,
                cancel_event=entry.cancel_event,
                on_progress=on_progress,
            )
        )
        entry.task.add_done_callback(lambda task: self._finished(entry, task))
        self._pending.append(entry)
        logger.info(f"Started background execution for search {search_id}")
        return entry.task

    async def wait_for_execution_id(self, task: asyncio.Task, timeout: float = EXECUTION_ID_TIMEOUT_SECONDS) -> Optional[int]:
        """
        Execution id of a task returned by start(), once the run has created its record.

        None if the run ended (e.g. unknown search) before an execution existed.
        """
        entry = next((e for e in self._pending if e.task is task), None)
        if entry is None:
            entry = next((e for e in self._by_execution_id.values() if e.task is task), None)
        if entry is None:
            return None
        if entry.execution_id is not None:
            return entry.execution_id

        known = asyncio.ensure_future(entry.execution_id_known.wait())
        try:
            await asyncio.wait({known, task}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            known.cancel()
        return entry.execution_id

    def _finished(self, entry: _RunningExecution, task: asyncio.Task) -> None:
        if entry in self._pending:
            self._pending.remove(entry)
        if entry.execution_id is not None:
            self._by_execution_id.pop(entry.execution_id, None)

        if task.cancelled():
            logger.info(f"Background execution for search {entry.search_id} was cancelled")
        elif task.exception() is not None:
            logger.error(
                f"Background execution for search {entry.search_id} failed: {task.exception()}"
            )

    def cancel(self, execution_id: int) -> bool:
        """Ask a running execution to stop before its next probe. False if it is not running here."""
        entry = self._by_execution_id.get(execution_id)
        if entry is None:
            return False
        entry.cancel_event.set()
        logger.info(f"Cancellation requested for execution {execution_id}")
        return True

    def get_task(self, execution_id: int) -> Optional[asyncio.Task]:
        entry = self._by_execution_id.get(execution_id)
        return entry.task if entry else None

    def get_progress(self, execution_id: int) -> Optional[SearchExecution]:
        entry = self._by_execution_id.get(execution_id)
        return entry.latest if entry else None

    def active_execution_ids(self) -> List[int]:
        return list(self._by_execution_id)
