"""On-demand triggers. Both endpoints return immediately; the work runs in the background."""
from fastapi import APIRouter, BackgroundTasks, Depends
import logging

from parkwatch.api.deps import get_persistence
from parkwatch.api.searches import require_search
from parkwatch.services.execution_registry import ExecutionRegistry
from parkwatch.services.persistence import PersistenceAdapter
from parkwatch.services.runtime import get_executor, get_registry
from parkwatch.services.search_executor import SearchExecutor

logger = logging.getLogger(__name__)

router = APIRouter()


async def run_all_due_searches(executor: SearchExecutor):
    try:
        summary = await executor.execute_all_due_searches()
        logger.info(f"Due searches finished: {summary}")
    except Exception as e:
        logger.error(f"Failed to execute all due searches: {e}")


@router.post("/{search_id}", status_code=202)
async def execute_search(
    search_id: int,
    persistence: PersistenceAdapter = Depends(get_persistence),
    registry: ExecutionRegistry = Depends(get_registry),
):
    await require_search(persistence, search_id)

    task = registry.start(search_id)
    execution_id = await registry.wait_for_execution_id(task)

    return {
        "message": "Search execution started",
        "search_id": search_id,
        "execution_id": execution_id,
    }


@router.post("", status_code=202)
async def execute_due_searches(
    background_tasks: BackgroundTasks,
    executor: SearchExecutor = Depends(get_executor),
):
    background_tasks.add_task(run_all_due_searches, executor)
    return {"message": "Execution of all due searches started"}
