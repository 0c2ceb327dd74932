from fastapi import APIRouter, Depends, HTTPException
import logging

from parkwatch.api.deps import get_persistence
from parkwatch.models.execution import ExecutionStatus
from parkwatch.schemas import SearchExecution
from parkwatch.services.execution_registry import ExecutionRegistry
from parkwatch.services.persistence import PersistenceAdapter
from parkwatch.services.runtime import get_registry
from parkwatch.services.search_executor import CANCELLED_MESSAGE
from parkwatch.utils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter()


async def _require_execution(persistence: PersistenceAdapter, execution_id: int) -> SearchExecution:
    execution = await persistence.get_execution(execution_id)
    if execution is None:
        raise HTTPException(status_code=404, detail=f"Execution {execution_id} not found")
    return execution


@router.get("/{execution_id}")
async def get_execution(execution_id: int, persistence: PersistenceAdapter = Depends(get_persistence)):
    execution = await _require_execution(persistence, execution_id)
    progress = (
        round(execution.completed_checks / execution.total_checks * 100, 1)
        if execution.total_checks
        else 0.0
    )
    return {**execution.model_dump(mode="json"), "progress_percent": progress}


@router.post("/{execution_id}/cancel")
async def cancel_execution(
    execution_id: int,
    persistence: PersistenceAdapter = Depends(get_persistence),
    registry: ExecutionRegistry = Depends(get_registry),
):
    """
    Stop a running execution.

    Runs owned by this process stop before their next probe and keep their
    partial result. A record left "running" by a dead process is closed directly.
    """
    execution = await _require_execution(persistence, execution_id)
    if execution.status.is_terminal:
        raise HTTPException(
            status_code=409,
            detail=f"Execution {execution_id} already {execution.status.value}",
        )

    if registry.cancel(execution_id):
        return {"execution_id": execution_id, "status": "cancelling"}

    logger.warning(f"Execution {execution_id} is not running in this process, closing record")
    await persistence.update_execution(
        execution_id,
        status=ExecutionStatus.CANCELLED,
        completed_at=utcnow(),
        error=CANCELLED_MESSAGE,
    )
    return {"execution_id": execution_id, "status": ExecutionStatus.CANCELLED.value}
