"""
External scheduler hook.

An outside cron (Cloud Scheduler, systemd timer, ...) can drive ticks instead of
the in-process APScheduler job. Requests must carry X-Scheduler-Token.
"""
from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException
from pydantic import BaseModel
from typing import Optional
import logging

from parkwatch.api.deps import get_persistence
from parkwatch.api.searches import require_search
from parkwatch.config import get_settings
from parkwatch.scheduler import run_scheduler_tick
from parkwatch.services.persistence import PersistenceAdapter
from parkwatch.services.runtime import get_executor
from parkwatch.services.search_executor import SearchExecutor

logger = logging.getLogger(__name__)

router = APIRouter()


class SchedulerWebhookPayload(BaseModel):
    search_id: Optional[int] = None


async def run_tick_in_background(executor: SearchExecutor, persistence: PersistenceAdapter, search_id: Optional[int]):
    try:
        await run_scheduler_tick(executor, persistence, search_id=search_id)
    except Exception as e:
        logger.error(f"Scheduled execution failed: {e}")


@router.post("/scheduler", status_code=202)
async def scheduler_webhook(
    background_tasks: BackgroundTasks,
    payload: Optional[SchedulerWebhookPayload] = None,
    search_id: Optional[int] = None,
    x_scheduler_token: Optional[str] = Header(None),
    persistence: PersistenceAdapter = Depends(get_persistence),
    executor: SearchExecutor = Depends(get_executor),
):
    secret = get_settings().scheduler_secret
    if not secret or x_scheduler_token != secret:
        logger.warning("Unauthorized scheduler webhook attempt")
        raise HTTPException(status_code=401, detail="Unauthorized")

    target = (payload.search_id if payload else None) or search_id
    if target is not None:
        await require_search(persistence, target)

    background_tasks.add_task(run_tick_in_background, executor, persistence, target)
    return {"message": "Scheduled execution started", "search_id": target}
