"""Stored results and notification history of a search."""
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List

from parkwatch.api.deps import get_persistence
from parkwatch.api.searches import require_search
from parkwatch.schemas import NotificationLog, SearchResult
from parkwatch.services.persistence import PersistenceAdapter

router = APIRouter()


@router.get("/{search_id}/results", response_model=List[SearchResult])
async def list_results(
    search_id: int,
    limit: int = Query(10, ge=1, le=100),
    persistence: PersistenceAdapter = Depends(get_persistence),
):
    await require_search(persistence, search_id)
    return await persistence.get_search_results(search_id, limit=limit)


@router.get("/{search_id}/results/latest", response_model=SearchResult)
async def latest_result(search_id: int, persistence: PersistenceAdapter = Depends(get_persistence)):
    await require_search(persistence, search_id)
    result = await persistence.get_latest_search_result(search_id)
    if result is None:
        raise HTTPException(status_code=404, detail=f"No results for search {search_id}")
    return result


@router.get("/{search_id}/notifications", response_model=List[NotificationLog])
async def list_notifications(
    search_id: int,
    limit: int = Query(50, ge=1, le=500),
    persistence: PersistenceAdapter = Depends(get_persistence),
):
    await require_search(persistence, search_id)
    return await persistence.get_notification_logs(search_id, limit=limit)
