from fastapi import APIRouter, Depends, HTTPException
from typing import List, Optional
import logging

from parkwatch.api.deps import get_persistence
from parkwatch.exceptions import NotFoundError
from parkwatch.schemas import Search, SearchCreate, SearchUpdate
from parkwatch.services.persistence import PersistenceAdapter

logger = logging.getLogger(__name__)

router = APIRouter()


async def require_search(persistence: PersistenceAdapter, search_id: int) -> Search:
    search = await persistence.get_search(search_id)
    if search is None:
        raise HTTPException(status_code=404, detail=f"Search {search_id} not found")
    return search


@router.get("", response_model=List[Search])
async def list_searches(
    enabled: Optional[bool] = None,
    persistence: PersistenceAdapter = Depends(get_persistence),
):
    return await persistence.get_all_searches(enabled=enabled)


@router.post("", response_model=Search, status_code=201)
async def create_search(
    payload: SearchCreate,
    persistence: PersistenceAdapter = Depends(get_persistence),
):
    search_id = await persistence.create_search(payload.to_search())
    logger.info(f"Search {search_id} created via API: {payload.name}")
    return await persistence.get_search(search_id)


@router.get("/{search_id}", response_model=Search)
async def get_search(search_id: int, persistence: PersistenceAdapter = Depends(get_persistence)):
    return await require_search(persistence, search_id)


@router.put("/{search_id}", response_model=Search)
async def update_search(
    search_id: int,
    payload: SearchUpdate,
    persistence: PersistenceAdapter = Depends(get_persistence),
):
    try:
        return await persistence.update_search(search_id, payload)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/{search_id}")
async def delete_search(search_id: int, persistence: PersistenceAdapter = Depends(get_persistence)):
    try:
        await persistence.delete_search(search_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"deleted": True, "id": search_id}
