"""Record routes: adapter ingestion and the read-only categorization view."""

from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from rulebook.api.deps import get_db, get_managed_restaurant, get_restaurant
from rulebook.models.restaurant import Restaurant
from rulebook.schemas.record import CategoryOverride, RecordCreate, RecordResponse
from rulebook.services.record_service import RecordService

router = APIRouter()


@router.post("", response_model=RecordResponse, status_code=201)
async def create_record(
    data: RecordCreate,
    restaurant: Restaurant = Depends(get_restaurant),
    db: AsyncSession = Depends(get_db),
):
    """Insert a normalized record; auto-apply rules run before the response."""
    return await RecordService(db).create_record(restaurant.id, data)


@router.get("", response_model=list[RecordResponse])
async def list_records(
    source: Literal["bank", "pos"] | None = None,
    state: Literal["uncategorized", "categorized", "split", "manually_overridden"] | None = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    restaurant: Restaurant = Depends(get_restaurant),
    db: AsyncSession = Depends(get_db),
):
    return await RecordService(db).list_records(restaurant.id, source, state, limit, offset)


@router.get("/{record_id}", response_model=RecordResponse)
async def get_record(
    record_id: int,
    restaurant: Restaurant = Depends(get_restaurant),
    db: AsyncSession = Depends(get_db),
):
    service = RecordService(db)
    record = await service.get_record(restaurant.id, record_id)
    return await service.to_view(record)


@router.put("/{record_id}/category", response_model=RecordResponse)
async def override_record_category(
    record_id: int,
    data: CategoryOverride,
    restaurant: Restaurant = Depends(get_managed_restaurant),
    db: AsyncSession = Depends(get_db),
):
    """Manually categorize a record; rules never touch it afterwards."""
    return await RecordService(db).override_category(restaurant.id, record_id, data.category_id)
