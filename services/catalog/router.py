"""
services/catalog/router.py
Public catalog browsing: hotels, flights, events.
"""

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import bookings_db
from shared.models.models import CatalogCategory, CatalogItem
from shared.schemas.schemas import CatalogItemResponse
from shared.utils.errors import NotFound

router = APIRouter(prefix="/services", tags=["Catalog"])


@router.get("", response_model=List[CatalogItemResponse])
async def list_catalog(
    type: Optional[CatalogCategory] = Query(None, description="hotel | flight | event"),
    location: Optional[str] = Query(None, max_length=255),
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    db: AsyncSession = Depends(bookings_db.get_db),
):
    """List catalog items, newest first. `location` is a case-insensitive substring match."""
    query = select(CatalogItem)
    if type:
        query = query.where(CatalogItem.category == type)
    if location:
        query = query.where(func.lower(CatalogItem.location).contains(location.lower()))
    if min_price is not None:
        query = query.where(CatalogItem.unit_price >= min_price)
    if max_price is not None:
        query = query.where(CatalogItem.unit_price <= max_price)

    result = await db.execute(query.order_by(CatalogItem.created_at.desc(), CatalogItem.id.desc()))
    return result.scalars().all()


@router.get("/{item_id}", response_model=CatalogItemResponse)
async def get_catalog_item(
    item_id: int,
    db: AsyncSession = Depends(bookings_db.get_db),
):
    item = await db.get(CatalogItem, item_id)
    if not item:
        raise NotFound("Service not found")
    return item
