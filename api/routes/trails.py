"""
Trail retrieval endpoint with pagination and filtering
"""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_, or_
from typing import Optional
import time
import math
import logging

from api.dependencies import get_db
from models.base import Difficulty
from models.trail import Trail
from schemas.api import TrailListResponse, TrailResponse, PaginationMetadata

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Trails"])

SORT_COLUMNS = {
    "name": Trail.name,
    "length_km": Trail.length_km,
    "elevation_gain": Trail.elevation_gain,
    "created_at": Trail.created_at,
    "updated_at": Trail.updated_at,
}


@router.get("/trails", response_model=TrailListResponse)
async def list_trails(
    request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=1000, description="Items per page"),
    source: Optional[str] = Query(None, description="Filter by provider tag"),
    difficulty: Optional[Difficulty] = Query(None, description="Filter by difficulty"),
    state: Optional[str] = Query(None, description="Filter by state/province code"),
    search: Optional[str] = Query(None, description="Search in name and location"),
    sort_by: str = Query("updated_at", pattern="^(name|length_km|elevation_gain|created_at|updated_at)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: AsyncSession = Depends(get_db)
):
    """
    Retrieve paginated and filtered imported trails.

    Features:
    - Pagination
    - Source, difficulty and state filters
    - Name/location search
    """
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "-")

    logger.info(
        f"[{request_id}] GET /trails - page={page}, page_size={page_size}, "
        f"filters: source={source}, difficulty={difficulty}, state={state}, search={search}"
    )

    filters = []

    if source:
        filters.append(Trail.source == source)

    if difficulty:
        filters.append(Trail.difficulty == difficulty)

    if state:
        filters.append(Trail.state_province == state.upper())

    if search:
        filters.append(or_(
            Trail.name.ilike(f"%{search}%"),
            Trail.location.ilike(f"%{search}%")
        ))

    # Get total count
    count_query = select(func.count()).select_from(Trail)
    if filters:
        count_query = count_query.where(and_(*filters))
    total_items = (await db.execute(count_query)).scalar()

    # Calculate pagination
    total_pages = math.ceil(total_items / page_size) if total_items > 0 else 0
    offset = (page - 1) * page_size

    column = SORT_COLUMNS[sort_by]
    query = select(Trail)
    if filters:
        query = query.where(and_(*filters))
    query = query.order_by(column.asc() if sort_order == "asc" else column.desc(), Trail.source_id)
    query = query.offset(offset).limit(page_size)

    result = await db.execute(query)
    items = [TrailResponse.model_validate(trail) for trail in result.scalars().all()]

    api_latency_ms = (time.time() - start_time) * 1000
    logger.info(f"[{request_id}] Returned {len(items)} trails ({api_latency_ms:.2f}ms)")

    return TrailListResponse(
        items=items,
        pagination=PaginationMetadata(
            current_page=page,
            page_size=page_size,
            total_items=total_items,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_previous=page > 1
        ),
        filters_applied={k: v for k, v in {
            "source": source,
            "difficulty": difficulty.value if difficulty else None,
            "state": state,
            "search": search,
        }.items() if v is not None}
    )
