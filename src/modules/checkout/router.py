"""API endpoints for Checkout module."""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database.session import get_db
from src.modules.checkout.bed_release import BedReleaseHandler, get_bed_release_handler
from src.modules.checkout.schemas import (
    CheckoutFilters,
    CheckoutHistoryItem,
    CheckoutRequest,
    CheckoutResult,
    CheckoutSettlement,
    CheckoutStats,
)
from src.modules.checkout.service import CheckoutService
from src.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/checkout", tags=["Checkout"])


@router.get(
    "/history",
    response_model=ApiResponse[PaginatedResponse[CheckoutHistoryItem]],
)
async def list_checkouts(
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    search: str | None = Query(None, description="Student id, name or room"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    filters = CheckoutFilters(
        date_from=date_from,
        date_to=date_to,
        search=search,
        page=page,
        limit=limit,
    )
    items, total = await CheckoutService(db).list_checkouts(filters)
    return ApiResponse(
        data=PaginatedResponse.create(items=items, total=total, page=page, limit=limit)
    )


@router.get("/stats", response_model=ApiResponse[CheckoutStats])
async def get_checkout_stats(db: AsyncSession = Depends(get_db)):
    return ApiResponse(data=await CheckoutService(db).get_stats())


@router.get(
    "/{student_id}/preview",
    response_model=ApiResponse[CheckoutSettlement],
)
async def preview_checkout(
    student_id: str,
    checkout_date: date | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Settlement a checkout on the given date would produce. Nothing is written."""
    settlement = await CheckoutService(db).compute_checkout_preview(student_id, checkout_date)
    return ApiResponse(data=settlement, message=settlement.summary)


@router.post(
    "/{student_id}",
    response_model=ApiResponse[CheckoutResult],
)
async def process_checkout(
    student_id: str,
    data: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    bed_release: BedReleaseHandler = Depends(get_bed_release_handler),
):
    """Settle the account, deactivate the student and release the bed."""
    result = await CheckoutService(db, bed_release).process_checkout(student_id, data)
    return ApiResponse(data=result, message=result.message)
