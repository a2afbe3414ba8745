"""API endpoints for Ledger module."""

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database.session import get_db
from src.modules.ledger.models import EntryType
from src.modules.ledger.schemas import (
    AdjustmentCreate,
    ChargeCreate,
    DiscountCreate,
    LedgerEntryResponse,
    LedgerFilters,
    LedgerStats,
    OpenItemsResponse,
    ReversalResult,
    ReverseEntryRequest,
    StudentBalance,
    StudentFinancialSummary,
    StudentLedgerResponse,
)
from src.modules.ledger.service import LedgerService
from src.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/ledger", tags=["Ledger"])


# --- Queries ---


@router.get(
    "",
    response_model=ApiResponse[PaginatedResponse[LedgerEntryResponse]],
)
async def list_entries(
    student_id: str | None = Query(None),
    entry_type: EntryType | None = Query(None),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    search: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """List ledger entries, newest first."""
    filters = LedgerFilters(
        student_id=student_id,
        entry_type=entry_type,
        date_from=date_from,
        date_to=date_to,
        search=search,
        page=page,
        limit=limit,
    )
    entries, total = await LedgerService(db).list_entries(filters)
    return ApiResponse(
        data=PaginatedResponse.create(
            items=[LedgerEntryResponse.model_validate(e) for e in entries],
            total=total,
            page=page,
            limit=limit,
        )
    )


@router.get("/stats", response_model=ApiResponse[LedgerStats])
async def get_stats(db: AsyncSession = Depends(get_db)):
    return ApiResponse(data=await LedgerService(db).get_stats())


@router.get(
    "/students/{student_id}",
    response_model=ApiResponse[StudentLedgerResponse],
)
async def get_student_ledger(
    student_id: str,
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    entry_type: EntryType | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Student statement with running balances."""
    ledger = await LedgerService(db).get_student_ledger(
        student_id, date_from=date_from, date_to=date_to, entry_type=entry_type
    )
    return ApiResponse(data=ledger)


@router.get(
    "/students/{student_id}/balance",
    response_model=ApiResponse[StudentBalance],
)
async def get_student_balance(student_id: str, db: AsyncSession = Depends(get_db)):
    return ApiResponse(data=await LedgerService(db).get_student_balance(student_id))


@router.get(
    "/students/{student_id}/financial-summary",
    response_model=ApiResponse[StudentFinancialSummary],
)
async def get_financial_summary(student_id: str, db: AsyncSession = Depends(get_db)):
    return ApiResponse(data=await LedgerService(db).get_financial_summary(student_id))


@router.get(
    "/students/{student_id}/outstanding",
    response_model=ApiResponse[OpenItemsResponse],
)
async def get_open_items(student_id: str, db: AsyncSession = Depends(get_db)):
    """Unpaid debits and unapplied credits."""
    return ApiResponse(data=await LedgerService(db).get_open_items(student_id))


# --- Mutations ---


@router.post(
    "/adjustments",
    response_model=ApiResponse[LedgerEntryResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_adjustment(data: AdjustmentCreate, db: AsyncSession = Depends(get_db)):
    entry = await LedgerService(db).create_adjustment(data)
    return ApiResponse(
        data=LedgerEntryResponse.model_validate(entry),
        message="Adjustment recorded",
    )


@router.post(
    "/discounts",
    response_model=ApiResponse[LedgerEntryResponse],
    status_code=status.HTTP_201_CREATED,
)
async def apply_discount(data: DiscountCreate, db: AsyncSession = Depends(get_db)):
    entry = await LedgerService(db).apply_discount(data)
    return ApiResponse(
        data=LedgerEntryResponse.model_validate(entry),
        message="Discount applied",
    )


@router.post(
    "/charges",
    response_model=ApiResponse[LedgerEntryResponse],
    status_code=status.HTTP_201_CREATED,
)
async def add_charge(data: ChargeCreate, db: AsyncSession = Depends(get_db)):
    entry = await LedgerService(db).add_charge(data)
    return ApiResponse(
        data=LedgerEntryResponse.model_validate(entry),
        message="Charge added",
    )


@router.post(
    "/{entry_id}/reverse",
    response_model=ApiResponse[ReversalResult],
    status_code=status.HTTP_201_CREATED,
)
async def reverse_entry(
    entry_id: int,
    data: ReverseEntryRequest,
    db: AsyncSession = Depends(get_db),
):
    """Cancel an entry with an opposite adjustment."""
    original, reversal = await LedgerService(db).reverse_entry(entry_id, data)
    return ApiResponse(
        data=ReversalResult(
            original_entry=LedgerEntryResponse.model_validate(original),
            reversal_entry=LedgerEntryResponse.model_validate(reversal),
        ),
        message=f"Entry {original.entry_number} reversed",
    )
