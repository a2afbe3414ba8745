"""API endpoints for Billing module."""

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.database.session import get_db, get_session_factory
from src.modules.billing.models import MonthlyInvoiceStatus
from src.modules.billing.proration import ProrationMode, prorate
from src.modules.billing.schemas import (
    BillingPreview,
    BillingRun,
    BillingStats,
    GenerateMonthlyRequest,
    GenerateStudentRequest,
    GenerationResult,
    MonthlyInvoiceFilters,
    MonthlyInvoiceResponse,
    OverdueInvoice,
    ProrationResponse,
    StudentGenerationResult,
)
from src.modules.billing.service import BillingService, MonthlyInvoiceGenerator
from src.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/billing", tags=["Billing"])


# --- Generation ---


@router.post(
    "/generate-monthly",
    response_model=ApiResponse[GenerationResult],
)
async def generate_monthly_invoices(
    data: GenerateMonthlyRequest,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """
    Bill every active, configured student for the period.

    Students whose configuration date falls in the period are skipped (their
    advance covers it). Re-running is safe: billed students are skipped.
    """
    generator = MonthlyInvoiceGenerator(session_factory)
    result = await generator.generate_monthly_invoices(
        month=data.month,
        year=data.year,
        due_date=data.due_date,
        student_ids=data.student_ids,
        generated_by=data.generated_by,
    )
    return ApiResponse(
        data=result,
        message=(
            f"{result.period_label}: generated {result.generated}, "
            f"skipped {result.skipped}, failed {result.failed}"
        ),
    )


@router.post(
    "/generate-monthly/{student_id}",
    response_model=ApiResponse[StudentGenerationResult],
)
async def generate_for_student(
    student_id: str,
    data: GenerateStudentRequest,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    generator = MonthlyInvoiceGenerator(session_factory)
    result = await generator.generate_for_student(
        student_id,
        month=data.month,
        year=data.year,
        due_date=data.due_date,
        generated_by=data.generated_by,
    )
    return ApiResponse(data=result)


@router.get(
    "/preview/{month}/{year}",
    response_model=ApiResponse[BillingPreview],
)
async def preview_billing(
    month: int,
    year: int,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """What a run for the period would bill. Nothing is written."""
    generator = MonthlyInvoiceGenerator(session_factory)
    return ApiResponse(data=await generator.preview_billing(month, year))


# --- Invoices ---


@router.get(
    "/invoices",
    response_model=ApiResponse[PaginatedResponse[MonthlyInvoiceResponse]],
)
async def list_invoices(
    student_id: str | None = Query(None),
    year: int | None = Query(None),
    month: int | None = Query(None, ge=1, le=12),
    status: MonthlyInvoiceStatus | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    filters = MonthlyInvoiceFilters(
        student_id=student_id,
        year=year,
        month=month,
        status=status,
        page=page,
        limit=limit,
    )
    invoices, total = await BillingService(db).list_invoices(filters)
    return ApiResponse(
        data=PaginatedResponse.create(
            items=[MonthlyInvoiceResponse.model_validate(i) for i in invoices],
            total=total,
            page=page,
            limit=limit,
        )
    )


@router.get(
    "/invoices/overdue",
    response_model=ApiResponse[list[OverdueInvoice]],
)
async def list_overdue_invoices(
    as_of: date | None = Query(None, description="Defaults to today"),
    db: AsyncSession = Depends(get_db),
):
    """Issued invoices past their due date with an unpaid remainder."""
    overdue = await BillingService(db).list_overdue(as_of)
    return ApiResponse(data=overdue, message=f"{len(overdue)} overdue invoices")


@router.get(
    "/invoices/{invoice_id}",
    response_model=ApiResponse[MonthlyInvoiceResponse],
)
async def get_invoice(invoice_id: int, db: AsyncSession = Depends(get_db)):
    invoice = await BillingService(db).get_invoice_by_id(invoice_id)
    return ApiResponse(data=MonthlyInvoiceResponse.model_validate(invoice))


@router.get("/stats", response_model=ApiResponse[BillingStats])
async def get_billing_stats(db: AsyncSession = Depends(get_db)):
    return ApiResponse(data=await BillingService(db).get_stats())


@router.get(
    "/history",
    response_model=ApiResponse[PaginatedResponse[BillingRun]],
)
async def get_billing_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Past monthly batch runs, newest first."""
    runs, total = await BillingService(db).list_runs(page=page, limit=limit)
    return ApiResponse(
        data=PaginatedResponse.create(items=runs, total=total, page=page, limit=limit)
    )


# --- Proration ---


@router.get("/proration", response_model=ApiResponse[ProrationResponse])
async def calculate_proration(
    monthly_fee: Decimal = Query(..., ge=0),
    reference_date: date = Query(...),
    mode: ProrationMode = Query(ProrationMode.ENROLLMENT),
    already_paid: bool = Query(True),
):
    """Prorated amount (and refund, in checkout mode) for a date."""
    result = prorate(monthly_fee, reference_date, mode, already_paid=already_paid)
    return ApiResponse(data=ProrationResponse.model_validate(result))
