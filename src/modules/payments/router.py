"""API endpoints for Payments module."""

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database.session import get_db
from src.modules.ledger.service import LedgerService
from src.modules.payments.models import PaymentMethod
from src.modules.payments.schemas import (
    PaymentCreate,
    PaymentFilters,
    PaymentRecorded,
    PaymentResponse,
)
from src.modules.payments.service import PaymentService
from src.shared.schemas.base import ApiResponse, PaginatedResponse
from src.shared.utils.money import format_money

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post(
    "",
    response_model=ApiResponse[PaymentRecorded],
    status_code=status.HTTP_201_CREATED,
)
async def record_payment(
    data: PaymentCreate,
    db: AsyncSession = Depends(get_db),
):
    """Record a payment and return the updated balance."""
    payment, entry = await PaymentService(db).record_payment(data)
    balance = await LedgerService(db).get_student_balance(data.student_id)
    return ApiResponse(
        data=PaymentRecorded(
            payment=PaymentResponse.model_validate(payment),
            ledger_entry_number=entry.entry_number,
            current_balance=balance.current_balance,
            balance_type=balance.balance_type,
        ),
        message=f"Payment of {format_money(payment.amount)} recorded",
    )


@router.get(
    "",
    response_model=ApiResponse[PaginatedResponse[PaymentResponse]],
)
async def list_payments(
    student_id: str | None = Query(None),
    payment_method: PaymentMethod | None = Query(None),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """List payments with optional filters."""
    filters = PaymentFilters(
        student_id=student_id,
        payment_method=payment_method,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    payments, total = await PaymentService(db).list_payments(filters)
    return ApiResponse(
        data=PaginatedResponse.create(
            items=[PaymentResponse.model_validate(p) for p in payments],
            total=total,
            page=page,
            limit=limit,
        )
    )


@router.get(
    "/{payment_id}",
    response_model=ApiResponse[PaymentResponse],
)
async def get_payment(
    payment_id: int,
    db: AsyncSession = Depends(get_db),
):
    payment = await PaymentService(db).get_payment_by_id(payment_id)
    return ApiResponse(data=PaymentResponse.model_validate(payment))
