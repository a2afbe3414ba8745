"""API endpoints for Students module."""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database.session import get_db
from src.modules.ledger.service import LedgerService
from src.modules.students.models import StudentStatus
from src.modules.students.schemas import (
    ConfigurationResult,
    FeeUpdate,
    StudentConfigure,
    StudentRegister,
    StudentResponse,
)
from src.modules.students.service import StudentService
from src.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/students", tags=["Students"])


@router.post(
    "",
    response_model=ApiResponse[StudentResponse],
    status_code=status.HTTP_201_CREATED,
)
async def register_student(
    data: StudentRegister,
    db: AsyncSession = Depends(get_db),
):
    """Create a billing profile for an admitted student."""
    service = StudentService(db)
    student = await service.register_student(data)
    return ApiResponse(
        success=True,
        message="Student registered successfully",
        data=StudentResponse.model_validate(student),
    )


@router.get(
    "",
    response_model=ApiResponse[PaginatedResponse[StudentResponse]],
)
async def list_students(
    status: StudentStatus | None = Query(None),
    configured: bool | None = Query(None),
    search: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    service = StudentService(db)
    students, total = await service.list_students(
        status=status,
        configured=configured,
        search=search,
        page=page,
        limit=limit,
    )
    return ApiResponse(
        success=True,
        data=PaginatedResponse.create(
            items=[StudentResponse.model_validate(s) for s in students],
            total=total,
            page=page,
            limit=limit,
        ),
    )


@router.get(
    "/{student_id}",
    response_model=ApiResponse[StudentResponse],
)
async def get_student(
    student_id: str,
    db: AsyncSession = Depends(get_db),
):
    service = StudentService(db)
    student = await service.get_student(student_id)
    return ApiResponse(success=True, data=StudentResponse.model_validate(student))


@router.post(
    "/{student_id}/configure",
    response_model=ApiResponse[ConfigurationResult],
)
async def configure_student(
    student_id: str,
    data: StudentConfigure,
    db: AsyncSession = Depends(get_db),
):
    """Activate billing: fees, configuration date, enrollment invoice, advance."""
    service = StudentService(db)
    student, invoice, proration, payment = await service.configure_student(student_id, data)
    balance = await LedgerService(db).get_student_balance(student_id)
    return ApiResponse(
        success=True,
        message="Billing configured successfully",
        data=ConfigurationResult(
            student=StudentResponse.model_validate(student),
            enrollment_invoice_number=invoice.invoice_number,
            prorated_days=proration.days,
            prorated_amount=proration.amount,
            advance_payment_number=payment.payment_number if payment else None,
            current_balance=balance.current_balance,
            balance_type=balance.balance_type,
        ),
    )


@router.patch(
    "/{student_id}/fees",
    response_model=ApiResponse[StudentResponse],
)
async def update_fees(
    student_id: str,
    data: FeeUpdate,
    db: AsyncSession = Depends(get_db),
):
    service = StudentService(db)
    student = await service.update_fees(student_id, data)
    return ApiResponse(
        success=True,
        message="Fees updated successfully",
        data=StudentResponse.model_validate(student),
    )
