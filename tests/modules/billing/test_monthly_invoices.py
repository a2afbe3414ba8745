"""
Tests for the monthly invoice generator.

Most tests share the single in-memory SQLite connection of conftest, so they
run batches with one worker and commit fixtures before a batch starts. The
concurrent tests use a SQLite file with a connection per session instead.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
from httpx import AsyncClient
from sqlalchemy import event, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.core.audit import AuditAction, AuditService
from src.core.config import settings
from src.core.database.base import Base
from src.core.documents import DocumentNumberGenerator, DocumentPrefix
from src.core.exceptions import NotFoundError, ValidationError
from src.shared.utils.periods import BillingPeriod
from src.modules.billing.models import MonthlyInvoice, MonthlyInvoiceStatus
from src.modules.billing.schemas import StudentOutcome
from src.modules.billing.service import BillingService, MonthlyInvoiceGenerator, skip_reason
from src.modules.ledger.balance import running_balances
from src.modules.ledger.models import BalanceType, EntryType, LedgerEntry
from src.modules.ledger.schemas import ReverseEntryRequest
from src.modules.ledger.service import LedgerService
from src.modules.payments.schemas import PaymentCreate
from src.modules.payments.service import PaymentService
from src.modules.students.models import StudentBillingProfile, StudentStatus

FEE = Decimal("15000.00")


async def invoice_count(db_session: AsyncSession) -> int:
    result = await db_session.execute(select(func.count(MonthlyInvoice.id)))
    return result.scalar_one()


@pytest.fixture
def generator(session_factory: async_sessionmaker[AsyncSession]) -> MonthlyInvoiceGenerator:
    return MonthlyInvoiceGenerator(session_factory, max_workers=1)


@pytest.fixture
async def file_session_factory(
    tmp_path: Path,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """SQLite file database; each transaction takes the write lock when it begins."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}",
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )
    await engine.dispose()


class TestSkipReason:
    def _profile(self, configuration_date: date | None) -> StudentBillingProfile:
        return StudentBillingProfile(
            student_id="STU-001",
            student_name="Sita",
            base_monthly_fee=FEE,
            configuration_date=configuration_date,
        )

    def test_not_configured(self):
        assert skip_reason(self._profile(None), BillingPeriod(2025, 3)) == "Billing not configured"

    def test_configuration_month_is_covered_by_advance(self):
        reason = skip_reason(self._profile(date(2025, 3, 31)), BillingPeriod(2025, 3))
        assert reason == "Advance payment covers March 2025"

    def test_before_configuration(self):
        reason = skip_reason(self._profile(date(2025, 5, 1)), BillingPeriod(2025, 3))
        assert reason == "Not enrolled until 2025-05-01"

    def test_month_after_configuration_is_billed(self):
        assert skip_reason(self._profile(date(2025, 3, 31)), BillingPeriod(2025, 4)) is None


class TestMonthlyInvoiceGenerator:
    async def test_bills_everyone_except_configuration_month(
        self, db_session: AsyncSession, make_profile, generator: MonthlyInvoiceGenerator
    ):
        """Ten students, two of them joined in March: eight invoices for March."""
        for n in range(1, 9):
            await make_profile(f"STU-{n:03d}", configuration_date=date(2025, 1, 15))
        await make_profile("STU-009", configuration_date=date(2025, 3, 5))
        await make_profile("STU-010", configuration_date=date(2025, 3, 20))

        result = await generator.generate_monthly_invoices(3, 2025, generated_by="cron")

        assert result.generated == 8
        assert result.skipped == 2
        assert result.failed == 0
        assert result.total_amount == FEE * 8
        assert result.due_date == date(2025, 3, 10)
        assert result.period_label == "March 2025"
        assert {s.student_id for s in result.skipped_students} == {"STU-009", "STU-010"}
        assert all(s.reason == "Advance payment covers March 2025" for s in result.skipped_students)
        assert [inv.student_id for inv in result.invoices] == [f"STU-{n:03d}" for n in range(1, 9)]
        assert await invoice_count(db_session) == 8

    async def test_rerun_is_idempotent(
        self, db_session: AsyncSession, make_profile, generator: MonthlyInvoiceGenerator
    ):
        await make_profile("STU-001", configuration_date=date(2025, 1, 15))
        await make_profile("STU-002", configuration_date=date(2025, 1, 15))

        first = await generator.generate_monthly_invoices(3, 2025)
        second = await generator.generate_monthly_invoices(3, 2025)

        assert first.generated == 2
        assert second.generated == 0
        assert second.skipped == 2
        assert all(s.reason.startswith("Already billed (INV-2025-") for s in second.skipped_students)
        assert await invoice_count(db_session) == 2

        entries = await db_session.execute(
            select(func.count(LedgerEntry.id)).where(
                LedgerEntry.entry_type == EntryType.INVOICE.value
            )
        )
        assert entries.scalar_one() == 2

    async def test_next_month_is_billed_in_full(
        self, db_session: AsyncSession, make_profile, generator: MonthlyInvoiceGenerator
    ):
        await make_profile("STU-001", configuration_date=date(2025, 3, 31))

        march = await generator.generate_monthly_invoices(3, 2025)
        april = await generator.generate_monthly_invoices(4, 2025)

        assert march.generated == 0
        assert april.generated == 1
        assert april.invoices[0].amount == FEE

        result = await db_session.execute(select(MonthlyInvoice))
        invoice = result.scalar_one()
        assert invoice.is_prorated is False
        assert invoice.billed_from_day == 1
        assert (invoice.period_year, invoice.period_month) == (2025, 4)

    async def test_invoice_posts_ledger_debit(
        self, db_session: AsyncSession, make_profile, generator: MonthlyInvoiceGenerator
    ):
        await make_profile("STU-001", configuration_date=date(2025, 1, 15))

        result = await generator.generate_monthly_invoices(3, 2025, due_date=date(2025, 3, 15))
        generated = result.invoices[0]

        entry = (
            await db_session.execute(
                select(LedgerEntry).where(LedgerEntry.entry_number == generated.ledger_entry_number)
            )
        ).scalar_one()
        assert entry.entry_type == EntryType.INVOICE.value
        assert entry.debit == FEE
        assert entry.entry_date == date(2025, 3, 1)
        assert entry.description == "Monthly fee - March 2025"
        assert entry.reference_id == generated.invoice_number
        assert generated.due_date == date(2025, 3, 15)

    async def test_failure_is_isolated(
        self,
        db_session: AsyncSession,
        make_profile,
        generator: MonthlyInvoiceGenerator,
        caplog: pytest.LogCaptureFixture,
    ):
        await make_profile("STU-001", configuration_date=date(2025, 1, 15))
        await make_profile("STU-002", configuration_date=date(2025, 1, 15), base_monthly_fee=None)
        await make_profile("STU-003", configuration_date=date(2025, 1, 15))

        with caplog.at_level(logging.ERROR, logger="src.modules.billing.service"):
            result = await generator.generate_monthly_invoices(3, 2025)

        assert result.generated == 2
        assert result.failed == 1
        assert result.errors[0].student_id == "STU-002"
        assert result.errors[0].error == "Monthly fee is not configured"
        assert await invoice_count(db_session) == 2
        assert any("STU-002" in record.getMessage() for record in caplog.records)

    async def test_inactive_and_unconfigured_are_not_candidates(
        self, db_session: AsyncSession, make_profile, generator: MonthlyInvoiceGenerator
    ):
        await make_profile("STU-001", configuration_date=date(2025, 1, 15))
        await make_profile(
            "STU-002", configuration_date=date(2025, 1, 15), status=StudentStatus.INACTIVE
        )
        await make_profile("STU-003", configuration_date=None)

        result = await generator.generate_monthly_invoices(3, 2025)

        assert result.generated == 1
        assert result.skipped == 0
        assert result.invoices[0].student_id == "STU-001"

    async def test_not_enrolled_yet(
        self, db_session: AsyncSession, make_profile, generator: MonthlyInvoiceGenerator
    ):
        await make_profile("STU-001", configuration_date=date(2025, 5, 1))

        result = await generator.generate_monthly_invoices(3, 2025)

        assert result.skipped == 1
        assert result.skipped_students[0].reason == "Not enrolled until 2025-05-01"

    async def test_restrict_to_student_ids(
        self, db_session: AsyncSession, make_profile, generator: MonthlyInvoiceGenerator
    ):
        await make_profile("STU-001", configuration_date=date(2025, 1, 15))
        await make_profile("STU-002", configuration_date=date(2025, 1, 15))

        result = await generator.generate_monthly_invoices(3, 2025, student_ids=["STU-002"])

        assert result.generated == 1
        assert result.invoices[0].student_id == "STU-002"

    async def test_void_invoice_keeps_period_taken(
        self, db_session: AsyncSession, make_profile, generator: MonthlyInvoiceGenerator
    ):
        await make_profile("STU-001", configuration_date=date(2025, 1, 15))
        first = await generator.generate_monthly_invoices(3, 2025)

        entry = (
            await db_session.execute(
                select(LedgerEntry).where(
                    LedgerEntry.entry_number == first.invoices[0].ledger_entry_number
                )
            )
        ).scalar_one()
        await LedgerService(db_session).reverse_entry(entry.id, ReverseEntryRequest())

        again = await generator.generate_monthly_invoices(3, 2025)

        assert again.generated == 0
        assert again.skipped_students[0].reason.startswith("Already billed")
        invoice = (await db_session.execute(select(MonthlyInvoice))).scalar_one()
        assert invoice.status == MonthlyInvoiceStatus.VOID.value

    async def test_invoice_is_dated_after_earlier_payment(
        self, db_session: AsyncSession, make_profile, generator: MonthlyInvoiceGenerator
    ):
        """A payment recorded before the batch keeps the stored balances in ledger order."""
        await make_profile("STU-001", configuration_date=date(2025, 1, 15))
        await PaymentService(db_session).record_payment(
            PaymentCreate(student_id="STU-001", amount=FEE, payment_date=date(2025, 3, 5))
        )

        result = await generator.generate_monthly_invoices(3, 2025)

        assert result.generated == 1
        service = LedgerService(db_session)
        entries = await service.get_entries("STU-001")
        assert [e.entry_type for e in entries] == [
            EntryType.PAYMENT.value,
            EntryType.INVOICE.value,
        ]
        assert entries[1].entry_date == date(2025, 3, 5)
        assert entries[1].balance == Decimal("0.00")
        assert entries[1].balance_type == BalanceType.NIL.value
        for row in running_balances(entries):
            assert row.entry.balance == row.balance
            assert row.entry.balance_type == row.balance_type.value

        invoice = (await db_session.execute(select(MonthlyInvoice))).scalar_one()
        assert (invoice.period_year, invoice.period_month) == (2025, 3)
        assert invoice.billed_from_day == 1

    async def test_numbers_taken_in_lock_order(
        self,
        make_profile,
        generator: MonthlyInvoiceGenerator,
        numbering_calls: list[DocumentPrefix],
    ):
        await make_profile("STU-001", configuration_date=date(2025, 1, 15))

        await generator.generate_monthly_invoices(3, 2025)

        assert numbering_calls == [DocumentPrefix.INVOICE, DocumentPrefix.LEDGER_ENTRY]

    async def test_integrity_error_without_invoice_is_a_failure(
        self,
        db_session: AsyncSession,
        make_profile,
        generator: MonthlyInvoiceGenerator,
        monkeypatch: pytest.MonkeyPatch,
    ):
        await make_profile("STU-001", configuration_date=date(2025, 1, 15))

        async def broken_sequence(self, prefix, on_date=None):
            raise IntegrityError(
                "INSERT INTO document_sequences",
                {},
                Exception("UNIQUE constraint failed: uq_document_sequence_prefix_year"),
            )

        monkeypatch.setattr(DocumentNumberGenerator, "next_number", broken_sequence)

        result = await generator.generate_monthly_invoices(3, 2025)

        assert result.generated == 0
        assert result.skipped == 0
        assert result.failed == 1
        assert "uq_document_sequence_prefix_year" in result.errors[0].error
        assert await invoice_count(db_session) == 0

    async def test_integrity_error_with_invoice_is_a_skip(
        self,
        make_profile,
        generator: MonthlyInvoiceGenerator,
        monkeypatch: pytest.MonkeyPatch,
    ):
        """Another run inserted the invoice between the check and the insert."""
        await make_profile("STU-001", configuration_date=date(2025, 1, 15))
        await generator.generate_monthly_invoices(3, 2025)

        async def lost_race(self, session, student_id, *args):
            raise IntegrityError(
                "INSERT INTO monthly_invoices",
                {},
                Exception("UNIQUE constraint failed: uq_monthly_invoice_student_period"),
            )

        monkeypatch.setattr(MonthlyInvoiceGenerator, "_bill_in_session", lost_race)

        result = await generator.generate_monthly_invoices(3, 2025)

        assert result.failed == 0
        assert result.skipped == 1
        assert result.skipped_students[0].reason == "Already billed (INV-2025-000001)"

    async def test_batch_is_audited(
        self, db_session: AsyncSession, make_profile, generator: MonthlyInvoiceGenerator
    ):
        await make_profile("STU-001", configuration_date=date(2025, 1, 15))

        await generator.generate_monthly_invoices(3, 2025, generated_by="cron")

        audit = AuditService(db_session)
        assert await audit.count_actions(AuditAction.GENERATE_MONTHLY) == 1
        assert await audit.count_actions(AuditAction.GENERATE_INVOICE) == 1
        logs = await audit.list_for_entity("BillingPeriod", "2025-03")
        assert logs[0].new_values["generated"] == 1

    async def test_invalid_month(self, generator: MonthlyInvoiceGenerator):
        with pytest.raises(ValidationError):
            await generator.generate_monthly_invoices(13, 2025)

    async def test_generate_for_student(
        self, db_session: AsyncSession, make_profile, generator: MonthlyInvoiceGenerator
    ):
        await make_profile("STU-001", configuration_date=date(2025, 1, 15))

        result = await generator.generate_for_student("STU-001", 3, 2025)
        again = await generator.generate_for_student("STU-001", 3, 2025)

        assert result.status == StudentOutcome.GENERATED
        assert result.invoice.amount == FEE
        assert again.status == StudentOutcome.SKIPPED

    async def test_generate_for_unknown_student(self, generator: MonthlyInvoiceGenerator):
        with pytest.raises(NotFoundError):
            await generator.generate_for_student("NOPE", 3, 2025)

    async def test_preview_writes_nothing(
        self, db_session: AsyncSession, make_profile, generator: MonthlyInvoiceGenerator
    ):
        await make_profile("STU-001", configuration_date=date(2025, 1, 15))
        await make_profile("STU-002", configuration_date=date(2025, 3, 10))
        await make_profile("STU-003", configuration_date=date(2025, 1, 15), base_monthly_fee=None)

        preview = await generator.preview_billing(3, 2025)

        assert preview.students_to_bill == 1
        assert preview.students_to_skip == 2
        assert preview.total_amount == FEE
        reasons = {item.student_id: item.reason for item in preview.items}
        assert reasons["STU-001"] is None
        assert reasons["STU-003"] == "Monthly fee is not configured"
        assert await invoice_count(db_session) == 0


class TestBillingService:
    async def test_stats(
        self, db_session: AsyncSession, make_profile, generator: MonthlyInvoiceGenerator
    ):
        await make_profile("STU-001", configuration_date=date(2025, 1, 15))
        await make_profile("STU-002", configuration_date=date(2025, 1, 15))
        await make_profile("STU-003")
        await generator.generate_monthly_invoices(3, 2025)

        await PaymentService(db_session).record_payment(
            PaymentCreate(student_id="STU-001", amount=FEE, payment_date=date(2025, 3, 5))
        )

        stats = await BillingService(db_session).get_stats(today=date(2025, 3, 20))

        assert stats.configured_students == 2
        assert stats.active_students == 3
        assert stats.current_period == "March 2025"
        assert stats.current_month_invoices == 2
        assert stats.current_month_amount == FEE * 2
        assert stats.paid_invoices == 1
        assert stats.unpaid_invoices == 1
        assert stats.outstanding_amount == FEE

    async def test_list_invoices(
        self, db_session: AsyncSession, make_profile, generator: MonthlyInvoiceGenerator
    ):
        from src.modules.billing.schemas import MonthlyInvoiceFilters

        await make_profile("STU-001", configuration_date=date(2025, 1, 15))
        await generator.generate_monthly_invoices(2, 2025)
        await generator.generate_monthly_invoices(3, 2025)

        invoices, total = await BillingService(db_session).list_invoices(MonthlyInvoiceFilters())
        assert total == 2
        assert invoices[0].period_month == 3

        invoices, total = await BillingService(db_session).list_invoices(
            MonthlyInvoiceFilters(month=2)
        )
        assert total == 1

    async def test_overdue_invoices(
        self, db_session: AsyncSession, make_profile, generator: MonthlyInvoiceGenerator
    ):
        await make_profile(
            "STU-001", student_name="Aarav Thapa", configuration_date=date(2025, 1, 15)
        )
        await make_profile("STU-002", configuration_date=date(2025, 1, 15))
        payments = PaymentService(db_session)
        await payments.record_payment(
            PaymentCreate(student_id="STU-001", amount=Decimal("5000"), payment_date=date(2025, 3, 5))
        )
        await generator.generate_monthly_invoices(3, 2025)
        await payments.record_payment(
            PaymentCreate(student_id="STU-002", amount=FEE, payment_date=date(2025, 3, 6))
        )
        service = BillingService(db_session)

        assert await service.list_overdue(today=date(2025, 3, 10)) == []

        overdue = await service.list_overdue(today=date(2025, 3, 20))

        assert len(overdue) == 1
        item = overdue[0]
        assert item.student_id == "STU-001"
        assert item.student_name == "Aarav Thapa"
        assert item.period_label == "March 2025"
        assert item.due_date == date(2025, 3, 10)
        assert item.amount == FEE
        assert item.paid_amount == Decimal("5000.00")
        assert item.remaining_amount == Decimal("10000.00")
        assert item.days_overdue == 10

    async def test_void_invoice_is_not_overdue(
        self, db_session: AsyncSession, make_profile, generator: MonthlyInvoiceGenerator
    ):
        await make_profile("STU-001", configuration_date=date(2025, 1, 15))
        result = await generator.generate_monthly_invoices(3, 2025)
        entry = (
            await db_session.execute(
                select(LedgerEntry).where(
                    LedgerEntry.entry_number == result.invoices[0].ledger_entry_number
                )
            )
        ).scalar_one()
        await LedgerService(db_session).reverse_entry(entry.id, ReverseEntryRequest())

        assert await BillingService(db_session).list_overdue(today=date(2025, 4, 1)) == []

    async def test_billing_runs(
        self, db_session: AsyncSession, make_profile, generator: MonthlyInvoiceGenerator
    ):
        await make_profile("STU-001", configuration_date=date(2025, 1, 15))
        await make_profile("STU-002", configuration_date=date(2025, 2, 20))
        await generator.generate_monthly_invoices(2, 2025, generated_by="cron")
        await generator.generate_monthly_invoices(3, 2025, generated_by="accountant")

        runs, total = await BillingService(db_session).list_runs()

        assert total == 2
        assert [run.period for run in runs] == ["2025-03", "2025-02"]
        latest = runs[0]
        assert latest.period_label == "March 2025"
        assert (latest.generated, latest.skipped, latest.failed) == (2, 0, 0)
        assert latest.total_amount == FEE * 2
        assert latest.generated_by == "accountant"
        assert (runs[1].generated, runs[1].skipped) == (1, 1)

        runs, total = await BillingService(db_session).list_runs(page=2, limit=1)
        assert total == 2
        assert [run.period for run in runs] == ["2025-02"]

    async def test_get_invoice_by_id(
        self, db_session: AsyncSession, make_profile, generator: MonthlyInvoiceGenerator
    ):
        await make_profile("STU-001", configuration_date=date(2025, 1, 15))
        await generator.generate_monthly_invoices(3, 2025)
        service = BillingService(db_session)
        invoice = await service.find_invoice("STU-001", BillingPeriod(2025, 3))

        assert (await service.get_invoice_by_id(invoice.id)).invoice_number == "INV-2025-000001"
        with pytest.raises(NotFoundError):
            await service.get_invoice_by_id(999)


class TestBillingEndpoints:
    async def test_generate_monthly(
        self, client: AsyncClient, make_profile, monkeypatch: pytest.MonkeyPatch
    ):
        monkeypatch.setattr(settings, "billing_max_workers", 1)
        await make_profile("STU-001", configuration_date=date(2025, 1, 15))
        await make_profile("STU-002", configuration_date=date(2025, 3, 2))

        response = await client.post(
            "/api/v1/billing/generate-monthly", json={"month": 3, "year": 2025}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["data"]["generated"] == 1
        assert body["data"]["skipped"] == 1
        assert body["message"] == "March 2025: generated 1, skipped 1, failed 0"

        listing = await client.get("/api/v1/billing/invoices", params={"year": 2025})
        assert listing.json()["data"]["total"] == 1

    async def test_generate_rejects_bad_month(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/billing/generate-monthly", json={"month": 13, "year": 2025}
        )
        assert response.status_code == 422

    async def test_preview(self, client: AsyncClient, make_profile):
        await make_profile("STU-001", configuration_date=date(2025, 1, 15))

        response = await client.get("/api/v1/billing/preview/3/2025")

        assert response.status_code == 200
        assert response.json()["data"]["students_to_bill"] == 1

    async def test_generate_for_student(self, client: AsyncClient, make_profile):
        await make_profile("STU-001", configuration_date=date(2025, 1, 15))

        response = await client.post(
            "/api/v1/billing/generate-monthly/STU-001", json={"month": 3, "year": 2025}
        )

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "generated"

    async def test_stats(self, client: AsyncClient):
        response = await client.get("/api/v1/billing/stats")
        assert response.status_code == 200
        assert response.json()["data"]["configured_students"] == 0

    async def test_get_invoice(
        self, client: AsyncClient, make_profile, generator: MonthlyInvoiceGenerator
    ):
        await make_profile("STU-001", configuration_date=date(2025, 1, 15))
        await generator.generate_monthly_invoices(3, 2025)
        listing = await client.get("/api/v1/billing/invoices")
        invoice_id = listing.json()["data"]["items"][0]["id"]

        response = await client.get(f"/api/v1/billing/invoices/{invoice_id}")

        assert response.status_code == 200
        assert response.json()["data"]["invoice_number"] == "INV-2025-000001"
        assert (await client.get("/api/v1/billing/invoices/999")).status_code == 404

    async def test_overdue(
        self, client: AsyncClient, make_profile, generator: MonthlyInvoiceGenerator
    ):
        await make_profile("STU-001", configuration_date=date(2025, 1, 15))
        await generator.generate_monthly_invoices(3, 2025)

        response = await client.get(
            "/api/v1/billing/invoices/overdue", params={"as_of": "2025-03-25"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "1 overdue invoices"
        assert body["data"][0]["days_overdue"] == 15
        assert Decimal(body["data"][0]["remaining_amount"]) == FEE

    async def test_history(
        self, client: AsyncClient, make_profile, generator: MonthlyInvoiceGenerator
    ):
        await make_profile("STU-001", configuration_date=date(2025, 1, 15))
        await generator.generate_monthly_invoices(3, 2025, generated_by="cron")

        response = await client.get("/api/v1/billing/history")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total"] == 1
        assert data["items"][0]["period"] == "2025-03"
        assert data["items"][0]["generated"] == 1
        assert data["items"][0]["generated_by"] == "cron"


class TestConcurrentBatches:
    STUDENTS = [f"STU-{n:03d}" for n in range(1, 9)]

    async def _enroll(self, factory: async_sessionmaker[AsyncSession]) -> None:
        async with factory() as session:
            for student_id in self.STUDENTS:
                session.add(
                    StudentBillingProfile(
                        student_id=student_id,
                        student_name=f"Student {student_id}",
                        base_monthly_fee=FEE,
                        laundry_fee=Decimal("0.00"),
                        food_fee=Decimal("0.00"),
                        configuration_date=date(2025, 1, 15),
                        status=StudentStatus.ACTIVE.value,
                    )
                )
            await session.commit()

    async def _invoices_per_student(
        self, factory: async_sessionmaker[AsyncSession]
    ) -> dict[str, int]:
        async with factory() as session:
            result = await session.execute(
                select(MonthlyInvoice.student_id, func.count(MonthlyInvoice.id))
                .where(MonthlyInvoice.period_year == 2025, MonthlyInvoice.period_month == 3)
                .group_by(MonthlyInvoice.student_id)
            )
            return dict(result.all())

    async def test_four_workers(self, file_session_factory: async_sessionmaker[AsyncSession]):
        await self._enroll(file_session_factory)
        generator = MonthlyInvoiceGenerator(file_session_factory, max_workers=4)

        result = await generator.generate_monthly_invoices(3, 2025)

        assert result.generated == 8
        assert result.skipped == 0
        assert result.failed == 0
        assert result.total_amount == FEE * 8
        assert {inv.invoice_number for inv in result.invoices} == {
            f"INV-2025-{n:06d}" for n in range(1, 9)
        }
        assert len({inv.ledger_entry_number for inv in result.invoices}) == 8
        assert await self._invoices_per_student(file_session_factory) == {
            student_id: 1 for student_id in self.STUDENTS
        }

    async def test_overlapping_runs_bill_each_student_once(
        self, file_session_factory: async_sessionmaker[AsyncSession]
    ):
        await self._enroll(file_session_factory)
        generator = MonthlyInvoiceGenerator(file_session_factory, max_workers=4)

        first, second = await asyncio.gather(
            generator.generate_monthly_invoices(3, 2025, generated_by="cron"),
            generator.generate_monthly_invoices(3, 2025, generated_by="accountant"),
        )

        assert first.failed == 0
        assert second.failed == 0
        assert first.generated + second.generated == 8
        assert first.skipped + second.skipped == 8
        billed = [inv.student_id for inv in first.invoices + second.invoices]
        assert sorted(billed) == self.STUDENTS
        assert await self._invoices_per_student(file_session_factory) == {
            student_id: 1 for student_id in self.STUDENTS
        }

        async with file_session_factory() as session:
            runs, total = await BillingService(session).list_runs()
        assert total == 2
        assert {run.generated_by for run in runs} == {"cron", "accountant"}
