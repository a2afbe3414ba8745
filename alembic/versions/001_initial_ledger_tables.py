"""Initial ledger, billing and checkout tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _money(name: str, nullable: bool = False, **kwargs) -> sa.Column:
    return sa.Column(name, sa.Numeric(15, 2), nullable=nullable, **kwargs)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    # Document sequences table
    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("prefix", sa.String(20), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("last_number", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("prefix", "year", name="uq_document_sequence_prefix_year"),
    )

    # Audit logs table
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("entity_id", sa.String(100), nullable=False),
        sa.Column("entity_identifier", sa.String(200), nullable=True),
        sa.Column("old_values", sa.JSON(), nullable=True),
        sa.Column("new_values", sa.JSON(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("performed_by", sa.String(100), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"])
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])

    # Student billing profiles table
    op.create_table(
        "student_billing_profiles",
        sa.Column("student_id", sa.String(50), nullable=False),
        sa.Column("student_name", sa.String(200), nullable=False),
        sa.Column("phone", sa.String(30), nullable=True),
        sa.Column("room_number", sa.String(50), nullable=True),
        sa.Column("bed_number", sa.String(50), nullable=True),
        _money("base_monthly_fee", nullable=True),
        _money("laundry_fee", server_default="0.00"),
        _money("food_fee", server_default="0.00"),
        sa.Column("configuration_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("is_checked_out", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("checkout_date", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("student_id"),
    )
    op.create_index(
        "ix_student_billing_profiles_configuration_date",
        "student_billing_profiles",
        ["configuration_date"],
    )
    op.create_index(
        "ix_student_billing_profiles_status", "student_billing_profiles", ["status"]
    )

    # Ledger entries table
    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("entry_number", sa.String(50), nullable=False),
        sa.Column("student_id", sa.String(50), nullable=False),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column("entry_type", sa.String(20), nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("reference_id", sa.String(100), nullable=True),
        _money("debit", server_default="0.00"),
        _money("credit", server_default="0.00"),
        _money("balance"),
        sa.Column("balance_type", sa.String(20), nullable=False),
        sa.Column("reversal_of_id", sa.BigInteger(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("recorded_by", sa.String(100), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["student_billing_profiles.student_id"]),
        sa.ForeignKeyConstraint(["reversal_of_id"], ["ledger_entries.id"]),
        sa.UniqueConstraint("reversal_of_id"),
        sa.CheckConstraint("debit >= 0 AND credit >= 0", name="ck_ledger_entries_non_negative"),
        sa.CheckConstraint(
            "(debit > 0 AND credit = 0) OR (credit > 0 AND debit = 0)",
            name="ck_ledger_entries_single_side",
        ),
    )
    op.create_index("ix_ledger_entries_entry_number", "ledger_entries", ["entry_number"], unique=True)
    op.create_index("ix_ledger_entries_entry_type", "ledger_entries", ["entry_type"])
    op.create_index(
        "ix_ledger_entries_student_date_id",
        "ledger_entries",
        ["student_id", "entry_date", "id"],
    )

    # Ledger allocations table (credit applied to debit)
    op.create_table(
        "ledger_allocations",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("student_id", sa.String(50), nullable=False),
        sa.Column("credit_entry_id", sa.BigInteger(), nullable=False),
        sa.Column("debit_entry_id", sa.BigInteger(), nullable=False),
        _money("amount"),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["student_billing_profiles.student_id"]),
        sa.ForeignKeyConstraint(["credit_entry_id"], ["ledger_entries.id"]),
        sa.ForeignKeyConstraint(["debit_entry_id"], ["ledger_entries.id"]),
        sa.CheckConstraint("amount > 0", name="ck_ledger_allocations_positive"),
    )
    op.create_index("ix_ledger_allocations_student_id", "ledger_allocations", ["student_id"])
    op.create_index("ix_ledger_allocations_credit_entry_id", "ledger_allocations", ["credit_entry_id"])
    op.create_index("ix_ledger_allocations_debit_entry_id", "ledger_allocations", ["debit_entry_id"])

    # Monthly invoices table
    op.create_table(
        "monthly_invoices",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("invoice_number", sa.String(50), nullable=False),
        sa.Column("student_id", sa.String(50), nullable=False),
        sa.Column("period_year", sa.Integer(), nullable=False),
        sa.Column("period_month", sa.Integer(), nullable=False),
        _money("amount"),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("is_prorated", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("billed_from_day", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(20), nullable=False, server_default="issued"),
        sa.Column("ledger_entry_id", sa.BigInteger(), nullable=True),
        sa.Column("generated_by", sa.String(100), nullable=True),
        sa.Column(
            "generated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["student_billing_profiles.student_id"]),
        sa.ForeignKeyConstraint(["ledger_entry_id"], ["ledger_entries.id"]),
        sa.UniqueConstraint(
            "student_id", "period_year", "period_month",
            name="uq_monthly_invoice_student_period",
        ),
    )
    op.create_index("ix_monthly_invoices_invoice_number", "monthly_invoices", ["invoice_number"], unique=True)
    op.create_index("ix_monthly_invoices_student_id", "monthly_invoices", ["student_id"])
    op.create_index("ix_monthly_invoices_ledger_entry_id", "monthly_invoices", ["ledger_entry_id"])

    # Payments table
    op.create_table(
        "payments",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("payment_number", sa.String(50), nullable=False),
        sa.Column("receipt_number", sa.String(50), nullable=False),
        sa.Column("student_id", sa.String(50), nullable=False),
        _money("amount"),
        sa.Column("payment_method", sa.String(20), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("reference", sa.String(100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("ledger_entry_id", sa.BigInteger(), nullable=False),
        sa.Column("recorded_by", sa.String(100), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["student_billing_profiles.student_id"]),
        sa.ForeignKeyConstraint(["ledger_entry_id"], ["ledger_entries.id"]),
    )
    op.create_index("ix_payments_payment_number", "payments", ["payment_number"], unique=True)
    op.create_index("ix_payments_receipt_number", "payments", ["receipt_number"], unique=True)
    op.create_index("ix_payments_student_id", "payments", ["student_id"])


def downgrade() -> None:
    op.drop_table("payments")
    op.drop_table("monthly_invoices")
    op.drop_table("ledger_allocations")
    op.drop_table("ledger_entries")
    op.drop_table("student_billing_profiles")
    op.drop_table("audit_logs")
    op.drop_table("document_sequences")
