#!/usr/bin/env python3
"""
Generate monthly invoices for one billing period from the command line.

Students whose configuration date falls in the period are skipped (their
advance covers it). Safe to re-run: already billed students are skipped.

Usage:
    python scripts/generate_monthly_invoices.py --month 3 --year 2025 --dry-run
    python scripts/generate_monthly_invoices.py --month 3 --year 2025
    python scripts/generate_monthly_invoices.py --month 3 --year 2025 --due-date 2025-03-15
"""

import asyncio
import sys
from datetime import date
from pathlib import Path

# Add project root to PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.core.config import settings
from src.core.database.session import async_session
from src.core.logging_config import setup_logging
from src.modules.billing.service import MonthlyInvoiceGenerator
from src.shared.utils.money import format_money


async def run_preview(generator: MonthlyInvoiceGenerator, month: int, year: int) -> None:
    preview = await generator.preview_billing(month, year)

    print(f"\n🔍 DRY-RUN for {preview.period_label}: nothing will be written")
    print(f"  - To bill: {preview.students_to_bill} students")
    print(f"  - To skip: {preview.students_to_skip} students")
    print(f"  - Total:   {format_money(preview.total_amount, settings.currency)}")
    for item in preview.items:
        mark = "✓" if item.will_bill else "–"
        detail = format_money(item.monthly_fee, settings.currency) if item.will_bill else item.reason
        print(f"    {mark} {item.student_id} {item.student_name}: {detail}")


async def run_generation(
    generator: MonthlyInvoiceGenerator, month: int, year: int, due_date: date | None
) -> int:
    result = await generator.generate_monthly_invoices(
        month, year, due_date=due_date, generated_by="cli"
    )

    print("\n" + "=" * 70)
    print(f"✅ {result.period_label} (due {result.due_date.isoformat()})")
    print("=" * 70)
    print(f"  - Generated: {result.generated}")
    print(f"  - Skipped:   {result.skipped}")
    print(f"  - Failed:    {result.failed}")
    print(f"  - Total:     {format_money(result.total_amount, settings.currency)}")

    for error in result.errors:
        print(f"  ❌ {error.student_id} {error.student_name}: {error.error}")

    return 1 if result.failed else 0


async def main():
    """Entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Generate monthly invoices for a billing period")
    parser.add_argument("--month", type=int, required=True, help="Billing month (1-12)")
    parser.add_argument("--year", type=int, required=True, help="Billing year")
    parser.add_argument(
        "--due-date",
        type=date.fromisoformat,
        default=None,
        help=f"Due date YYYY-MM-DD (default: day {settings.invoice_due_day} of the month)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be billed without writing anything",
    )

    args = parser.parse_args()

    if not 1 <= args.month <= 12:
        print("❌ ERROR: --month must be between 1 and 12")
        sys.exit(1)

    setup_logging()

    print("\n" + "=" * 70)
    print("MONTHLY INVOICE GENERATION")
    print("=" * 70)
    print(f"\n🌍 Environment: {settings.app_env}")
    print(f"🗄️  Database: {settings.database_url.split('@')[1] if '@' in settings.database_url else 'unknown'}")
    print(f"🏠 Hostel: {settings.hostel_name}")

    generator = MonthlyInvoiceGenerator(async_session)
    if args.dry_run:
        await run_preview(generator, args.month, args.year)
        return

    exit_code = await run_generation(generator, args.month, args.year, args.due_date)
    sys.exit(exit_code)


if __name__ == "__main__":
    asyncio.run(main())
