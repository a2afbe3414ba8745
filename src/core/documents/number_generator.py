from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.documents.models import DocumentPrefix, DocumentSequence


class DocumentNumberGenerator:
    """
    Sequential document numbers: PREFIX-YYYY-NNNNNN.

    The year comes from the document's own date, so a January invoice
    generated in December is numbered in the new year's sequence.

    Examples:
        LED-2025-000001
        INV-2025-000042
        RCP-2025-000007
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def next_number(self, prefix: str | DocumentPrefix, on_date: date | None = None) -> str:
        """Allocate the next number. Row is locked for the rest of the transaction."""
        prefix = str(prefix)
        year = (on_date or date.today()).year

        stmt = (
            select(DocumentSequence)
            .where(DocumentSequence.prefix == prefix, DocumentSequence.year == year)
            .with_for_update()
        )
        sequence = (await self.session.execute(stmt)).scalar_one_or_none()

        if sequence is None:
            sequence = DocumentSequence(prefix=prefix, year=year, last_number=0)
            self.session.add(sequence)
            await self.session.flush()
            sequence = (await self.session.execute(stmt)).scalar_one()

        sequence.last_number += 1
        await self.session.flush()

        return f"{prefix}-{year}-{sequence.last_number:06d}"
