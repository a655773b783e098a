from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fee_ledger.core.documents.models import DocumentSequence


class DocumentNumberGenerator:
    """
    Generates sequential document numbers in format: PREFIX-PERIOD-NNNN

    Sequences are independent per (school, prefix, period).

    Examples:
        INV-2026-0001        (invoices, yearly)
        RCP-20261019-0042    (receipts, daily)
        JE-2026-0007         (journal entries, yearly)
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def next_number(self, school_id: int, prefix: str, period: str) -> int:
        """
        Increment and return the counter for (school, prefix, period).

        Uses SELECT FOR UPDATE so concurrent callers serialize on the counter row.
        """
        stmt = (
            select(DocumentSequence)
            .where(
                DocumentSequence.school_id == school_id,
                DocumentSequence.prefix == prefix,
                DocumentSequence.period == period,
            )
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        sequence = result.scalar_one_or_none()

        if sequence is None:
            sequence = DocumentSequence(
                school_id=school_id, prefix=prefix, period=period, last_number=0
            )
            self.session.add(sequence)
            await self.session.flush()

            # Re-fetch with lock
            result = await self.session.execute(stmt)
            sequence = result.scalar_one()

        sequence.last_number += 1
        await self.session.flush()
        return sequence.last_number

    async def generate(
        self, school_id: int, prefix: str, period: str, width: int = 4
    ) -> str:
        number = await self.next_number(school_id, prefix, period)
        return f"{prefix}-{period}-{number:0{width}d}"

    async def generate_yearly(
        self, school_id: int, prefix: str, year: int | None = None
    ) -> str:
        if year is None:
            year = date.today().year
        return await self.generate(school_id, prefix, f"{year:04d}")

    async def generate_daily(
        self, school_id: int, prefix: str, day: date | None = None
    ) -> str:
        day = day or date.today()
        return await self.generate(school_id, prefix, day.strftime("%Y%m%d"))


async def get_document_number(
    session: AsyncSession, school_id: int, prefix: str, year: int | None = None
) -> str:
    """Convenience function to generate a yearly document number."""
    generator = DocumentNumberGenerator(session)
    return await generator.generate_yearly(school_id, prefix, year)
