from sqlalchemy import BigInteger, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fee_ledger.core.database.base import Base, BigIntPK


class DocumentSequence(Base):
    """Stores document number sequences per school, prefix and period."""

    __tablename__ = "document_sequences"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    school_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    prefix: Mapped[str] = mapped_column(String(20), nullable=False)
    # "2026" for yearly sequences, "20261019" for daily ones
    period: Mapped[str] = mapped_column(String(8), nullable=False)
    last_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint(
            "school_id", "prefix", "period", name="uq_document_sequence_school_prefix_period"
        ),
    )
