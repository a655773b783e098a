"""Academic year and class models (maintained by school administration)."""

from datetime import date

from sqlalchemy import BigInteger, Boolean, Date, String
from sqlalchemy.orm import Mapped, mapped_column

from fee_ledger.core.database.base import BaseModel


class AcademicYear(BaseModel):
    """Academic year of a school, e.g. 2026-27."""

    __tablename__ = "academic_years"

    school_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class SchoolClass(BaseModel):
    """Class (grade/section) of a school."""

    __tablename__ = "school_classes"

    school_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
