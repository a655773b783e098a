"""Student, academic record and transport route plan models."""

from decimal import Decimal
from enum import StrEnum

from sqlalchemy import BigInteger, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fee_ledger.core.database.base import BaseModel


class StudentStatus(StrEnum):
    """Student status enumeration."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    GRADUATED = "graduated"


class AcademicRecordStatus(StrEnum):
    """Status of a student's class assignment for an academic year."""

    ACTIVE = "active"
    PROMOTED = "promoted"
    REPEATING = "repeating"
    TRANSFERRED = "transferred"
    DROPPED = "dropped"


class RoutePlanStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class RoutePlan(BaseModel):
    """Monthly transport charge for a route, optionally limited to one class."""

    __tablename__ = "route_plans"

    school_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    route_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    class_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("school_classes.id"), nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RoutePlanStatus.ACTIVE.value
    )


class Student(BaseModel):
    """Student enrolled in a school."""

    __tablename__ = "students"

    school_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StudentStatus.ACTIVE.value, index=True
    )
    # Carried forward from before the system: positive = owed, negative = credit
    opening_balance: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    route_plan_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("route_plans.id"), nullable=True
    )

    route_plan: Mapped["RoutePlan | None"] = relationship("RoutePlan")
    academic_records: Mapped[list["StudentAcademicRecord"]] = relationship(
        "StudentAcademicRecord", back_populates="student"
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class StudentAcademicRecord(BaseModel):
    """A student's class assignment for one academic year."""

    __tablename__ = "student_academic_records"

    school_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("students.id"), nullable=False, index=True
    )
    academic_year_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("academic_years.id"), nullable=False, index=True
    )
    class_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("school_classes.id"), nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AcademicRecordStatus.ACTIVE.value
    )

    student: Mapped["Student"] = relationship("Student", back_populates="academic_records")
    school_class: Mapped["SchoolClass | None"] = relationship("SchoolClass")


# Import at the end to avoid circular imports
from fee_ledger.modules.academics.models import SchoolClass
