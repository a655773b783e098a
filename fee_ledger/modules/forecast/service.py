"""Read-only projection of a student's fee obligations up to a target date."""

from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fee_ledger.core.exceptions import NotFoundError, ValidationError
from fee_ledger.shared.utils.dates import add_months, end_of_month, start_of_month
from fee_ledger.shared.utils.money import ZERO, round_money, sum_money
from fee_ledger.modules.academics.models import AcademicYear
from fee_ledger.modules.fee_structures.models import (
    FeeObligationStatus,
    FeeStructure,
    StructureStatus,
    StudentFeeStructure,
)
from fee_ledger.modules.forecast.schemas import (
    BusFeeLine,
    BusFeesBreakdown,
    ClassFeeLine,
    ClassFeesBreakdown,
    ForecastBreakdown,
    ForecastRequest,
    ForecastResult,
    ForecastSummary,
    OtherFeeLine,
    OtherFeesBreakdown,
    PreviousBalance,
)
from fee_ledger.modules.invoices.models import (
    Invoice,
    InvoiceItem,
    InvoiceSourceType,
    InvoiceStatus,
)
from fee_ledger.modules.students.models import (
    RoutePlan,
    RoutePlanStatus,
    Student,
    StudentAcademicRecord,
)

# Charges owned by other domains that show up as "other fees"
OTHER_FEE_SOURCES = (
    InvoiceSourceType.HOSTEL.value,
    InvoiceSourceType.FINE.value,
    InvoiceSourceType.MISC.value,
)


def forecast_months(year_start: date, target: date, today: date) -> list[date]:
    """First day of every month from max(year start, today) through the target month."""
    month = start_of_month(max(year_start, today))
    last = start_of_month(target)
    months = []
    while month <= last:
        months.append(month)
        month = add_months(month, 1)
    return months


class ForecastService:
    """Projects class, transport, carried-over and other fees. Never writes."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_student(self, student_id: int, school_id: int) -> Student:
        result = await self.db.execute(
            select(Student).where(Student.id == student_id, Student.school_id == school_id)
        )
        student = result.scalar_one_or_none()
        if not student:
            raise NotFoundError("Student", student_id)
        return student

    async def _get_academic_year(self, academic_year_id: int, school_id: int) -> AcademicYear:
        result = await self.db.execute(
            select(AcademicYear).where(
                AcademicYear.id == academic_year_id, AcademicYear.school_id == school_id
            )
        )
        academic_year = result.scalar_one_or_none()
        if not academic_year:
            raise NotFoundError("Academic year", academic_year_id)
        return academic_year

    async def forecast_fees(
        self, school_id: int, data: ForecastRequest, today: date | None = None
    ) -> ForecastResult:
        today = today or date.today()
        student = await self._get_student(data.student_id, school_id)
        academic_year = await self._get_academic_year(data.academic_year_id, school_id)

        result = await self.db.execute(
            select(StudentAcademicRecord)
            .where(
                StudentAcademicRecord.student_id == student.id,
                StudentAcademicRecord.academic_year_id == academic_year.id,
            )
            .options(selectinload(StudentAcademicRecord.school_class))
            .order_by(StudentAcademicRecord.id.desc())
            .limit(1)
        )
        record = result.scalar_one_or_none()
        if not record or record.class_id is None:
            raise ValidationError("Student has no class assigned for this academic year")

        target = data.forecast_up_to or today
        months = forecast_months(academic_year.start_date, target, today)
        first_month = months[0] if months else start_of_month(max(academic_year.start_date, today))

        existing = await self._existing_obligations(student.id, academic_year.id)
        class_fees = await self._class_fees(school_id, record.class_id, existing, first_month)
        bus_fees = (
            await self._bus_fees(school_id, student, record.class_id, months)
            if data.include_bus_fees
            else BusFeesBreakdown()
        )
        previous_balance = PreviousBalance(
            amount=round_money(student.opening_balance or ZERO)
            if data.include_previous_balance
            else ZERO
        )
        other_fees = await self._other_fees(student.id, academic_year.id, target)

        total = round_money(
            class_fees.total + bus_fees.total + previous_balance.amount + other_fees.total
        )

        return ForecastResult(
            student_id=student.id,
            student_name=student.full_name,
            academic_year_id=academic_year.id,
            academic_year_name=academic_year.name,
            class_name=record.school_class.name if record.school_class else "Unknown",
            forecast_up_to=target,
            total_amount=total,
            breakdown=ForecastBreakdown(
                class_fees=class_fees,
                bus_fees=bus_fees,
                previous_balance=previous_balance,
                other_fees=other_fees,
            ),
            summary=self._summary(total, existing, today),
        )

    async def _existing_obligations(
        self, student_id: int, academic_year_id: int
    ) -> list[StudentFeeStructure]:
        result = await self.db.execute(
            select(StudentFeeStructure)
            .where(
                StudentFeeStructure.student_id == student_id,
                StudentFeeStructure.academic_year_id == academic_year_id,
            )
            .order_by(StudentFeeStructure.due_date, StudentFeeStructure.id)
        )
        return list(result.scalars().all())

    async def _class_fees(
        self,
        school_id: int,
        class_id: int,
        existing: list[StudentFeeStructure],
        first_month: date,
    ) -> ClassFeesBreakdown:
        """Generated obligations where they exist, one projected occurrence otherwise."""
        result = await self.db.execute(
            select(FeeStructure)
            .where(
                FeeStructure.school_id == school_id,
                FeeStructure.status == StructureStatus.ACTIVE.value,
                (FeeStructure.class_id == class_id) | (FeeStructure.class_id.is_(None)),
            )
            .order_by(FeeStructure.id)
        )
        lines: list[ClassFeeLine] = []
        for structure in result.scalars().all():
            rows = [row for row in existing if row.fee_structure_id == structure.id]
            if rows:
                lines.extend(
                    ClassFeeLine(
                        fee_structure_id=structure.id,
                        fee_structure_name=structure.name,
                        amount=row.amount,
                        due_date=row.due_date,
                        status=row.status,
                        installment_number=row.installment_number,
                    )
                    for row in rows
                )
            else:
                lines.append(
                    ClassFeeLine(
                        fee_structure_id=structure.id,
                        fee_structure_name=structure.name,
                        amount=round_money(structure.amount),
                        due_date=first_month,
                        status=FeeObligationStatus.PENDING.value,
                        projected=True,
                    )
                )
        return ClassFeesBreakdown(total=sum_money(line.amount for line in lines), fees=lines)

    async def _bus_fees(
        self, school_id: int, student: Student, class_id: int, months: list[date]
    ) -> BusFeesBreakdown:
        if student.route_plan_id is None:
            return BusFeesBreakdown()

        result = await self.db.execute(
            select(RoutePlan).where(
                RoutePlan.id == student.route_plan_id,
                RoutePlan.school_id == school_id,
                RoutePlan.status == RoutePlanStatus.ACTIVE.value,
            )
        )
        plan = result.scalar_one_or_none()
        if not plan or (plan.class_id is not None and plan.class_id != class_id):
            return BusFeesBreakdown()

        monthly = round_money(plan.amount)
        lines = [
            BusFeeLine(month=month.strftime("%B %Y"), amount=monthly, due_date=end_of_month(month))
            for month in months
        ]
        return BusFeesBreakdown(
            total=round_money(monthly * len(lines)),
            monthly_amount=monthly,
            months=len(lines),
            fees=lines,
        )

    async def _other_fees(
        self, student_id: int, academic_year_id: int, target: date
    ) -> OtherFeesBreakdown:
        """Outstanding hostel, fine and misc items on open invoices due by the target."""
        result = await self.db.execute(
            select(InvoiceItem, Invoice)
            .join(Invoice, InvoiceItem.invoice_id == Invoice.id)
            .where(
                Invoice.student_id == student_id,
                Invoice.academic_year_id == academic_year_id,
                Invoice.status.in_(
                    [InvoiceStatus.ISSUED.value, InvoiceStatus.PARTIALLY_PAID.value]
                ),
                InvoiceItem.source_type.in_(OTHER_FEE_SOURCES),
            )
            .order_by(Invoice.due_date, InvoiceItem.id)
        )
        lines = []
        for item, invoice in result.all():
            due_date = item.due_date or invoice.due_date
            if due_date > target:
                continue
            lines.append(
                OtherFeeLine(
                    invoice_id=invoice.id,
                    invoice_number=invoice.invoice_number,
                    item_id=item.id,
                    source_type=item.source_type,
                    description=item.description,
                    amount=round_money(item.net_amount),
                    due_date=due_date,
                )
            )
        return OtherFeesBreakdown(total=sum_money(line.amount for line in lines), fees=lines)

    @staticmethod
    def _summary(
        total_due, existing: list[StudentFeeStructure], today: date
    ) -> ForecastSummary:
        paid = [row.amount for row in existing if row.status == FeeObligationStatus.PAID.value]
        pending = [
            row.amount for row in existing if row.status == FeeObligationStatus.PENDING.value
        ]
        overdue = [
            row.amount
            for row in existing
            if row.status == FeeObligationStatus.OVERDUE.value
            or (row.status == FeeObligationStatus.PENDING.value and row.due_date < today)
        ]
        return ForecastSummary(
            total_due=total_due,
            total_paid=sum_money(paid),
            total_pending=sum_money(pending),
            total_overdue=sum_money(overdue),
        )
