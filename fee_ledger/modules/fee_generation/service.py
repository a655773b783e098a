"""Service for generating per-student fee obligations from fee structures."""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fee_ledger.core.audit.service import AuditAction, AuditService
from fee_ledger.core.config import settings
from fee_ledger.core.exceptions import NotFoundError, ValidationError
from fee_ledger.shared.utils.dates import add_months, start_of_month
from fee_ledger.shared.utils.money import ZERO, round_money
from fee_ledger.modules.academics.models import AcademicYear
from fee_ledger.modules.fee_generation.installments import plan_installments
from fee_ledger.modules.fee_generation.models import (
    FeeGenerationHistory,
    GenerationStatus,
    GenerationType,
)
from fee_ledger.modules.fee_generation.schemas import (
    FailedStudent,
    GenerateFeesRequest,
    GenerateFeesResult,
)
from fee_ledger.modules.fee_structures.models import (
    FeeObligationStatus,
    FeeStructure,
    StructureStatus,
    StudentFeeStructure,
)
from fee_ledger.modules.students.models import (
    AcademicRecordStatus,
    Student,
    StudentAcademicRecord,
    StudentStatus,
)

logger = logging.getLogger(__name__)


@dataclass
class _RunTally:
    generated: int = 0
    failed: int = 0
    total_amount: Decimal = ZERO
    errors: list[str] = field(default_factory=list)
    failures: list[dict] = field(default_factory=list)

    def fail(self, student_id: int, student_name: str, error: str) -> None:
        self.failed += 1
        self.errors.append(f"Student {student_name}: {error}")
        self.failures.append(
            FailedStudent(student_id=student_id, student_name=student_name, error=error).model_dump()
        )


class FeeGenerationService:
    """Generates StudentFeeStructure rows in bulk and records each run."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    # --- Helper Methods ---

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

    async def _get_fee_structures(
        self, school_id: int, fee_structure_ids: list[int]
    ) -> list[FeeStructure]:
        result = await self.db.execute(
            select(FeeStructure)
            .where(
                FeeStructure.school_id == school_id,
                FeeStructure.id.in_(fee_structure_ids),
                FeeStructure.status == StructureStatus.ACTIVE.value,
            )
            .order_by(FeeStructure.id)
        )
        structures = list(result.scalars().all())
        missing = set(fee_structure_ids) - {s.id for s in structures}
        if missing:
            raise NotFoundError("Fee structure", sorted(missing))
        return structures

    async def _resolve_cohort(self, school_id: int, data: GenerateFeesRequest) -> list[Student]:
        """Students targeted by a manual run: explicit ids, or everyone active in the classes."""
        if data.student_ids:
            result = await self.db.execute(
                select(Student)
                .where(
                    Student.school_id == school_id,
                    Student.id.in_(data.student_ids),
                    Student.status == StudentStatus.ACTIVE.value,
                )
                .order_by(Student.id)
            )
            students = list(result.scalars().all())
        elif data.class_ids:
            result = await self.db.execute(
                select(Student)
                .join(StudentAcademicRecord, StudentAcademicRecord.student_id == Student.id)
                .where(
                    Student.school_id == school_id,
                    StudentAcademicRecord.academic_year_id == data.academic_year_id,
                    StudentAcademicRecord.class_id.in_(data.class_ids),
                    StudentAcademicRecord.status == AcademicRecordStatus.ACTIVE.value,
                )
                .order_by(Student.id)
                .distinct()
            )
            students = list(result.scalars().all())
        else:
            raise ValidationError("Either student_ids or class_ids must be provided")

        if not students:
            raise ValidationError("No students found matching the criteria")
        return students

    async def _get_academic_record(
        self, student_id: int, academic_year_id: int
    ) -> StudentAcademicRecord | None:
        result = await self.db.execute(
            select(StudentAcademicRecord)
            .where(
                StudentAcademicRecord.student_id == student_id,
                StudentAcademicRecord.academic_year_id == academic_year_id,
            )
            .order_by(StudentAcademicRecord.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _existing_obligations(
        self, student_id: int, fee_structure_id: int, academic_year_id: int
    ) -> list[StudentFeeStructure]:
        result = await self.db.execute(
            select(StudentFeeStructure)
            .where(
                StudentFeeStructure.student_id == student_id,
                StudentFeeStructure.fee_structure_id == fee_structure_id,
                StudentFeeStructure.academic_year_id == academic_year_id,
            )
            .order_by(StudentFeeStructure.installment_number)
        )
        return list(result.scalars().all())

    @staticmethod
    def _apply_discount(
        amount: Decimal, data: GenerateFeesRequest
    ) -> tuple[Decimal, Decimal, Decimal | None]:
        """Return (final amount, discount amount, discount percentage)."""
        discount = data.discount
        if discount is None:
            return amount, ZERO, None
        if discount.percentage is not None:
            percentage = discount.percentage
            discount_amount = round_money(amount * percentage / 100)
        elif discount.fixed_amount is not None:
            discount_amount = round_money(discount.fixed_amount)
            percentage = (discount_amount / amount * 100).quantize(Decimal("0.0001")) if amount else None
        else:
            return amount, ZERO, None
        return round_money(amount - discount_amount), discount_amount, percentage

    async def _start_history(
        self,
        school_id: int,
        academic_year_id: int,
        generation_type: GenerationType,
        total_students: int,
        *,
        fee_structure_ids: list[int] | None = None,
        class_ids: list[int] | None = None,
        student_ids: list[int] | None = None,
        user_id: int | None = None,
        user_name: str | None = None,
    ) -> FeeGenerationHistory:
        """Persist the run as IN_PROGRESS before any student is processed."""
        history = FeeGenerationHistory(
            school_id=school_id,
            academic_year_id=academic_year_id,
            generation_type=generation_type.value,
            status=GenerationStatus.IN_PROGRESS.value,
            total_students=total_students,
            fees_generated=0,
            fees_failed=0,
            fee_structure_ids=fee_structure_ids,
            class_ids=class_ids,
            student_ids=student_ids,
            generated_by_user_id=user_id,
            generated_by=user_name,
        )
        self.db.add(history)
        await self.db.commit()
        return history

    async def _complete_history(
        self, history: FeeGenerationHistory, tally: _RunTally, user_id: int | None
    ) -> None:
        history.status = GenerationStatus.COMPLETED.value
        history.fees_generated = tally.generated
        history.fees_failed = tally.failed
        history.total_amount_generated = round_money(tally.total_amount)
        history.failed_student_details = tally.failures or None
        if tally.errors:
            history.error_message = "; ".join(
                tally.errors[: settings.generation_error_sample_size]
            )
        history.completed_at = datetime.now(timezone.utc)

        await self.audit.log(
            action=AuditAction.GENERATE_FEES,
            entity_type="FeeGenerationHistory",
            entity_id=history.id,
            school_id=history.school_id,
            user_id=user_id,
            new_values={
                "generation_type": history.generation_type,
                "generated": tally.generated,
                "failed": tally.failed,
                "total_amount": str(history.total_amount_generated),
            },
        )
        await self.db.commit()

        logger.info(
            "Fee generation %s (%s) for school %s completed: %s generated, %s failed, total %s",
            history.id,
            history.generation_type,
            history.school_id,
            tally.generated,
            tally.failed,
            history.total_amount_generated,
        )

    async def _fail_history(self, history_id: int, exc: Exception) -> None:
        await self.db.rollback()
        history = await self.db.get(FeeGenerationHistory, history_id)
        history.status = GenerationStatus.FAILED.value
        history.error_message = str(exc)
        history.completed_at = datetime.now(timezone.utc)
        await self.db.commit()
        logger.error("Fee generation %s failed: %s", history_id, exc)

    # --- Manual generation ---

    async def generate_fees(
        self,
        school_id: int,
        data: GenerateFeesRequest,
        user_id: int | None = None,
        user_name: str | None = None,
    ) -> GenerateFeesResult:
        """
        Generate fee obligations for a cohort.

        Each student is processed in its own savepoint: a failure for one
        student is recorded on the history row and the batch continues.
        """
        await self._get_academic_year(data.academic_year_id, school_id)
        structures = await self._get_fee_structures(school_id, data.fee_structure_ids)

        discount = data.discount
        if discount and discount.percentage is None and discount.fixed_amount is not None:
            too_small = [s.name for s in structures if s.amount < discount.fixed_amount]
            if too_small:
                raise ValidationError(
                    f"Fixed discount exceeds fee amount for: {', '.join(too_small)}",
                    field="discount",
                )

        students = await self._resolve_cohort(school_id, data)

        history = await self._start_history(
            school_id,
            data.academic_year_id,
            GenerationType.MANUAL,
            len(students),
            fee_structure_ids=data.fee_structure_ids,
            class_ids=data.class_ids,
            student_ids=data.student_ids,
            user_id=user_id,
            user_name=user_name,
        )
        history_id = history.id
        student_rows = [(s.id, s.full_name) for s in students]
        structure_rows = [(s.id, s.class_id, round_money(s.amount)) for s in structures]
        tally = _RunTally()

        try:
            for student_id, student_name in student_rows:
                record = await self._get_academic_record(student_id, data.academic_year_id)
                if not record or record.class_id is None:
                    tally.fail(student_id, student_name, "No class assigned")
                    continue

                try:
                    async with self.db.begin_nested():
                        rows = await self._generate_for_student(
                            student_id, record, structure_rows, data
                        )
                except Exception as exc:
                    logger.warning(
                        "Fee generation %s: student %s failed: %s", history_id, student_id, exc
                    )
                    tally.fail(student_id, student_name, str(exc) or exc.__class__.__name__)
                    continue

                tally.generated += len(rows)
                tally.total_amount += sum((row.amount for row in rows), ZERO)

            await self._complete_history(history, tally, user_id)
        except Exception as exc:
            await self._fail_history(history_id, exc)
            raise

        return GenerateFeesResult(
            success=True,
            generated=tally.generated,
            failed=tally.failed,
            history_id=history_id,
            total_amount=round_money(tally.total_amount),
            errors=tally.errors,
        )

    async def _generate_for_student(
        self,
        student_id: int,
        record: StudentAcademicRecord,
        structure_rows: list[tuple[int, int | None, Decimal]],
        data: GenerateFeesRequest,
    ) -> list[StudentFeeStructure]:
        created: list[StudentFeeStructure] = []
        installment = data.installment if data.installment and data.installment.enabled else None

        for structure_id, structure_class_id, structure_amount in structure_rows:
            if structure_class_id is not None and structure_class_id != record.class_id:
                continue

            existing = await self._existing_obligations(
                student_id, structure_id, data.academic_year_id
            )
            if existing:
                if not data.regenerate_existing:
                    continue
                await self.db.execute(
                    delete(StudentFeeStructure).where(
                        StudentFeeStructure.student_id == student_id,
                        StudentFeeStructure.fee_structure_id == structure_id,
                        StudentFeeStructure.academic_year_id == data.academic_year_id,
                    )
                )

            final_amount, discount_amount, percentage = self._apply_discount(
                structure_amount, data
            )
            common = dict(
                student_id=student_id,
                fee_structure_id=structure_id,
                academic_year_id=data.academic_year_id,
                academic_record_id=record.id,
                original_amount=structure_amount,
                discount_amount=discount_amount,
                discount_percentage=percentage,
                status=FeeObligationStatus.PENDING.value,
            )

            if installment:
                start_date = installment.start_date or data.due_date
                for part in plan_installments(final_amount, installment.count, start_date):
                    created.append(
                        StudentFeeStructure(
                            **common,
                            amount=part.amount,
                            due_date=part.due_date,
                            installment_count=installment.count,
                            installment_number=part.number,
                            installment_start_date=start_date,
                            installment_amount=part.amount,
                        )
                    )
            else:
                created.append(
                    StudentFeeStructure(**common, amount=final_amount, due_date=data.due_date)
                )

        self.db.add_all(created)
        await self.db.flush()
        return created

    # --- Automatic monthly generation ---

    async def generate_monthly_fees(
        self, school_id: int, academic_year_id: int, run_date: date | None = None
    ) -> GenerateFeesResult:
        """
        Scheduled run: every active structure for every active academic record.

        Fees that already exist are skipped; an incomplete installment series
        gets its next installment. New fees are due on the first day of the
        month after `run_date`.
        """
        await self._get_academic_year(academic_year_id, school_id)
        run_date = run_date or date.today()
        due_date = add_months(start_of_month(run_date), 1)

        result = await self.db.execute(
            select(FeeStructure)
            .where(
                FeeStructure.school_id == school_id,
                FeeStructure.status == StructureStatus.ACTIVE.value,
            )
            .order_by(FeeStructure.id)
        )
        structures = [(s.id, s.class_id, round_money(s.amount)) for s in result.scalars().all()]

        result = await self.db.execute(
            select(StudentAcademicRecord)
            .where(
                StudentAcademicRecord.school_id == school_id,
                StudentAcademicRecord.academic_year_id == academic_year_id,
                StudentAcademicRecord.status == AcademicRecordStatus.ACTIVE.value,
            )
            .options(selectinload(StudentAcademicRecord.student))
            .order_by(StudentAcademicRecord.id)
        )
        records = list(result.scalars().all())

        history = await self._start_history(
            school_id,
            academic_year_id,
            GenerationType.AUTOMATIC,
            len(records),
            fee_structure_ids=[s[0] for s in structures],
            user_name="System",
        )
        history_id = history.id
        tally = _RunTally()

        try:
            for record in records:
                if record.class_id is None or record.student is None:
                    continue
                student_id = record.student_id
                student_name = record.student.full_name

                for structure_id, structure_class_id, structure_amount in structures:
                    if structure_class_id is not None and structure_class_id != record.class_id:
                        continue
                    try:
                        async with self.db.begin_nested():
                            row = await self._next_monthly_obligation(
                                record, structure_id, structure_amount, due_date
                            )
                    except Exception as exc:
                        tally.fail(student_id, student_name, str(exc) or exc.__class__.__name__)
                        continue
                    if row is not None:
                        tally.generated += 1
                        tally.total_amount += row.amount

            await self._complete_history(history, tally, None)
        except Exception as exc:
            await self._fail_history(history_id, exc)
            raise

        return GenerateFeesResult(
            success=True,
            generated=tally.generated,
            failed=tally.failed,
            history_id=history_id,
            total_amount=round_money(tally.total_amount),
            errors=tally.errors,
        )

    async def _next_monthly_obligation(
        self,
        record: StudentAcademicRecord,
        structure_id: int,
        structure_amount: Decimal,
        due_date: date,
    ) -> StudentFeeStructure | None:
        existing = await self._existing_obligations(
            record.student_id, structure_id, record.academic_year_id
        )
        if existing:
            series = [row for row in existing if row.is_installment]
            if not series:
                return None
            last = series[-1]
            if len(series) >= last.installment_count:
                return None
            row = StudentFeeStructure(
                student_id=record.student_id,
                fee_structure_id=structure_id,
                academic_year_id=record.academic_year_id,
                academic_record_id=record.id,
                amount=last.installment_amount or last.amount,
                original_amount=last.original_amount,
                discount_amount=last.discount_amount,
                discount_percentage=last.discount_percentage,
                due_date=due_date,
                status=FeeObligationStatus.PENDING.value,
                installment_count=last.installment_count,
                installment_number=last.installment_number + 1,
                installment_start_date=last.installment_start_date,
                installment_amount=last.installment_amount,
            )
        else:
            row = StudentFeeStructure(
                student_id=record.student_id,
                fee_structure_id=structure_id,
                academic_year_id=record.academic_year_id,
                academic_record_id=record.id,
                amount=structure_amount,
                original_amount=structure_amount,
                discount_amount=ZERO,
                due_date=due_date,
                status=FeeObligationStatus.PENDING.value,
            )

        self.db.add(row)
        await self.db.flush()
        return row

    # --- History ---

    async def list_history(self, school_id: int, limit: int = 50) -> list[FeeGenerationHistory]:
        result = await self.db.execute(
            select(FeeGenerationHistory)
            .where(FeeGenerationHistory.school_id == school_id)
            .order_by(FeeGenerationHistory.created_at.desc(), FeeGenerationHistory.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_history(
        self, history_id: int, school_id: int
    ) -> tuple[FeeGenerationHistory, list[FeeStructure]]:
        """History row plus the fee structures it referenced."""
        result = await self.db.execute(
            select(FeeGenerationHistory).where(
                FeeGenerationHistory.id == history_id,
                FeeGenerationHistory.school_id == school_id,
            )
        )
        history = result.scalar_one_or_none()
        if not history:
            raise NotFoundError("Generation history", history_id)

        structures: list[FeeStructure] = []
        if history.fee_structure_ids:
            result = await self.db.execute(
                select(FeeStructure)
                .where(
                    FeeStructure.school_id == school_id,
                    FeeStructure.id.in_(history.fee_structure_ids),
                )
                .order_by(FeeStructure.id)
            )
            structures = list(result.scalars().all())
        return history, structures

