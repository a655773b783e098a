#!/usr/bin/env python3
"""
Scheduled monthly fee generation.

Runs the automatic generation for the current academic year of every school
(or of one school). Meant to be triggered by cron / the platform scheduler.

Usage:
    python scripts/run_monthly_fee_generation.py
    python scripts/run_monthly_fee_generation.py --school-id 3 --run-date 2026-10-25
"""

import argparse
import asyncio
import logging
import sys
from datetime import date
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy import select

from fee_ledger.core.config import settings
from fee_ledger.core.database.session import async_session
from fee_ledger.main import app  # noqa: F401  (registers every model)
from fee_ledger.modules.academics.models import AcademicYear
from fee_ledger.modules.fee_generation.service import FeeGenerationService

logger = logging.getLogger("fee_ledger.scripts.monthly_generation")


async def run(school_id: int | None, run_date: date) -> int:
    """Generate monthly fees; returns the number of schools whose run failed."""
    async with async_session() as session:
        query = select(AcademicYear.school_id, AcademicYear.id).where(
            AcademicYear.is_current == True  # noqa: E712
        )
        if school_id is not None:
            query = query.where(AcademicYear.school_id == school_id)
        targets = (await session.execute(query.order_by(AcademicYear.school_id))).all()

    if not targets:
        logger.warning("No current academic year found, nothing to generate")
        return 0

    failures = 0
    for target_school_id, academic_year_id in targets:
        async with async_session() as session:
            service = FeeGenerationService(session)
            try:
                result = await service.generate_monthly_fees(
                    target_school_id, academic_year_id, run_date
                )
            except Exception:
                failures += 1
                logger.exception("Monthly generation failed for school %s", target_school_id)
                continue
            logger.info(
                "School %s: %s fees generated, %s failed (history %s)",
                target_school_id,
                result.generated,
                result.failed,
                result.history_id,
            )
    return failures


def main() -> None:
    parser = argparse.ArgumentParser(description="Run automatic monthly fee generation")
    parser.add_argument("--school-id", type=int, default=None, help="Only this school")
    parser.add_argument(
        "--run-date",
        type=date.fromisoformat,
        default=None,
        help="Pretend today is this date (YYYY-MM-DD); fees fall due on the 1st of the next month",
    )
    args = parser.parse_args()

    logger.info("Environment: %s", settings.app_env)
    failures = asyncio.run(run(args.school_id, args.run_date or date.today()))
    sys.exit(1 if failures else 0)


if __name__ == "__main__":
    main()
