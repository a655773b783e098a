#!/usr/bin/env python3
"""
Retry payment journal entries that could not be posted when the payment was
recorded (ledger outbox).

Usage:
    python scripts/process_ledger_postings.py --school-id 3
    python scripts/process_ledger_postings.py --school-id 3 --include-failed
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from fee_ledger.core.database.session import async_session
from fee_ledger.main import app  # noqa: F401  (registers every model)
from fee_ledger.modules.accounting.service import AccountingService

logger = logging.getLogger("fee_ledger.scripts.ledger_postings")


async def run(school_id: int, limit: int, include_failed: bool) -> int:
    async with async_session() as session:
        service = AccountingService(session)
        result = await service.process_pending_postings(school_id, limit, include_failed)
    logger.info(
        "School %s: %s postings processed, %s posted, %s still failing",
        school_id,
        result.processed,
        result.posted,
        result.failed,
    )
    return result.failed


def main() -> None:
    parser = argparse.ArgumentParser(description="Retry queued ledger postings")
    parser.add_argument("--school-id", type=int, required=True)
    parser.add_argument("--limit", type=int, default=100)
    parser.add_argument(
        "--include-failed",
        action="store_true",
        help="Also retry postings parked after too many failed attempts",
    )
    args = parser.parse_args()

    failed = asyncio.run(run(args.school_id, args.limit, args.include_failed))
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
