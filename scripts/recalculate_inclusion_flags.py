"""Recompute every appointment's inclusion flag, optionally for one company.

Usage: python scripts/recalculate_inclusion_flags.py [company_id]
"""
from __future__ import annotations

import sys

from dotenv import load_dotenv

load_dotenv()

from pcntrack.config import get_settings
from pcntrack.core.logging import setup_logging
from pcntrack.db import Database
from pcntrack.services.inclusion import recompute_all


def main(argv: list[str]) -> int:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    company_id = int(argv[1]) if len(argv) > 1 else None

    database = Database(settings.database_url)
    try:
        with database.session() as db:
            summary = recompute_all(db, company_id, batch_size=settings.PCN_SWEEP_BATCH_SIZE)
    finally:
        database.dispose()

    print(f"Checked {summary.total}, updated {summary.updated}, errors {summary.errors}")
    if summary.failed_ids:
        print(f"Failed appointment ids: {summary.failed_ids}")
    return 1 if summary.errors else 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
