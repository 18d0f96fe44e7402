"""Background jobs run by APScheduler on the replica holding the scheduler lock."""
from __future__ import annotations

import logging

from pcntrack.config import get_settings
from pcntrack.db import Database
from pcntrack.services.inclusion import RecomputeSummary, recompute_all
from pcntrack.services.notifications import Notifier, get_notifier
from pcntrack.services.scheduler_lock import refresh_scheduler_lock
from pcntrack.services.sweep import SweepSummary, sweep_pending_pcns
from pcntrack.services.weekly_report import WeeklyReportSummary, send_weekly_reports

logger = logging.getLogger(__name__)


def pcn_sweep_once(database: Database, notifier: Notifier | None = None) -> SweepSummary:
    with database.session() as db:
        return sweep_pending_pcns(db, notifier=notifier or get_notifier(), settings=get_settings())


def weekly_report_once(database: Database, notifier: Notifier | None = None) -> WeeklyReportSummary:
    with database.session() as db:
        return send_weekly_reports(db, notifier=notifier or get_notifier(), settings=get_settings())


def recompute_inclusion_once(database: Database) -> RecomputeSummary:
    with database.session() as db:
        return recompute_all(db, batch_size=get_settings().PCN_SWEEP_BATCH_SIZE)


def heartbeat_once(database: Database) -> None:
    with database.session() as db:
        refresh_scheduler_lock(db)
