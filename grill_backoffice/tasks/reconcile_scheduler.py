"""Nightly reconciliation of the previous UTC day against Square order history."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from grill_backoffice.core.config import RECONCILE_CRON
from grill_backoffice.core.database import SessionLocal
from grill_backoffice.services.reconciliation import ReconciliationResult, reconcile_previous_day
from grill_backoffice.square.base import OrderSource
from grill_backoffice.square.client import SquareClient

logger = logging.getLogger(__name__)

JOB_ID = "nightly_reconciliation"
MISFIRE_GRACE_SECONDS = 3600

scheduler: Optional[BackgroundScheduler] = None


def get_scheduler() -> BackgroundScheduler:
    global scheduler
    if scheduler is None:
        scheduler = BackgroundScheduler(timezone="UTC")
    return scheduler


def run_reconciliation_now(
    session_factory: Callable[[], Session] = SessionLocal,
    order_source: OrderSource | None = None,
) -> ReconciliationResult:
    """Reconciles yesterday immediately; errors propagate to the caller."""
    if order_source is not None:
        return reconcile_previous_day(session_factory, order_source)
    with SquareClient() as client:
        return reconcile_previous_day(session_factory, client)


def _scheduled_reconciliation(
    session_factory: Callable[[], Session],
    order_source_factory: Callable[[], OrderSource] | None,
) -> None:
    try:
        order_source = order_source_factory() if order_source_factory else None
        run_reconciliation_now(session_factory, order_source)
    except Exception:
        logger.exception("Nightly reconciliation failed")


def start_reconcile_scheduler(
    cron: str = RECONCILE_CRON,
    session_factory: Callable[[], Session] = SessionLocal,
    order_source_factory: Callable[[], OrderSource] | None = None,
) -> BackgroundScheduler:
    current = get_scheduler()
    current.add_job(
        _scheduled_reconciliation,
        CronTrigger.from_crontab(cron, timezone="UTC"),
        args=[session_factory, order_source_factory],
        id=JOB_ID,
        name="Nightly reconciliation",
        replace_existing=True,
        coalesce=True,
        misfire_grace_time=MISFIRE_GRACE_SECONDS,
    )

    if not current.running:
        current.start()
        logger.info("Reconciliation scheduler started cron=%s", cron)
    return current


def stop_reconcile_scheduler() -> None:
    global scheduler
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Reconciliation scheduler stopped")
    scheduler = None
