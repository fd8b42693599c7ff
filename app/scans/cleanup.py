from __future__ import annotations

import logging
from datetime import datetime, timezone, timedelta
from sqlalchemy.orm import Session

from app.core.config import SCAN_MAX_ATTEMPTS, SCAN_TASK_TIME_LIMIT
from app.scans import store
from app.scans.models import ScanJob, QUEUED, PROCESSING, FAILED

logger = logging.getLogger(__name__)


def _as_utc(dt):
    if dt is None:
        return None
    # SQLite returns naive datetimes; they are stored as UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def stale_processing_cutoff() -> timedelta:
    # every attempt may run up to the time limit; leave room for the backoff between them
    return timedelta(seconds=SCAN_TASK_TIME_LIMIT * SCAN_MAX_ATTEMPTS + 120)


def recover_scan_jobs(db: Session, processing_ttl: timedelta | None = None) -> dict:
    """
    Startup recovery:
    - queued jobs are returned for re-submission (never silently dropped)
    - processing jobs whose worker is long gone are failed
    """
    now = datetime.now(timezone.utc)
    cutoff = now - (processing_ttl or stale_processing_cutoff())

    queued_ids = [
        j.id for j in db.query(ScanJob.id).filter(ScanJob.status == QUEUED).order_by(ScanJob.id.asc())
    ]

    stale = 0
    running = (
        db.query(ScanJob)
        .filter(ScanJob.status == PROCESSING)
        .filter(ScanJob.started_at.isnot(None))
        .all()
    )
    for j in running:
        last_seen = _as_utc(j.updated_at) or _as_utc(j.started_at)
        if last_seen and last_seen <= cutoff:
            if store.finish_job(db, j.id, FAILED, error_message="stale processing scan (worker lost)"):
                stale += 1

    if stale or queued_ids:
        logger.info(f"Scan recovery: {len(queued_ids)} queued to resume, {stale} stale processing failed")

    return {"queued": queued_ids, "fixed_processing": stale}
