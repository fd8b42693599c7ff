# app/scans/queue.py

from __future__ import annotations

import logging
from urllib.parse import urlsplit, urlunsplit

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.celery_app import celery
from app.scans import store
from app.scans.models import (
    ScanJob,
    QUEUED,
    PROCESSING,
    COMPLETED,
    FAILED,
    CANCELLED,
    SCAN_TYPES,
)

logger = logging.getLogger(__name__)


def create_job(db: Session, *, user_id: int, scan_type: str, confidence_threshold: int) -> ScanJob:
    if scan_type not in SCAN_TYPES:
        raise ValueError(f"scan_type must be one of {', '.join(SCAN_TYPES)}")
    if not 0 <= int(confidence_threshold) <= 100:
        raise ValueError("confidence_threshold must be between 0 and 100")

    job = ScanJob(
        user_id=user_id,
        scan_type=scan_type,
        confidence_threshold=int(confidence_threshold),
        status=QUEUED,
        progress=0,
        total_images_scanned=0,
        total_matches_found=0,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def dispatch(db: Session, job_id: int) -> str | None:
    """Hand an existing queued job to the broker. One call per created job."""
    from app.scans.tasks import process_scan_job

    result = process_scan_job.apply_async(args=[job_id])
    # eager runs have already finished here; only record the id while still queued
    store.update_job(db, job_id, task_id=result.id)
    logger.info(f"Submitted scan job {job_id} (task {result.id})", extra={"scan_job_id": job_id})
    return result.id


def submit(db: Session, *, user_id: int, scan_type: str, confidence_threshold: int) -> ScanJob:
    job = create_job(db, user_id=user_id, scan_type=scan_type, confidence_threshold=confidence_threshold)
    dispatch(db, job.id)
    db.refresh(job)
    return job


def get_status(db: Session, job_id: int) -> ScanJob | None:
    return store.get_job(db, job_id)


def cancel(db: Session, job_id: int) -> bool:
    """
    queued|processing -> cancelled. A running job stops at its next phase
    boundary; False when the job is missing or already terminal.
    """
    ok = store.cancel_job(db, job_id)
    if ok:
        logger.info(f"Scan job {job_id} cancelled", extra={"scan_job_id": job_id})
    return ok


def resume_queued_jobs(db: Session, job_ids: list[int] | None = None) -> int:
    """Re-submit jobs still queued (e.g. after a restart with a non-persistent broker)."""
    if job_ids is None:
        job_ids = [j.id for j in db.query(ScanJob.id).filter(ScanJob.status == QUEUED).order_by(ScanJob.id.asc())]
    for job_id in job_ids:
        dispatch(db, job_id)
    return len(job_ids)


def _mask_url(url: str) -> str:
    parts = urlsplit(url)
    if parts.password:
        netloc = parts.netloc.replace(f":{parts.password}@", ":***@")
        return urlunsplit(parts._replace(netloc=netloc))
    return url


def broker_status(timeout: float = 2.0) -> dict:
    broker_url = celery.conf.broker_url or ""
    try:
        with celery.connection_for_write() as conn:
            conn.ensure_connection(max_retries=1, timeout=timeout)
        return {"connected": True, "broker": _mask_url(broker_url)}
    except Exception as e:
        logger.error(f"Broker connection check failed: {e}")
        return {"connected": False, "broker": _mask_url(broker_url), "error": str(e)}


def queue_health(db: Session) -> dict:
    counts = dict(
        db.query(ScanJob.status, func.count(ScanJob.id)).group_by(ScanJob.status).all()
    )
    return {
        "jobs": {
            "waiting": counts.get(QUEUED, 0),
            "active": counts.get(PROCESSING, 0),
            "completed": counts.get(COMPLETED, 0),
            "failed": counts.get(FAILED, 0),
            "cancelled": counts.get(CANCELLED, 0),
        },
        "broker": broker_status(),
        "eager": bool(celery.conf.task_always_eager),
    }
