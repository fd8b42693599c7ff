# app/scans/store.py

from __future__ import annotations

import functools
import logging
import time
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.photos.models import ReferencePhoto
from app.scans.errors import StorageError
from app.scans.models import (
    ScanJob,
    ScanResult,
    QUEUED,
    PROCESSING,
    COMPLETED,
    FAILED,
    CANCELLED,
)

logger = logging.getLogger(__name__)

# which states a terminal transition may start from
_FINISH_FROM = {
    COMPLETED: (PROCESSING,),
    FAILED: (QUEUED, PROCESSING),
    CANCELLED: (QUEUED, PROCESSING),
}

STORAGE_RETRIES = 3
STORAGE_RETRY_DELAY = 0.2


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def retry_storage(max_retries: int = STORAGE_RETRIES, initial_delay: float = STORAGE_RETRY_DELAY):
    """
    Retry a write against the session with exponential backoff.

    The session is rolled back between tries. After the last try the error
    is raised as StorageError so the queue's retry layer picks it up.
    """

    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(db: Session, *args, **kwargs):
            delay = initial_delay
            for attempt in range(1, max_retries + 1):
                try:
                    return fn(db, *args, **kwargs)
                except SQLAlchemyError as e:
                    db.rollback()
                    if attempt == max_retries:
                        logger.error(f"{fn.__name__} failed after {attempt} tries: {e}")
                        raise StorageError(f"{fn.__name__}: {e}") from e
                    logger.warning(f"{fn.__name__} failed (try {attempt}/{max_retries}): {e}")
                    time.sleep(delay)
                    delay *= 2

        return wrapper

    return decorator


# ---------------------------------------------------------------------------
# job store (orchestrator only)
# ---------------------------------------------------------------------------


def get_job(db: Session, job_id: int) -> ScanJob | None:
    return db.query(ScanJob).filter(ScanJob.id == job_id).first()


def get_status(db: Session, job_id: int) -> str | None:
    row = db.query(ScanJob.status).filter(ScanJob.id == job_id).first()
    return row[0] if row else None


def _update_where(db: Session, job_id: int, allowed_from: tuple, values: dict) -> bool:
    values = {**values, "updated_at": now_utc()}
    n = (
        db.query(ScanJob)
        .filter(ScanJob.id == job_id, ScanJob.status.in_(allowed_from))
        .update(values, synchronize_session=False)
    )
    db.commit()
    return n == 1


def claim_job(db: Session, job_id: int, attempt: int) -> bool:
    """
    queued -> processing. A redelivered or retried attempt finds the job
    already processing and keeps its progress.
    """
    return _update_where(
        db,
        job_id,
        (QUEUED, PROCESSING),
        {
            "status": PROCESSING,
            "started_at": func.coalesce(ScanJob.started_at, now_utc()),
            "attempts": attempt,
            "error_message": None,
        },
    )


def raise_progress(db: Session, job_id: int, value: int) -> bool:
    """Progress only ever moves up while the job is processing."""
    value = max(0, min(100, int(value)))
    n = (
        db.query(ScanJob)
        .filter(
            ScanJob.id == job_id,
            ScanJob.status == PROCESSING,
            ScanJob.progress < value,
        )
        .update({"progress": value, "updated_at": now_utc()}, synchronize_session=False)
    )
    db.commit()
    return n == 1


def update_job(db: Session, job_id: int, **fields) -> bool:
    """Non-status fields (summary, provider...) of a job that is still running."""
    return _update_where(db, job_id, (QUEUED, PROCESSING), fields)


def finish_job(db: Session, job_id: int, status: str, **fields) -> bool:
    """
    Move a job to a terminal state. Returns False when the job already left
    the states the transition may start from (e.g. cancelled meanwhile).
    """
    allowed_from = _FINISH_FROM[status]
    values = {"status": status, "progress": 100, "completed_at": now_utc(), **fields}
    if "error_message" in values and values["error_message"]:
        values["error_message"] = str(values["error_message"])[:500]
    return _update_where(db, job_id, allowed_from, values)


def cancel_job(db: Session, job_id: int) -> bool:
    return finish_job(db, job_id, CANCELLED)


# ---------------------------------------------------------------------------
# result store (scanners: append-only results, increment-only counter)
# ---------------------------------------------------------------------------


@retry_storage()
def increment_scanned(db: Session, job_id: int, by: int = 1) -> None:
    db.query(ScanJob).filter(ScanJob.id == job_id).update(
        {"total_images_scanned": ScanJob.total_images_scanned + by},
        synchronize_session=False,
    )
    db.commit()


def locked_job_row(db: Session, job_id: int):
    # a concurrent cancel_job blocks on this lock until the insert commits
    return (
        db.query(ScanJob.status, ScanJob.confidence_threshold)
        .filter(ScanJob.id == job_id)
        .with_for_update()
    )


@retry_storage()
def record_result(db: Session, job_id: int, **fields) -> ScanResult | None:
    """
    Append one match. Dropped (None) when the job is no longer processing or
    the confidence is under the job's threshold. The job row stays locked
    from the status check through the insert.
    """
    job = locked_job_row(db, job_id).first()
    if not job or job.status != PROCESSING:
        logger.info(
            f"Dropping result for scan job {job_id}: job is {job.status if job else 'missing'}",
            extra={"scan_job_id": job_id},
        )
        return None

    confidence = float(fields.get("confidence") or 0)
    if confidence < job.confidence_threshold:
        logger.warning(
            f"Dropping result for scan job {job_id}: confidence {confidence} "
            f"below threshold {job.confidence_threshold}",
            extra={"scan_job_id": job_id},
        )
        return None

    result = ScanResult(scan_job_id=job_id, **fields)
    db.add(result)
    db.commit()
    db.refresh(result)
    return result


def count_results(db: Session, job_id: int) -> int:
    return db.query(func.count(ScanResult.id)).filter(ScanResult.scan_job_id == job_id).scalar() or 0


# ---------------------------------------------------------------------------
# reference set
# ---------------------------------------------------------------------------


def active_reference_photos(db: Session, user_id: int) -> list[ReferencePhoto]:
    return (
        db.query(ReferencePhoto)
        .filter(
            ReferencePhoto.user_id == user_id,
            ReferencePhoto.is_active.is_(True),
            ReferencePhoto.face_id.isnot(None),
        )
        .order_by(ReferencePhoto.id.asc())
        .all()
    )


def list_active_reference_faces(db: Session, user_id: int) -> list[str]:
    return [p.face_id for p in active_reference_photos(db, user_id)]


def touch_reference_photos(db: Session, user_id: int) -> None:
    db.query(ReferencePhoto).filter(
        ReferencePhoto.user_id == user_id,
        ReferencePhoto.is_active.is_(True),
    ).update({"last_used_at": now_utc()}, synchronize_session=False)
    db.commit()
