# app/scans/routes.py

import logging
from datetime import timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.auth.deps import get_current_user
from app.core.config import DEFAULT_CONFIDENCE_THRESHOLD, SCAN_SUBMIT_RATE
from app.core.ratelimit import limiter
from app.db.session import get_db
from app.scans import queue, store
from app.scans.models import ScanJob, ScanResult, STATUSES
from app.users.models import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scans", tags=["scans"])


class ScanBody(BaseModel):
    scan_type: Literal["web", "social", "combined"] = "web"
    confidence_threshold: Optional[int] = Field(default=None, ge=0, le=100)


def _iso(dt):
    if dt is None:
        return None
    # SQLite can return naive -> treat as UTC
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds")


def serialize_job(s: ScanJob) -> dict:
    return {
        "id": s.id,
        "status": s.status,
        "scan_type": s.scan_type,
        "confidence_threshold": s.confidence_threshold,
        "progress": s.progress,
        "total_images_scanned": s.total_images_scanned,
        "total_matches_found": s.total_matches_found,
        "provider": s.provider,
        "attempts": s.attempts,
        "summary": s.summary,
        "error_message": s.error_message,
        "created_at": _iso(s.created_at),
        "started_at": _iso(s.started_at),
        "completed_at": _iso(s.completed_at),
    }


def get_owned_job(db: Session, job_id: int, user: User) -> ScanJob:
    s = db.query(ScanJob).filter(ScanJob.id == job_id, ScanJob.user_id == user.id).first()
    if not s:
        raise HTTPException(status_code=404, detail="Scan job not found")
    return s


@router.post("", status_code=201)
@limiter.limit(SCAN_SUBMIT_RATE)
def create_scan(
    request: Request,
    body: ScanBody,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if not store.list_active_reference_faces(db, user.id):
        raise HTTPException(
            status_code=400,
            detail="Upload at least one reference photo before starting a scan",
        )

    threshold = body.confidence_threshold
    if threshold is None:
        threshold = user.confidence_threshold or DEFAULT_CONFIDENCE_THRESHOLD

    job = queue.create_job(db, user_id=user.id, scan_type=body.scan_type, confidence_threshold=threshold)
    try:
        queue.dispatch(db, job.id)
    except Exception:
        # eager mode runs the job inline; its failure is already recorded on the row
        logger.exception(f"Scan job {job.id} raised during dispatch")

    db.refresh(job)
    return {"scan_job": serialize_job(job)}


@router.get("")
def list_scans(
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if status and status not in STATUSES:
        raise HTTPException(status_code=400, detail=f"Unknown status: {status}")

    q = db.query(ScanJob).filter(ScanJob.user_id == user.id)
    if status:
        q = q.filter(ScanJob.status == status)

    total = q.count()
    scans = q.order_by(ScanJob.id.desc()).offset(max(offset, 0)).limit(min(max(limit, 1), 100)).all()

    items = [serialize_job(s) for s in scans]
    return {"value": items, "count": len(items), "total": total, "limit": limit, "offset": offset}


@router.get("/stats")
def scan_stats(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    by_status = (
        db.query(ScanJob.status, func.count(ScanJob.id))
        .filter(ScanJob.user_id == user.id)
        .group_by(ScanJob.status)
        .all()
    )
    total_matches = (
        db.query(func.count(ScanResult.id))
        .join(ScanJob, ScanJob.id == ScanResult.scan_job_id)
        .filter(ScanJob.user_id == user.id)
        .scalar()
    )
    return {
        "stats": [{"status": s, "count": c} for s, c in by_status],
        "total_scans": sum(c for _s, c in by_status),
        "total_matches": total_matches or 0,
    }


@router.get("/{scan_id}")
def get_scan(scan_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return serialize_job(get_owned_job(db, scan_id, user))


@router.post("/{scan_id}/cancel")
def cancel_scan(scan_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    s = get_owned_job(db, scan_id, user)
    if s.is_terminal:
        raise HTTPException(status_code=400, detail=f"Scan job is already {s.status}")

    if not queue.cancel(db, s.id):
        db.refresh(s)
        raise HTTPException(status_code=400, detail=f"Scan job is already {s.status}")

    db.refresh(s)
    return {"scan_job": serialize_job(s)}
