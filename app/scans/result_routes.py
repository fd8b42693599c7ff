from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, StrictBool
from sqlalchemy.orm import Session

from app.auth.deps import get_current_user
from app.db.session import get_db
from app.scans.models import ScanJob, ScanResult, SOURCE_TYPES
from app.scans.routes import _iso, get_owned_job, serialize_job
from app.users.models import User

router = APIRouter(tags=["results"])

# inclusive bands, highest first
CONFIDENCE_BANDS = [
    (90, 100, "Very High (90-100%)"),
    (80, 89, "High (80-89%)"),
    (70, 79, "Medium (70-79%)"),
    (0, 69, "Low (0-69%)"),
]


class ConfirmBody(BaseModel):
    is_confirmed_by_user: StrictBool


def serialize_result(r: ScanResult) -> dict:
    return {
        "id": r.id,
        "scan_job_id": r.scan_job_id,
        "source_url": r.source_url,
        "image_url": r.image_url,
        "thumbnail_url": r.thumbnail_url,
        "confidence": r.confidence,
        "provider": r.provider,
        "source_type": r.source_type,
        "social_media_item_id": r.social_media_item_id,
        "is_confirmed_by_user": r.is_confirmed_by_user,
        "metadata": r.extra,
        "created_at": _iso(r.created_at),
    }


def band_for(confidence: float) -> str:
    # bands are whole-percent; 89.5 still counts as "High"
    for low, _high, label in CONFIDENCE_BANDS:
        if confidence >= low:
            return label
    return CONFIDENCE_BANDS[-1][2]


@router.get("/scans/{scan_id}/results")
def list_results(
    scan_id: int,
    min_confidence: Optional[float] = None,
    max_confidence: Optional[float] = None,
    source_type: Optional[str] = None,
    is_confirmed_by_user: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    job = get_owned_job(db, scan_id, user)

    if source_type and source_type not in SOURCE_TYPES:
        raise HTTPException(status_code=400, detail=f"Unknown source_type: {source_type}")

    q = db.query(ScanResult).filter(ScanResult.scan_job_id == job.id)
    if min_confidence is not None:
        q = q.filter(ScanResult.confidence >= min_confidence)
    if max_confidence is not None:
        q = q.filter(ScanResult.confidence <= max_confidence)
    if source_type:
        q = q.filter(ScanResult.source_type == source_type)
    if is_confirmed_by_user is not None:
        q = q.filter(ScanResult.is_confirmed_by_user.is_(is_confirmed_by_user))

    total = q.count()
    rows = (
        q.order_by(ScanResult.confidence.desc(), ScanResult.id.asc())
        .offset(max(offset, 0))
        .limit(min(max(limit, 1), 200))
        .all()
    )

    return {
        "value": [serialize_result(r) for r in rows],
        "count": len(rows),
        "total": total,
        "limit": limit,
        "offset": offset,
        "scan_job": serialize_job(job),
    }


@router.get("/scans/{scan_id}/results/stats")
def result_stats(scan_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    job = get_owned_job(db, scan_id, user)

    rows = (
        db.query(ScanResult.confidence, ScanResult.source_type, ScanResult.is_confirmed_by_user)
        .filter(ScanResult.scan_job_id == job.id)
        .all()
    )

    bands = {label: 0 for _low, _high, label in CONFIDENCE_BANDS}
    by_source: dict = {}
    by_confirmation = {"confirmed": 0, "rejected": 0, "pending": 0}

    for confidence, source, confirmed in rows:
        bands[band_for(confidence)] += 1
        by_source[source] = by_source.get(source, 0) + 1
        if confirmed is None:
            by_confirmation["pending"] += 1
        elif confirmed:
            by_confirmation["confirmed"] += 1
        else:
            by_confirmation["rejected"] += 1

    return {
        "total_matches": len(rows),
        "confirmed_matches": by_confirmation["confirmed"],
        "confidence_distribution": [
            {"min": low, "max": high, "label": label, "count": bands[label]}
            for low, high, label in CONFIDENCE_BANDS
        ],
        "source_type_distribution": [{"source_type": s, "count": c} for s, c in sorted(by_source.items())],
        "confirmation_distribution": [{"status": s, "count": c} for s, c in by_confirmation.items()],
    }


@router.patch("/results/{result_id}")
def confirm_result(
    result_id: int,
    body: ConfirmBody,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    r = (
        db.query(ScanResult)
        .join(ScanJob, ScanJob.id == ScanResult.scan_job_id)
        .filter(ScanResult.id == result_id, ScanJob.user_id == user.id)
        .first()
    )
    if not r:
        raise HTTPException(status_code=404, detail="Scan result not found")

    r.is_confirmed_by_user = body.is_confirmed_by_user
    db.commit()
    db.refresh(r)
    return {"result": serialize_result(r)}
