"""
Scan job state machine.

    queued -> processing -> completed | failed | cancelled

The orchestrator owns status, progress and totals. Each selected source
scanner runs as one phase; a phase that blows up becomes a failed
PhaseOutcome and the job carries on. Database errors (StorageError or a raw
SQLAlchemyError) and errors before the first phase escape to the queue's
retry layer.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.scans import store
from app.scans.errors import ScanJobNotFound, StorageError
from app.scans.evaluate import ScanReport
from app.scans.models import (
    COMPLETED,
    FAILED,
    PROCESSING,
    SCAN_COMBINED,
    SCAN_SOCIAL,
    SCAN_WEB,
    SOURCE_SOCIAL,
    SOURCE_WEB,
    TERMINAL_STATUSES,
)

logger = logging.getLogger(__name__)

NO_REFERENCES_MESSAGE = "no active reference photos"

REFERENCES_LOADED_PROGRESS = 10

# phases per scan type, each with the progress it ends at
PHASE_PLAN = {
    SCAN_WEB: [(SOURCE_WEB, 90)],
    SCAN_SOCIAL: [(SOURCE_SOCIAL, 90)],
    SCAN_COMBINED: [(SOURCE_WEB, 50), (SOURCE_SOCIAL, 90)],
}


@dataclass
class PhaseOutcome:
    source: str
    ok: bool
    images_scanned: int = 0
    matches: int = 0
    errors: int = 0
    error: str | None = None

    @classmethod
    def success(cls, source: str, report: ScanReport) -> "PhaseOutcome":
        return cls(source, True, report.images_scanned, report.matches, report.errors)

    @classmethod
    def failure(cls, source: str, exc: Exception) -> "PhaseOutcome":
        return cls(source, False, error=str(exc) or exc.__class__.__name__)


class ScanOrchestrator:
    def __init__(self, db: Session, web_scanner=None, social_scanner=None):
        self.db = db
        self._web_scanner = web_scanner
        self._social_scanner = social_scanner

    # scanners are built lazily so a web-only job never touches social config
    @property
    def web_scanner(self):
        if self._web_scanner is None:
            from app.scans.web_scanner import build_web_scanner

            self._web_scanner = build_web_scanner(self.db)
        return self._web_scanner

    @property
    def social_scanner(self):
        if self._social_scanner is None:
            from app.scans.social_scanner import build_social_scanner

            self._social_scanner = build_social_scanner(self.db)
        return self._social_scanner

    def run(self, job_id: int, attempt: int = 1) -> dict:
        db = self.db
        log_extra = {"scan_job_id": job_id, "attempt": attempt}

        job = store.get_job(db, job_id)
        if not job:
            raise ScanJobNotFound(job_id)

        if job.status in TERMINAL_STATUSES:
            logger.info(f"Scan job {job_id} is already {job.status}; ignoring delivery", extra=log_extra)
            return {"ok": True, "scan_job_id": job_id, "status": job.status, "skipped": True}

        if not store.claim_job(db, job_id, attempt):
            status = store.get_status(db, job_id)
            logger.info(f"Scan job {job_id} could not be claimed (status={status})", extra=log_extra)
            return {"ok": True, "scan_job_id": job_id, "status": status, "skipped": True}

        user_id = job.user_id
        scan_type = job.scan_type
        threshold = job.confidence_threshold
        logger.info(
            f"Processing scan job {job_id} (type={scan_type}, threshold={threshold}, attempt={attempt})",
            extra=log_extra,
        )

        phases = PHASE_PLAN.get(scan_type)
        if phases is None:
            store.finish_job(db, job_id, FAILED, error_message=f"unknown scan type: {scan_type}")
            return {"ok": False, "scan_job_id": job_id, "status": FAILED}

        face_ids = store.list_active_reference_faces(db, user_id)
        if not face_ids:
            logger.warning(f"Scan job {job_id} has no active reference photos", extra=log_extra)
            store.finish_job(db, job_id, FAILED, error_message=NO_REFERENCES_MESSAGE)
            return {"ok": False, "scan_job_id": job_id, "status": FAILED, "error": NO_REFERENCES_MESSAGE}

        store.touch_reference_photos(db, user_id)
        store.raise_progress(db, job_id, REFERENCES_LOADED_PROGRESS)

        outcomes: list[PhaseOutcome] = []
        for source, progress_cap in phases:
            # cancellation is only honoured between phases
            status = store.get_status(db, job_id)
            if status != PROCESSING:
                logger.info(f"Scan job {job_id} is {status}; not starting {source} phase", extra=log_extra)
                return self._stopped(job_id, status, outcomes)

            outcome = self._run_phase(source, job_id, user_id, face_ids, threshold)
            outcomes.append(outcome)

            store.update_job(db, job_id, summary={"phases": [asdict(o) for o in outcomes]})
            store.raise_progress(db, job_id, progress_cap)

        total = store.count_results(db, job_id)
        finished = store.finish_job(
            db,
            job_id,
            COMPLETED,
            total_matches_found=total,
            summary={"phases": [asdict(o) for o in outcomes]},
        )
        if not finished:
            return self._stopped(job_id, store.get_status(db, job_id), outcomes)

        failed_phases = [o.source for o in outcomes if not o.ok]
        logger.info(
            f"Scan job {job_id} completed: {total} matches"
            + (f", failed phases: {', '.join(failed_phases)}" if failed_phases else ""),
            extra=log_extra,
        )
        return {
            "ok": True,
            "scan_job_id": job_id,
            "status": COMPLETED,
            "total_matches": total,
            "phases": [asdict(o) for o in outcomes],
        }

    def _run_phase(self, source: str, job_id: int, user_id: int, face_ids: list[str], threshold: float) -> PhaseOutcome:
        if source == SOURCE_WEB:
            # job-store write, outside the phase isolation
            store.update_job(self.db, job_id, provider=self.web_scanner.provider)

        try:
            if source == SOURCE_WEB:
                report = self.web_scanner.scan(job_id, face_ids, threshold)
            else:
                report = self.social_scanner.scan_user_accounts(job_id, user_id, face_ids, threshold)
            return PhaseOutcome.success(source, report)
        except (StorageError, SQLAlchemyError):
            raise
        except Exception as e:
            logger.exception(f"{source} phase failed for scan job {job_id}: {e}", extra={"scan_job_id": job_id})
            self.db.rollback()
            return PhaseOutcome.failure(source, e)

    def _stopped(self, job_id: int, status: str | None, outcomes: list[PhaseOutcome]) -> dict:
        return {
            "ok": True,
            "scan_job_id": job_id,
            "status": status,
            "phases": [asdict(o) for o in outcomes],
        }


def fail_job(db: Session, job_id: int, error: Exception | str) -> bool:
    """Final failure after the retry budget is spent."""
    message = str(error) or error.__class__.__name__
    ok = store.finish_job(db, job_id, FAILED, error_message=message)
    if ok:
        logger.error(f"Scan job {job_id} failed: {message}", extra={"scan_job_id": job_id})
    return ok
