import logging

from app.celery_app import celery
from app.core.config import SCAN_MAX_ATTEMPTS, SCAN_RETRY_BASE_SECONDS, SCAN_TASK_TIME_LIMIT
from app.db.session import SessionLocal
from app.scans.errors import ScanJobNotFound
from app.scans.orchestrator import ScanOrchestrator, fail_job
from app.social.sync import sync_account

logger = logging.getLogger(__name__)


def retry_countdown(attempt: int, base: int = SCAN_RETRY_BASE_SECONDS) -> int:
    """Delay before the attempt after `attempt`: 5s, 10s, 20s..."""
    return base * 2 ** (attempt - 1)


def run_attempt(job_id: int, attempt: int, orchestrator_factory=ScanOrchestrator) -> dict:
    db = SessionLocal()
    try:
        return orchestrator_factory(db).run(job_id, attempt=attempt)
    finally:
        db.close()


def give_up(job_id: int, exc: Exception) -> None:
    db = SessionLocal()
    try:
        fail_job(db, job_id, exc)
    finally:
        db.close()


@celery.task(
    bind=True,
    name="process_scan_job",
    max_retries=SCAN_MAX_ATTEMPTS - 1,
    acks_late=True,
    reject_on_worker_lost=True,
    time_limit=SCAN_TASK_TIME_LIMIT,
)
def process_scan_job(self, job_id: int):
    attempt = self.request.retries + 1
    log_extra = {"scan_job_id": job_id, "task_id": self.request.id, "attempt": attempt}

    try:
        return run_attempt(job_id, attempt)

    except ScanJobNotFound as e:
        # nothing to retry against
        logger.error(f"Dropping delivery: {e}", extra=log_extra)
        raise

    except Exception as e:
        if attempt < SCAN_MAX_ATTEMPTS:
            countdown = retry_countdown(attempt)
            logger.warning(
                f"Scan job {job_id} attempt {attempt}/{SCAN_MAX_ATTEMPTS} failed: {e}; retrying in {countdown}s",
                extra=log_extra,
            )
            raise self.retry(exc=e, countdown=countdown)

        logger.error(f"Scan job {job_id} exhausted {SCAN_MAX_ATTEMPTS} attempts: {e}", extra=log_extra)
        give_up(job_id, e)
        raise


@celery.task(name="sync_social_account")
def sync_social_account_task(account_id: int):
    db = SessionLocal()
    try:
        return sync_account(db, account_id)
    finally:
        db.close()
