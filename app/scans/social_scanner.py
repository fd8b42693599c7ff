# app/scans/social_scanner.py

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.faces.matcher import FaceMatcher, get_face_matcher
from app.scans import store
from app.scans.errors import CredentialError, StorageError
from app.scans.evaluate import Fetcher, ScanReport, evaluate_candidate
from app.scans.models import SOURCE_SOCIAL
from app.social.credentials import usable_credential
from app.social.models import SocialAccount, SocialMediaItem
from app.ssrf.http import fetch_image

logger = logging.getLogger(__name__)


def list_synced_media(db: Session, account_id: int) -> list[SocialMediaItem]:
    """Photos cached by the last sync; scanning never calls the provider."""
    return (
        db.query(SocialMediaItem)
        .filter(
            SocialMediaItem.social_account_id == account_id,
            SocialMediaItem.media_type == "photo",
        )
        .order_by(SocialMediaItem.id.asc())
        .all()
    )


class SocialScanner:
    def __init__(self, db: Session, matcher: FaceMatcher, fetch: Fetcher = fetch_image):
        self.db = db
        self.matcher = matcher
        self.fetch = fetch

    def scan(self, account_id: int, reference_face_ids: list[str], confidence_threshold: float, job_id: int) -> ScanReport:
        account = self.db.query(SocialAccount).filter(SocialAccount.id == account_id).first()
        if not account:
            raise CredentialError(f"social account {account_id} not found")

        # raises before any item is touched
        usable_credential(self.db, account)

        report = ScanReport()
        items = list_synced_media(self.db, account_id)
        logger.info(
            f"Social scan for job {job_id}: account {account_id} ({account.provider}), {len(items)} cached photos",
            extra={"scan_job_id": job_id, "account_id": account_id},
        )

        for item in items:
            if not item.media_url:
                continue
            try:
                report.matches += evaluate_candidate(
                    self.db,
                    job_id=job_id,
                    image_url=item.media_url,
                    reference_face_ids=reference_face_ids,
                    confidence_threshold=confidence_threshold,
                    matcher=self.matcher,
                    fetch=self.fetch,
                    result_fields={
                        "source_url": item.permalink_url or item.media_url,
                        "thumbnail_url": item.thumbnail_url,
                        "source_type": SOURCE_SOCIAL,
                        "social_media_item_id": item.id,
                    },
                    metadata={
                        "social_provider": item.provider,
                        "caption": item.caption,
                        "posted_at": item.posted_at.isoformat() if item.posted_at else None,
                        "is_user_owned": bool(item.is_user_owned),
                        "is_tagged": bool(item.is_tagged),
                    },
                )
            except (StorageError, SQLAlchemyError):
                raise
            except Exception as e:
                report.errors += 1
                logger.warning(
                    f"Skipping media item {item.id} for scan job {job_id}: {e}",
                    extra={"scan_job_id": job_id, "account_id": account_id},
                )
            finally:
                report.images_scanned += 1
                store.increment_scanned(self.db, job_id)

        return report

    def scan_user_accounts(self, job_id: int, user_id: int, reference_face_ids: list[str], confidence_threshold: float) -> ScanReport:
        """Every active account of the user; one bad account never stops the others."""
        accounts = (
            self.db.query(SocialAccount)
            .filter(SocialAccount.user_id == user_id, SocialAccount.is_active.is_(True))
            .order_by(SocialAccount.id.asc())
            .all()
        )
        total = ScanReport()
        if not accounts:
            total.notes.append("no connected social accounts")
            logger.info(f"Scan job {job_id}: user {user_id} has no active social accounts")
            return total

        for account in accounts:
            try:
                total.merge(self.scan(account.id, reference_face_ids, confidence_threshold, job_id))
            except (StorageError, SQLAlchemyError):
                raise
            except Exception as e:
                total.errors += 1
                total.notes.append(f"account {account.id} skipped: {e}")
                logger.error(
                    f"Skipping social account {account.id} for scan job {job_id}: {e}",
                    extra={"scan_job_id": job_id, "account_id": account.id},
                )

        return total


def build_social_scanner(db: Session, matcher: FaceMatcher | None = None) -> SocialScanner:
    return SocialScanner(db, matcher or get_face_matcher())
