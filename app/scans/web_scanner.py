"""
Web source scanner.

Two interchangeable strategies, picked once when the scanner is built:

- SearchStrategy: one image-search query per active reference face, every
  candidate downloaded and run through the face matcher.
- DemoStrategy: used when no search provider is configured; writes a fixed
  set of sample results, every one of them marked provider="demo".
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import web_search_configured
from app.faces.matcher import FaceMatcher, get_face_matcher
from app.scans import store
from app.scans.errors import ProviderError, StorageError
from app.scans.evaluate import Fetcher, ScanReport, evaluate_candidate
from app.scans.models import SOURCE_WEB
from app.scans.search import GoogleImageSearch, build_query
from app.ssrf.http import fetch_image
from app.users.models import User

logger = logging.getLogger(__name__)

DEMO_PROVIDER = "demo"

DEMO_SAMPLES = [
    {"source_url": "https://example.com/photo1", "image_url": "https://placehold.co/400x400?text=Demo+Match+1", "confidence": 92.5},
    {"source_url": "https://example.com/photo2", "image_url": "https://placehold.co/400x400?text=Demo+Match+2", "confidence": 88.3},
    {"source_url": "https://example.com/photo3", "image_url": "https://placehold.co/400x400?text=Demo+Match+3", "confidence": 85.7},
    {"source_url": "https://example.com/photo4", "image_url": "https://placehold.co/400x400?text=Demo+Match+4", "confidence": 78.9},
    {"source_url": "https://example.com/photo5", "image_url": "https://placehold.co/400x400?text=Demo+Match+5", "confidence": 72.1},
]


class SearchStrategy:
    def __init__(self, search, matcher: FaceMatcher, fetch: Fetcher = fetch_image):
        self.search = search
        self.matcher = matcher
        self.fetch = fetch

    @property
    def name(self) -> str:
        return self.matcher.name

    def run(self, db: Session, job_id: int, query: str, reference_face_ids: list[str], threshold: float) -> ScanReport:
        report = ScanReport()

        # sequential on purpose: one provider query per reference face
        for face_id in reference_face_ids:
            try:
                hits = self.search.search_images(query)
            except ProviderError as e:
                logger.warning(
                    f"Search failed for scan job {job_id} (face {face_id}): {e}",
                    extra={"scan_job_id": job_id},
                )
                report.errors += 1
                hits = []

            if not hits:
                logger.info(f"No candidates for scan job {job_id} (face {face_id})")

            for hit in hits:
                try:
                    report.matches += evaluate_candidate(
                        db,
                        job_id=job_id,
                        image_url=hit.image_url,
                        reference_face_ids=reference_face_ids,
                        confidence_threshold=threshold,
                        matcher=self.matcher,
                        fetch=self.fetch,
                        result_fields={
                            "source_url": hit.source_url,
                            "thumbnail_url": hit.image_url,
                            "source_type": SOURCE_WEB,
                        },
                        metadata={
                            "search_provider": getattr(self.search, "name", "search"),
                            "query": query,
                            "crawled_at": datetime.now(timezone.utc).isoformat(),
                        },
                    )
                except (StorageError, SQLAlchemyError):
                    raise
                except Exception as e:
                    report.errors += 1
                    logger.warning(
                        f"Skipping candidate {hit.image_url} for scan job {job_id}: {e}",
                        extra={"scan_job_id": job_id},
                    )
                finally:
                    report.images_scanned += 1
                    store.increment_scanned(db, job_id)

        return report


class DemoStrategy:
    name = DEMO_PROVIDER

    def __init__(self, samples: list[dict] | None = None):
        self.samples = samples if samples is not None else DEMO_SAMPLES

    def run(self, db: Session, job_id: int, query: str, reference_face_ids: list[str], threshold: float) -> ScanReport:
        report = ScanReport(notes=["demo mode: configure GOOGLE_API_KEY and GOOGLE_SEARCH_ENGINE_ID for real scanning"])
        logger.info(f"Scan job {job_id}: web scanner running in demo mode")

        for sample in self.samples:
            report.images_scanned += 1
            store.increment_scanned(db, job_id)

            if sample["confidence"] < threshold:
                continue

            result = store.record_result(
                db,
                job_id,
                source_url=sample["source_url"],
                image_url=sample["image_url"],
                thumbnail_url=sample["image_url"],
                confidence=sample["confidence"],
                provider=DEMO_PROVIDER,
                provider_score={"similarity": sample["confidence"], "mode": DEMO_PROVIDER},
                source_type=SOURCE_WEB,
                extra={
                    "demo_mode": True,
                    "provider": DEMO_PROVIDER,
                    "scanned_at": datetime.now(timezone.utc).isoformat(),
                    "note": "Sample result, not a real match.",
                },
            )
            if result is not None:
                report.matches += 1

        return report


class WebScanner:
    def __init__(self, db: Session, strategy):
        self.db = db
        self.strategy = strategy

    @property
    def provider(self) -> str:
        return self.strategy.name

    def scan(self, job_id: int, reference_face_ids: list[str], confidence_threshold: float) -> ScanReport:
        job = store.get_job(self.db, job_id)
        user = self.db.query(User).filter(User.id == job.user_id).first() if job else None
        query = build_query(user.display_name if user else None)

        logger.info(
            f"Web scan for job {job_id}: {len(reference_face_ids)} reference faces, "
            f"query={query!r}, mode={self.strategy.name}",
            extra={"scan_job_id": job_id},
        )
        return self.strategy.run(self.db, job_id, query, reference_face_ids, confidence_threshold)


def build_web_scanner(db: Session, matcher: FaceMatcher | None = None) -> WebScanner:
    if not web_search_configured():
        return WebScanner(db, DemoStrategy())
    return WebScanner(db, SearchStrategy(GoogleImageSearch(), matcher or get_face_matcher()))
