# app/scans/evaluate.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy.orm import Session

from app.faces.matcher import FaceMatcher
from app.faces.staging import staged_image
from app.scans import store
from app.ssrf.http import FetchedImage, fetch_image

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], FetchedImage]


@dataclass
class ScanReport:
    """What one scanner invocation did. Errors are counted, not raised."""

    images_scanned: int = 0
    matches: int = 0
    errors: int = 0
    notes: list[str] = field(default_factory=list)

    def merge(self, other: "ScanReport") -> None:
        self.images_scanned += other.images_scanned
        self.matches += other.matches
        self.errors += other.errors
        self.notes.extend(other.notes)


def evaluate_candidate(
    db: Session,
    *,
    job_id: int,
    image_url: str,
    reference_face_ids: list[str],
    confidence_threshold: float,
    matcher: FaceMatcher,
    fetch: Fetcher = fetch_image,
    result_fields: dict,
    metadata: dict | None = None,
) -> int:
    """
    Download one candidate, stage it, ask the matcher, and persist every match
    against one of our reference faces at or above the threshold.

    Returns the number of results written. Provider errors propagate to the
    caller, which decides whether they are skippable.
    """
    image = fetch(image_url)
    wanted = set(reference_face_ids)
    written = 0

    with staged_image(image.content) as path:
        matches = matcher.find_matches(path.read_bytes(), confidence_threshold)

    for m in matches:
        if m.face_id not in wanted or m.similarity < confidence_threshold:
            continue

        extra = dict(metadata or {})
        extra.setdefault("content_type", image.content_type)
        extra.setdefault("image_size", len(image))
        extra["matched_face_id"] = m.face_id

        result = store.record_result(
            db,
            job_id,
            image_url=image_url,
            confidence=round(m.similarity, 2),
            provider=matcher.name,
            provider_score={"face_id": m.face_id, "similarity": m.similarity},
            extra=extra,
            **result_fields,
        )
        if result is not None:
            written += 1
            logger.info(
                f"Match for scan job {job_id}: {result.source_url} ({m.similarity:.1f}%)",
                extra={"scan_job_id": job_id},
            )

    return written
