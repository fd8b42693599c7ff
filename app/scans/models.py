from sqlalchemy import (
    Column, Integer, String, Float, Boolean, ForeignKey, DateTime, Text, JSON,
)
from sqlalchemy.sql import func
from app.db.base import Base

# scan_jobs.status
QUEUED = "queued"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"

STATUSES = (QUEUED, PROCESSING, COMPLETED, FAILED, CANCELLED)
TERMINAL_STATUSES = (COMPLETED, FAILED, CANCELLED)

# scan_jobs.scan_type
SCAN_WEB = "web"
SCAN_SOCIAL = "social"
SCAN_COMBINED = "combined"
SCAN_TYPES = (SCAN_WEB, SCAN_SOCIAL, SCAN_COMBINED)

# scan_results.source_type
SOURCE_WEB = "web"
SOURCE_SOCIAL = "social_media"
SOURCE_TYPES = (SOURCE_WEB, SOURCE_SOCIAL)


class ScanJob(Base):
    __tablename__ = "scan_jobs"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)

    scan_type = Column(String, nullable=False, default=SCAN_WEB)  # web|social|combined
    status = Column(String, nullable=False, default=QUEUED, index=True)
    confidence_threshold = Column(Integer, nullable=False)

    progress = Column(Integer, nullable=False, default=0)
    total_images_scanned = Column(Integer, nullable=False, default=0)
    total_matches_found = Column(Integer, nullable=False, default=0)

    provider = Column(String, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    task_id = Column(String, nullable=True)

    summary = Column(JSON, nullable=True)  # per-phase outcomes
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ScanResult(Base):
    __tablename__ = "scan_results"

    id = Column(Integer, primary_key=True)
    scan_job_id = Column(Integer, ForeignKey("scan_jobs.id"), index=True, nullable=False)

    source_url = Column(Text, nullable=False)
    image_url = Column(Text, nullable=True)
    thumbnail_url = Column(Text, nullable=True)

    confidence = Column(Float, nullable=False, index=True)
    provider = Column(String, nullable=False)
    provider_score = Column(JSON, nullable=True)

    source_type = Column(String, nullable=False, default=SOURCE_WEB, index=True)
    social_media_item_id = Column(
        Integer, ForeignKey("social_media_items.id"), nullable=True, index=True
    )

    # True = "this is me", False = "not me", None = not reviewed
    is_confirmed_by_user = Column(Boolean, nullable=True, index=True)
    extra = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
