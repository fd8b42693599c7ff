from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from app.scans import store
from app.scans.errors import ScanJobNotFound, StorageError
from app.scans.evaluate import ScanReport
from app.scans.models import ScanJob, ScanResult, CANCELLED, COMPLETED, FAILED, PROCESSING
from app.scans.orchestrator import NO_REFERENCES_MESSAGE, ScanOrchestrator, fail_job
from app.scans.social_scanner import SocialScanner


class StubWebScanner:
    provider = "stub-web"

    def __init__(self, on_scan=None, error=None):
        self.on_scan = on_scan
        self.error = error
        self.calls = 0

    def scan(self, job_id, reference_face_ids, confidence_threshold):
        self.calls += 1
        if self.on_scan:
            self.on_scan(job_id)
        if self.error:
            raise self.error
        return ScanReport(images_scanned=2)


class StubSocialScanner:
    def __init__(self, on_scan=None):
        self.on_scan = on_scan
        self.calls = 0

    def scan_user_accounts(self, job_id, user_id, reference_face_ids, confidence_threshold):
        self.calls += 1
        if self.on_scan:
            self.on_scan(job_id)
        return ScanReport(images_scanned=1)


def _results(db, job_id):
    return db.query(ScanResult).filter(ScanResult.scan_job_id == job_id).all()


def test_web_scan_in_demo_mode_keeps_samples_above_threshold(db, make_user, add_reference, make_job):
    user = make_user()
    add_reference(user)
    job = make_job(user, scan_type="web", confidence_threshold=80)

    out = ScanOrchestrator(db).run(job.id)

    db.refresh(job)
    assert out["status"] == COMPLETED
    assert job.status == COMPLETED
    assert job.progress == 100
    assert job.completed_at is not None
    assert job.provider == "demo"
    assert job.total_images_scanned == 5
    assert job.total_matches_found == 3

    rows = _results(db, job.id)
    assert sorted(r.confidence for r in rows) == [85.7, 88.3, 92.5]
    assert all(r.provider == "demo" for r in rows)
    assert all(r.extra["demo_mode"] is True for r in rows)
    assert job.summary["phases"][0]["source"] == "web"
    assert job.summary["phases"][0]["ok"] is True


def test_job_without_reference_faces_fails(db, make_user, make_job):
    user = make_user()
    job = make_job(user)

    out = ScanOrchestrator(db).run(job.id)

    db.refresh(job)
    assert out["status"] == FAILED
    assert job.status == FAILED
    assert "reference" in job.error_message
    assert job.error_message == NO_REFERENCES_MESSAGE
    assert job.completed_at is not None
    assert _results(db, job.id) == []


def test_inactive_reference_photos_do_not_count(db, make_user, add_reference, make_job):
    user = make_user()
    add_reference(user, is_active=False)
    job = make_job(user)

    ScanOrchestrator(db).run(job.id)

    db.refresh(job)
    assert job.status == FAILED


def test_combined_scan_survives_a_failing_web_phase(
    db, make_user, add_reference, make_job, make_social_account, fake_matcher, fetch
):
    user = make_user()
    add_reference(user, face_id="face-1")
    make_social_account(user, media_urls=["https://cdn.example.com/a.jpg", "https://cdn.example.com/b.jpg"])
    job = make_job(user, scan_type="combined", confidence_threshold=80)

    matcher = fake_matcher({"https://cdn.example.com/a.jpg": [("face-1", 95.0)]})
    orchestrator = ScanOrchestrator(
        db,
        web_scanner=StubWebScanner(error=RuntimeError("search quota exhausted")),
        social_scanner=SocialScanner(db, matcher, fetch=fetch),
    )
    orchestrator.run(job.id)

    db.refresh(job)
    assert job.status == COMPLETED
    assert job.progress == 100
    assert job.total_matches_found == 1
    assert job.total_images_scanned == 2

    rows = _results(db, job.id)
    assert [r.source_type for r in rows] == ["social_media"]
    assert rows[0].source_url.startswith("https://instagram.com/p/")

    web, social = job.summary["phases"]
    assert web["source"] == "web" and web["ok"] is False
    assert "search quota exhausted" in web["error"]
    assert social["source"] == "social_media" and social["ok"] is True


def test_all_phases_failing_still_completes(db, make_user, add_reference, make_job):
    user = make_user()
    add_reference(user)
    job = make_job(user, scan_type="web")

    ScanOrchestrator(db, web_scanner=StubWebScanner(error=RuntimeError("boom"))).run(job.id)

    db.refresh(job)
    assert job.status == COMPLETED
    assert job.total_matches_found == 0
    assert job.summary["phases"][0]["ok"] is False


def test_storage_error_escapes_the_phase(db, make_user, add_reference, make_job):
    user = make_user()
    add_reference(user)
    job = make_job(user, scan_type="web")

    orchestrator = ScanOrchestrator(db, web_scanner=StubWebScanner(error=StorageError("disk full")))
    with pytest.raises(StorageError):
        orchestrator.run(job.id)

    db.refresh(job)
    assert job.status == PROCESSING


def test_job_update_failure_reaches_the_retry_layer(db, make_user, add_reference, make_job):
    user = make_user()
    add_reference(user)
    job = make_job(user, scan_type="web")
    real_update = store.update_job

    def locked(db, job_id, **fields):
        if "provider" in fields:
            raise OperationalError("UPDATE scan_jobs", {}, Exception("database is locked"))
        return real_update(db, job_id, **fields)

    web = StubWebScanner()
    with patch("app.scans.store.update_job", side_effect=locked):
        with pytest.raises(OperationalError):
            ScanOrchestrator(db, web_scanner=web).run(job.id)

    db.rollback()
    db.refresh(job)
    assert web.calls == 0
    assert job.status == PROCESSING
    assert job.summary is None


def test_database_error_reading_an_account_is_not_skipped(
    db, make_user, add_reference, make_job, make_social_account, fake_matcher, fetch
):
    user = make_user()
    add_reference(user)
    make_social_account(user, media_urls=["https://cdn.example.com/a.jpg"])
    job = make_job(user, scan_type="social")
    orchestrator = ScanOrchestrator(db, social_scanner=SocialScanner(db, fake_matcher(), fetch=fetch))

    error = OperationalError("SELECT oauth_tokens", {}, Exception("connection reset"))
    with patch("app.scans.social_scanner.usable_credential", side_effect=error):
        with pytest.raises(OperationalError):
            orchestrator.run(job.id)

    db.rollback()
    db.refresh(job)
    assert job.status == PROCESSING
    assert _results(db, job.id) == []


def test_progress_moves_up_across_phases(db, make_user, add_reference, make_job):
    user = make_user()
    add_reference(user)
    job = make_job(user, scan_type="combined")
    seen = []

    def record(job_id):
        seen.append(db.query(ScanJob.progress).filter(ScanJob.id == job_id).scalar())

    ScanOrchestrator(
        db,
        web_scanner=StubWebScanner(on_scan=record),
        social_scanner=StubSocialScanner(on_scan=record),
    ).run(job.id)

    db.refresh(job)
    assert seen == [10, 50]
    assert job.progress == 100


def test_cancel_between_phases_skips_the_next_phase(db, make_user, add_reference, make_job):
    user = make_user()
    add_reference(user)
    job = make_job(user, scan_type="combined")
    social = StubSocialScanner()

    out = ScanOrchestrator(
        db,
        web_scanner=StubWebScanner(on_scan=lambda job_id: store.cancel_job(db, job_id)),
        social_scanner=social,
    ).run(job.id)

    db.refresh(job)
    assert out["status"] == CANCELLED
    assert social.calls == 0
    assert job.status == CANCELLED
    assert job.progress == 100


def test_redelivered_terminal_job_is_ignored(db, make_user, add_reference, make_job):
    user = make_user()
    add_reference(user)
    job = make_job(user)

    ScanOrchestrator(db).run(job.id)
    web = StubWebScanner()
    out = ScanOrchestrator(db, web_scanner=web).run(job.id, attempt=2)

    db.refresh(job)
    assert out["skipped"] is True
    assert web.calls == 0
    assert len(_results(db, job.id)) == 3
    assert job.attempts == 1


def test_retry_attempt_keeps_progress(db, make_user, add_reference, make_job):
    user = make_user()
    add_reference(user)
    job = make_job(user, scan_type="combined", status=PROCESSING, progress=50, attempts=1)
    seen = []

    def record(job_id):
        seen.append(db.query(ScanJob.progress).filter(ScanJob.id == job_id).scalar())

    ScanOrchestrator(
        db,
        web_scanner=StubWebScanner(on_scan=record),
        social_scanner=StubSocialScanner(on_scan=record),
    ).run(job.id, attempt=2)

    db.refresh(job)
    assert seen == [50, 50]
    assert job.attempts == 2
    assert job.status == COMPLETED


def test_unknown_scan_type_fails(db, make_user, add_reference, make_job):
    user = make_user()
    add_reference(user)
    job = make_job(user, scan_type="carrier-pigeon")

    ScanOrchestrator(db).run(job.id)

    db.refresh(job)
    assert job.status == FAILED
    assert "carrier-pigeon" in job.error_message


def test_missing_job_raises(db):
    with pytest.raises(ScanJobNotFound):
        ScanOrchestrator(db).run(12345)


def test_fail_job_only_touches_running_jobs(db, make_user, make_job):
    user = make_user()
    job = make_job(user, status=PROCESSING)

    assert fail_job(db, job.id, RuntimeError("worker lost")) is True
    assert fail_job(db, job.id, RuntimeError("again")) is False

    db.refresh(job)
    assert job.status == FAILED
    assert job.error_message == "worker lost"
