from app.scans.errors import SearchProviderError
from app.scans.models import ScanJob, ScanResult, PROCESSING
from app.scans.search import SearchHit, build_query
from app.scans.web_scanner import DemoStrategy, SearchStrategy, WebScanner, build_web_scanner


class FakeSearch:
    name = "fake-search"

    def __init__(self, hits=None, error=None):
        self.hits = hits or []
        self.error = error
        self.queries = []

    def search_images(self, query):
        self.queries.append(query)
        if self.error:
            raise self.error
        return list(self.hits)


def _scanned(db, job_id):
    return db.query(ScanJob.total_images_scanned).filter(ScanJob.id == job_id).scalar()


def test_search_strategy_persists_only_matches_of_our_faces(db, make_user, make_job, fake_matcher, fetch):
    user = make_user(first_name="Ada", last_name="Lovelace")
    job = make_job(user, status=PROCESSING, confidence_threshold=80)

    search = FakeSearch(
        hits=[
            SearchHit("https://img.example.com/a.jpg", "https://blog.example.com/a"),
            SearchHit("https://img.example.com/broken.jpg", "https://blog.example.com/b"),
            SearchHit("https://img.example.com/c.jpg", "https://blog.example.com/c"),
        ]
    )
    matcher = fake_matcher(
        {
            "https://img.example.com/a.jpg": [("face-1", 93.5), ("someone-else", 99.0)],
            "https://img.example.com/c.jpg": [("face-1", 70.0)],
        }
    )
    scanner = WebScanner(db, SearchStrategy(search, matcher, fetch=fetch))

    report = scanner.scan(job.id, ["face-1"], 80)

    assert search.queries == ["Ada Lovelace"]
    assert report.images_scanned == 3
    assert report.matches == 1
    assert report.errors == 1
    assert _scanned(db, job.id) == 3

    rows = db.query(ScanResult).filter(ScanResult.scan_job_id == job.id).all()
    assert len(rows) == 1
    r = rows[0]
    assert r.source_url == "https://blog.example.com/a"
    assert r.image_url == "https://img.example.com/a.jpg"
    assert r.confidence == 93.5
    assert r.provider == "fake-matcher"
    assert r.source_type == "web"
    assert r.extra["matched_face_id"] == "face-1"
    assert r.extra["search_provider"] == "fake-search"
    assert r.extra["query"] == "Ada Lovelace"


def test_one_search_per_reference_face(db, make_user, make_job, fake_matcher, fetch):
    job = make_job(make_user(), status=PROCESSING)
    search = FakeSearch()

    report = WebScanner(db, SearchStrategy(search, fake_matcher(), fetch=fetch)).scan(job.id, ["f1", "f2", "f3"], 80)

    assert len(search.queries) == 3
    assert report.images_scanned == 0


def test_search_failure_counts_as_empty(db, make_user, make_job, fake_matcher, fetch):
    job = make_job(make_user(), status=PROCESSING)
    search = FakeSearch(error=SearchProviderError("search returned HTTP 429: quota"))
    matcher = fake_matcher()

    report = WebScanner(db, SearchStrategy(search, matcher, fetch=fetch)).scan(job.id, ["face-1"], 80)

    assert report.errors == 1
    assert report.images_scanned == 0
    assert matcher.calls == []


def test_matcher_error_skips_the_candidate(db, make_user, make_job, fake_matcher, fetch):
    job = make_job(make_user(), status=PROCESSING)
    search = FakeSearch(
        hits=[
            SearchHit("https://img.example.com/bad.jpg", "https://x.example.com/1"),
            SearchHit("https://img.example.com/good.jpg", "https://x.example.com/2"),
        ]
    )
    matcher = fake_matcher(
        {"https://img.example.com/good.jpg": [("face-1", 88.0)]},
        fail_on=["https://img.example.com/bad.jpg"],
    )

    report = WebScanner(db, SearchStrategy(search, matcher, fetch=fetch)).scan(job.id, ["face-1"], 80)

    assert report.matches == 1
    assert report.errors == 1
    assert _scanned(db, job.id) == 2


def test_demo_strategy_filters_by_threshold(db, make_user, make_job):
    job = make_job(make_user(), status=PROCESSING, confidence_threshold=90)

    report = WebScanner(db, DemoStrategy()).scan(job.id, ["face-1"], 90)

    assert report.images_scanned == 5
    assert report.matches == 1
    assert report.notes
    rows = db.query(ScanResult).filter(ScanResult.scan_job_id == job.id).all()
    assert [r.confidence for r in rows] == [92.5]
    assert rows[0].extra["demo_mode"] is True
    assert rows[0].provider == "demo"


def test_unconfigured_search_builds_demo_scanner(db):
    scanner = build_web_scanner(db)

    assert isinstance(scanner.strategy, DemoStrategy)
    assert scanner.provider == "demo"


def test_query_falls_back_without_a_name():
    assert build_query("  ") == "person face"
    assert build_query(None) == "person face"
    assert build_query("Grace Hopper") == "Grace Hopper"
