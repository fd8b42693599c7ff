"""
Shared pytest fixtures: a fresh in-memory schema per test, row factories and
fake providers.
"""
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from app.core.config import JWT_SECRET
from app.core.security import ALGO
from app.db.base import Base
from app.db.init_db import init_db
from app.db.session import SessionLocal, engine
from app.faces.matcher import FaceMatch, FaceMatcher
from app.photos.models import ReferencePhoto
from app.scans.errors import ImageFetchError
from app.scans.models import ScanJob, QUEUED
from app.social.models import OAuthToken, SocialAccount, SocialMediaItem
from app.ssrf.http import FetchedImage
from app.users.models import User


@pytest.fixture
def db():
    init_db()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(first_name="Ada", last_name="Lovelace", confidence_threshold=None):
        counter["n"] += 1
        user = User(
            email=f"user{counter['n']}@example.com",
            first_name=first_name,
            last_name=last_name,
            confidence_threshold=confidence_threshold,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def add_reference(db):
    def _add(user, face_id="face-1", is_active=True):
        photo = ReferencePhoto(user_id=user.id, face_id=face_id, file_name=f"{face_id}.jpg", is_active=is_active)
        db.add(photo)
        db.commit()
        db.refresh(photo)
        return photo

    return _add


@pytest.fixture
def make_job(db):
    def _make(user, scan_type="web", confidence_threshold=80, status=QUEUED, **fields):
        job = ScanJob(
            user_id=user.id,
            scan_type=scan_type,
            confidence_threshold=confidence_threshold,
            status=status,
            **fields,
        )
        db.add(job)
        db.commit()
        db.refresh(job)
        return job

    return _make


@pytest.fixture
def make_social_account(db):
    counter = {"n": 0}

    def _make(user, provider="instagram", expires_in_days=30, revoked=False, media_urls=()):
        counter["n"] += 1
        account = SocialAccount(
            user_id=user.id,
            provider=provider,
            provider_account_id=f"acct-{counter['n']}",
            username=f"someone{counter['n']}",
            is_active=True,
        )
        db.add(account)
        db.commit()

        now = datetime.now(timezone.utc)
        db.add(
            OAuthToken(
                social_account_id=account.id,
                access_token="token-abc",
                expires_at=now + timedelta(days=expires_in_days),
                revoked_at=now if revoked else None,
            )
        )
        for i, url in enumerate(media_urls):
            db.add(
                SocialMediaItem(
                    social_account_id=account.id,
                    provider=provider,
                    provider_media_id=f"{account.id}-{i}",
                    media_type="photo",
                    media_url=url,
                    thumbnail_url=url,
                    permalink_url=f"https://{provider}.com/p/{account.id}-{i}",
                    caption=f"caption {i}",
                    is_user_owned=True,
                )
            )
        db.commit()
        db.refresh(account)
        return account

    return _make


class FakeMatcher(FaceMatcher):
    """Matches keyed by image bytes; the fake fetcher serves the url as the body."""

    name = "fake-matcher"

    def __init__(self, responses=None, fail_on=()):
        self.responses = responses or {}
        self.fail_on = set(fail_on)
        self.calls = []

    def find_matches(self, image, threshold):
        key = image.decode()
        self.calls.append(key)
        if key in self.fail_on:
            raise RuntimeError(f"matcher blew up on {key}")
        return [FaceMatch(face_id, similarity) for face_id, similarity in self.responses.get(key, [])]


def fake_fetch(url):
    if "broken" in url:
        raise ImageFetchError(f"{url}: HTTP 404")
    return FetchedImage(url, url.encode(), "image/jpeg")


@pytest.fixture
def fake_matcher():
    return FakeMatcher


@pytest.fixture
def fetch():
    return fake_fetch


@pytest.fixture
def access_token():
    """Sign a bearer token the way the account service does."""

    def _token(user_id, expires_in=timedelta(minutes=30)):
        payload = {"sub": str(user_id), "exp": datetime.now(timezone.utc) + expires_in}
        return jwt.encode(payload, JWT_SECRET, algorithm=ALGO)

    return _token
