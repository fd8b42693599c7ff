"""
Facebook / Instagram Graph API client.

Only what scanning needs: the profile behind an access token and the photos
the account owns or is tagged in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

import httpx

from app.core.config import PROVIDER_TIMEOUT
from app.scans.errors import CredentialError, ProviderError

logger = logging.getLogger(__name__)

FACEBOOK_API = "https://graph.facebook.com/v18.0"
INSTAGRAM_API = "https://graph.instagram.com"
PAGE_LIMIT = 100


@dataclass
class Profile:
    provider_account_id: str
    username: str | None
    profile_url: str | None


@dataclass
class RemoteMedia:
    provider_media_id: str
    media_type: str
    media_url: str | None
    thumbnail_url: str | None
    permalink_url: str | None
    caption: str | None = None
    is_user_owned: bool = True
    is_tagged: bool = False
    posted_at: datetime | None = None
    extra: dict = field(default_factory=dict)


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    # Graph API: 2024-01-31T10:00:00+0000
    for fmt in ("%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%dT%H:%M:%S.%f%z"):
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


class GraphClient:
    def __init__(self, *, timeout: float = PROVIDER_TIMEOUT, transport: httpx.BaseTransport | None = None):
        self.timeout = timeout
        self._transport = transport

    def _get(self, url: str, params: dict) -> dict:
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                resp = client.get(url, params=params)
        except httpx.HTTPError as e:
            raise ProviderError(f"graph request failed: {e}") from e

        if resp.status_code in (401, 403):
            raise CredentialError(f"access token rejected (HTTP {resp.status_code})")
        if resp.status_code == 400:
            try:
                err = resp.json().get("error") or {}
            except ValueError:
                err = {}
            # OAuthException code 190 = expired / invalidated token
            if err.get("code") == 190 or err.get("type") == "OAuthException":
                raise CredentialError(err.get("message") or "access token invalid")
        if resp.status_code != 200:
            raise ProviderError(f"graph request returned HTTP {resp.status_code}")
        return resp.json()

    def get_profile(self, provider: str, access_token: str) -> Profile:
        if provider == "facebook":
            data = self._get(f"{FACEBOOK_API}/me", {"fields": "id,name", "access_token": access_token})
            return Profile(data["id"], data.get("name"), f"https://facebook.com/{data['id']}")
        if provider == "instagram":
            data = self._get(
                f"{INSTAGRAM_API}/me",
                {"fields": "id,username,account_type", "access_token": access_token},
            )
            username = data.get("username")
            return Profile(data["id"], username, f"https://instagram.com/{username}" if username else None)
        raise ValueError(f"Unsupported provider: {provider}")

    def list_media(self, provider: str, provider_account_id: str, access_token: str) -> list[RemoteMedia]:
        if provider == "facebook":
            owned = self._facebook_photos(provider_account_id, access_token, "uploaded")
            tagged = self._facebook_photos(provider_account_id, access_token, "tagged")
            return owned + tagged
        if provider == "instagram":
            return self._instagram_media(provider_account_id, access_token)
        raise ValueError(f"Unsupported provider: {provider}")

    def _facebook_photos(self, account_id: str, access_token: str, kind: str) -> list[RemoteMedia]:
        data = self._get(
            f"{FACEBOOK_API}/{account_id}/photos",
            {
                "type": kind,
                "fields": "id,source,picture,created_time,link",
                "access_token": access_token,
                "limit": PAGE_LIMIT,
            },
        )
        tagged = kind == "tagged"
        return [
            RemoteMedia(
                provider_media_id=p["id"],
                media_type="photo",
                media_url=p.get("source"),
                thumbnail_url=p.get("picture"),
                permalink_url=p.get("link"),
                is_user_owned=not tagged,
                is_tagged=tagged,
                posted_at=_parse_time(p.get("created_time")),
            )
            for p in data.get("data") or []
        ]

    def _instagram_media(self, account_id: str, access_token: str) -> list[RemoteMedia]:
        data = self._get(
            f"{INSTAGRAM_API}/{account_id}/media",
            {
                "fields": "id,caption,media_type,media_url,thumbnail_url,permalink,timestamp",
                "access_token": access_token,
                "limit": PAGE_LIMIT,
            },
        )
        items = []
        for m in data.get("data") or []:
            if m.get("media_type") not in ("IMAGE", "CAROUSEL_ALBUM"):
                continue
            items.append(
                RemoteMedia(
                    provider_media_id=m["id"],
                    media_type="photo",
                    media_url=m.get("media_url"),
                    thumbnail_url=m.get("thumbnail_url") or m.get("media_url"),
                    permalink_url=m.get("permalink"),
                    caption=m.get("caption"),
                    posted_at=_parse_time(m.get("timestamp")),
                    extra={"instagram_media_type": m.get("media_type")},
                )
            )
        return items
