# app/scans/search.py

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from app.core.config import (
    GOOGLE_API_KEY,
    GOOGLE_SEARCH_ENGINE_ID,
    PROVIDER_TIMEOUT,
    SEARCH_PAGE_SIZE,
)
from app.scans.errors import SearchProviderError

logger = logging.getLogger(__name__)

GOOGLE_SEARCH_URL = "https://www.googleapis.com/customsearch/v1"
FALLBACK_QUERY = "person face"


@dataclass(frozen=True)
class SearchHit:
    image_url: str
    source_url: str


def build_query(display_name: str | None) -> str:
    name = (display_name or "").strip()
    return name or FALLBACK_QUERY


class GoogleImageSearch:
    """Google Custom Search JSON API, image mode."""

    name = "google-custom-search"

    def __init__(
        self,
        api_key: str = GOOGLE_API_KEY,
        engine_id: str = GOOGLE_SEARCH_ENGINE_ID,
        *,
        page_size: int = SEARCH_PAGE_SIZE,
        timeout: float = PROVIDER_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        if not api_key or not engine_id:
            raise ValueError("GOOGLE_API_KEY and GOOGLE_SEARCH_ENGINE_ID are required")
        self.api_key = api_key
        self.engine_id = engine_id
        self.page_size = page_size
        self.timeout = timeout
        self._transport = transport

    def search_images(self, query: str) -> list[SearchHit]:
        params = {
            "key": self.api_key,
            "cx": self.engine_id,
            "searchType": "image",
            "q": query,
            "imgSize": "large",
            "num": self.page_size,
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                resp = client.get(GOOGLE_SEARCH_URL, params=params)
        except httpx.HTTPError as e:
            raise SearchProviderError(f"search request failed: {e}") from e

        if resp.status_code != 200:
            try:
                detail = (resp.json().get("error") or {}).get("message")
            except ValueError:
                detail = None
            raise SearchProviderError(f"search returned HTTP {resp.status_code}: {detail or 'unknown error'}")

        items = resp.json().get("items") or []
        hits = []
        for item in items[: self.page_size]:
            link = item.get("link")
            if not link:
                continue
            context = (item.get("image") or {}).get("contextLink") or link
            hits.append(SearchHit(image_url=link, source_url=context))

        logger.info(f"Search for {query!r} returned {len(hits)} candidates")
        return hits
