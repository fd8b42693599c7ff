"""
Face matcher clients.

The matcher holds the indexed reference faces; given an image it returns
which known faces appear in it and how similar they are (0-100).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from app.core.config import FACE_MATCHER_API_KEY, FACE_MATCHER_URL, PROVIDER_TIMEOUT
from app.scans.errors import FaceMatcherError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FaceMatch:
    face_id: str
    similarity: float


class FaceMatcher:
    name = "face-matcher"

    def find_matches(self, image: bytes, threshold: float) -> list[FaceMatch]:
        raise NotImplementedError


class UnconfiguredFaceMatcher(FaceMatcher):
    name = "unconfigured"

    def find_matches(self, image: bytes, threshold: float) -> list[FaceMatch]:
        raise FaceMatcherError("face matcher not configured (set FACE_MATCHER_URL)")


class HttpFaceMatcher(FaceMatcher):
    """
    POST {base_url}/search  (multipart: image, threshold)
    -> {"matches": [{"face_id": "...", "similarity": 97.1}, ...]}
    """

    name = "face-api"

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float = PROVIDER_TIMEOUT,
        max_faces: int = 10,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.max_faces = max_faces
        self._transport = transport

    def find_matches(self, image: bytes, threshold: float) -> list[FaceMatch]:
        headers = {"X-Api-Key": self.api_key} if self.api_key else {}
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                resp = client.post(
                    f"{self.base_url}/search",
                    files={"image": ("image.jpg", image, "application/octet-stream")},
                    data={"threshold": str(threshold), "max_faces": str(self.max_faces)},
                    headers=headers,
                )
                resp.raise_for_status()
                payload = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise FaceMatcherError(f"face matcher request failed: {e}") from e

        matches = []
        for m in payload.get("matches") or []:
            face_id = m.get("face_id") or m.get("faceId")
            similarity = m.get("similarity")
            if face_id is None or similarity is None:
                continue
            matches.append(FaceMatch(face_id=str(face_id), similarity=float(similarity)))
        return matches


def get_face_matcher() -> FaceMatcher:
    if FACE_MATCHER_URL:
        return HttpFaceMatcher(FACE_MATCHER_URL, api_key=FACE_MATCHER_API_KEY or None)
    logger.warning("FACE_MATCHER_URL is not set; image evaluation will fail until it is")
    return UnconfiguredFaceMatcher()
