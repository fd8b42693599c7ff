from __future__ import annotations

import httpx

from app.core.config import IMAGE_FETCH_TIMEOUT, IMAGE_MAX_BYTES
from app.scans.errors import ImageFetchError
from app.ssrf.guard import BlockedTarget, validate_url_target

USER_AGENT = "FaceScanBot/1.0 (privacy scanner)"


class FetchedImage:
    __slots__ = ("url", "content", "content_type")

    def __init__(self, url: str, content: bytes, content_type: str | None):
        self.url = url
        self.content = content
        self.content_type = content_type

    def __len__(self):
        return len(self.content)


def fetch_image(
    url: str,
    *,
    timeout: float = IMAGE_FETCH_TIMEOUT,
    max_bytes: int = IMAGE_MAX_BYTES,
    client: httpx.Client | None = None,
    check_target: bool = True,
) -> FetchedImage:
    """
    Download an image body, aborting as soon as it grows past max_bytes.
    Redirects are not followed so the SSRF check can't be bypassed.
    """
    if check_target:
        try:
            validate_url_target(url)
        except BlockedTarget as e:
            raise ImageFetchError(f"{url}: {e}") from e

    own_client = client is None
    if own_client:
        client = httpx.Client(timeout=timeout, follow_redirects=False)

    try:
        with client.stream("GET", url, headers={"User-Agent": USER_AGENT}) as resp:
            if resp.status_code != 200:
                raise ImageFetchError(f"{url}: HTTP {resp.status_code}")

            declared = resp.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > max_bytes:
                raise ImageFetchError(f"{url}: {declared} bytes exceeds {max_bytes}")

            chunks = []
            size = 0
            for chunk in resp.iter_bytes():
                size += len(chunk)
                if size > max_bytes:
                    raise ImageFetchError(f"{url}: body exceeds {max_bytes} bytes")
                chunks.append(chunk)

            return FetchedImage(url, b"".join(chunks), resp.headers.get("content-type"))
    except httpx.HTTPError as e:
        raise ImageFetchError(f"{url}: {e}") from e
    finally:
        if own_client:
            client.close()
