from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterator

from app.core.config import STAGING_DIR

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def staged_image(data: bytes, *, suffix: str = ".jpg", directory: str | None = None) -> Iterator[Path]:
    """
    Write a candidate image to a temporary file for the face matcher.
    The file is removed on every exit path, errors included.
    """
    directory = directory or STAGING_DIR
    if directory:
        os.makedirs(directory, exist_ok=True)

    fd, name = tempfile.mkstemp(prefix="scan-", suffix=suffix, dir=directory)
    path = Path(name)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        yield path
    finally:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove staged image {path}: {e}")
