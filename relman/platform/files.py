"""Filesystem helpers."""

from __future__ import annotations

import hashlib
from pathlib import Path

__all__ = ["md5_file"]


def md5_file(path: Path) -> str:
    """Hex MD5 of a file; the digest used by gsutil and md5sum on the remote side."""
    h = hashlib.md5()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()
