from __future__ import annotations

import hashlib
from pathlib import Path

from relman.platform.files import md5_file


def test_md5_file_matches_hashlib(tmp_path: Path) -> None:
    payload = b"x" * (3 * 1024 * 1024 + 17)
    path = tmp_path / "pkg.deb"
    path.write_bytes(payload)

    assert md5_file(path) == hashlib.md5(payload).hexdigest()


def test_md5_empty_file(tmp_path: Path) -> None:
    path = tmp_path / "empty"
    path.write_bytes(b"")
    assert md5_file(path) == "d41d8cd98f00b204e9800998ecf8427e"
