"""Tests for relman.storage.cache module."""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from relman.core.result import Err, Ok
from relman.output.console import MockConsole
from relman.release.model import ArtifactIdentity
from relman.storage.cache import ensure_cached, find_cached, pull_artifact
from relman.test._fakes import FakeStorage

IDENTITY = ArtifactIdentity(
    base_name="mina-archive",
    codename="bullseye",
    version="3.0.0",
    channel="unstable",
    network="devnet",
)
FILENAME = "mina-archive-devnet_3.0.0.deb"


def _md5(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def _storage(payload: bytes = b"package-v1") -> FakeStorage:
    return FakeStorage(files={f"1234/debians/bullseye/{FILENAME}": payload})


class TestEnsureCached:
    @pytest.mark.asyncio
    async def test_downloads_when_cache_empty(self, tmp_path: Path) -> None:
        storage = _storage()

        result = await ensure_cached(storage, IDENTITY, "1234", tmp_path, MockConsole())

        assert isinstance(result, Ok)
        assert result.value.path == tmp_path / "bullseye" / FILENAME
        assert result.value.md5 == _md5(b"package-v1")
        assert storage.downloads == 1

    @pytest.mark.asyncio
    async def test_second_call_skips_download(self, tmp_path: Path) -> None:
        storage = _storage()
        console = MockConsole()

        first = await ensure_cached(storage, IDENTITY, "1234", tmp_path, console)
        second = await ensure_cached(storage, IDENTITY, "1234", tmp_path, console)

        assert first == second
        assert storage.downloads == 1
        assert storage.hashes == 2
        assert console.find("already cached")

    @pytest.mark.asyncio
    async def test_remote_change_forces_download(self, tmp_path: Path) -> None:
        storage = _storage()
        await ensure_cached(storage, IDENTITY, "1234", tmp_path, MockConsole())
        storage.files[f"1234/debians/bullseye/{FILENAME}"] = b"package-v2"

        result = await ensure_cached(storage, IDENTITY, "1234", tmp_path, MockConsole())

        assert isinstance(result, Ok)
        assert storage.downloads == 2
        assert result.value.path.read_bytes() == b"package-v2"

    @pytest.mark.asyncio
    async def test_other_artifact_in_cache_is_ignored(self, tmp_path: Path) -> None:
        cache_dir = tmp_path / "bullseye"
        cache_dir.mkdir()
        # Same bytes but a different artifact name: not a candidate.
        (cache_dir / "mina-archive-mainnet_3.0.0.deb").write_bytes(b"package-v1")
        storage = _storage()

        await ensure_cached(storage, IDENTITY, "1234", tmp_path, MockConsole())

        assert storage.downloads == 1

    @pytest.mark.asyncio
    async def test_missing_artifact(self, tmp_path: Path) -> None:
        storage = FakeStorage()

        result = await ensure_cached(storage, IDENTITY, "1234", tmp_path, MockConsole())

        assert isinstance(result, Err)
        assert result.error.kind == "artifact_not_found"
        assert result.error.hint == "/storage/1234/debians/bullseye/mina-archive-devnet_*"
        assert storage.downloads == 0

    @pytest.mark.asyncio
    async def test_creates_codename_directory(self, tmp_path: Path) -> None:
        cache = tmp_path / "deep" / "cache"
        await ensure_cached(_storage(), IDENTITY, "1234", cache, MockConsole())
        assert (cache / "bullseye").is_dir()


class TestFindCached:
    @pytest.mark.asyncio
    async def test_missing_directory(self, tmp_path: Path) -> None:
        assert await find_cached(tmp_path / "nope", "mina", "x") is None

    @pytest.mark.asyncio
    async def test_prefix_is_case_sensitive(self, tmp_path: Path) -> None:
        (tmp_path / "MINA-DEVNET_1.deb").write_bytes(b"x")
        assert await find_cached(tmp_path, "mina-devnet", _md5(b"x")) is None


@pytest.mark.asyncio
async def test_pull_artifact_bypasses_cache(tmp_path: Path) -> None:
    storage = _storage()
    target = tmp_path / "out"

    result = await pull_artifact(storage, IDENTITY, "1234", target, MockConsole())

    assert result == Ok(None)
    assert (target / FILENAME).read_bytes() == b"package-v1"
    assert storage.hashes == 0
