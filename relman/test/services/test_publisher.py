"""Tests for relman.services.publisher module."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from relman.core.config import RepositoryConfig
from relman.core.result import Err, Ok
from relman.output.console import MockConsole
from relman.services.publisher import (
    PublishRequest,
    RepositoryLock,
    RepositoryPublisher,
    is_lock_conflict,
    lockfile_uri,
    parse_lock_listing,
)
from relman.test._fakes import FakeRunner, fail, ok

LOCK_TIME = datetime(2024, 3, 1, 12, 20, 0, tzinfo=UTC)
LOCK_LISTING = "2024-03-01 12:20:00         12 lockfile\n"
LOCK_URI = "s3://packages.example/dists/bullseye/stable/binary-/lockfile"
CONFIG = RepositoryConfig(bucket="packages.example", region="us-west-2")


def _request(tmp_path: Path) -> PublishRequest:
    deb = tmp_path / "mina-devnet_3.0.0.deb"
    deb.write_bytes(b"deb")
    return PublishRequest(package_path=deb, version="3.0.0", codename="bullseye", channel="stable")


def _locked_runner(listing: str = LOCK_LISTING) -> FakeRunner:
    return (
        FakeRunner()
        .on("deb-s3", "upload", handler=lambda cmd: fail(cmd, "Unable to obtain lock: lockfile exists"))
        .on("aws", "s3", "ls", handler=lambda _: ok(listing))
    )


def _publisher(runner: FakeRunner, now: datetime, console: MockConsole | None = None) -> RepositoryPublisher:
    return RepositoryPublisher(CONFIG, console=console or MockConsole(), runner=runner, clock=lambda: now)


class TestHelpers:
    def test_lockfile_uri(self) -> None:
        assert lockfile_uri("packages.example", "bullseye", "stable") == LOCK_URI

    def test_is_lock_conflict(self) -> None:
        assert is_lock_conflict("Unable to obtain lockfile")
        assert is_lock_conflict("repository locked")
        assert not is_lock_conflict("403 Forbidden")

    def test_parse_listing(self) -> None:
        assert parse_lock_listing(LOCK_URI, LOCK_LISTING) == RepositoryLock(LOCK_URI, LOCK_TIME)

    def test_parse_garbage(self) -> None:
        assert parse_lock_listing(LOCK_URI, "what is this").created_at is None

    def test_staleness_boundary(self) -> None:
        lock = RepositoryLock(LOCK_URI, LOCK_TIME)
        threshold = timedelta(seconds=300)
        assert not lock.is_stale(LOCK_TIME + timedelta(seconds=299), threshold)
        assert lock.is_stale(LOCK_TIME + timedelta(seconds=300), threshold)
        assert RepositoryLock(LOCK_URI, None).is_stale(LOCK_TIME, threshold)


class TestUploadCommand:
    def test_flags(self, tmp_path: Path) -> None:
        publisher = RepositoryPublisher(
            RepositoryConfig(bucket="b", region="r", cache_control="max-age=1", sign_key="KEY"),
            console=MockConsole(),
            runner=FakeRunner(),
        )
        cmd = publisher.upload_command(_request(tmp_path))

        assert cmd[:2] == ["deb-s3", "upload"]
        for flag in ("--preserve-versions", "--lock", "--fail-if-exists", "--s3-region=r", "--cache-control=max-age=1"):
            assert flag in cmd
        assert cmd[cmd.index("--codename") + 1] == "bullseye"
        assert cmd[cmd.index("--component") + 1] == "stable"
        assert cmd[cmd.index("--suite") + 1] == "stable"
        assert cmd[cmd.index("--sign") + 1] == "KEY"
        assert cmd[-1].endswith("mina-devnet_3.0.0.deb")

    def test_no_sign_flag_without_key(self, tmp_path: Path) -> None:
        publisher = RepositoryPublisher(CONFIG, console=MockConsole(), runner=FakeRunner())
        assert "--sign" not in publisher.upload_command(_request(tmp_path))


class TestPublish:
    @pytest.mark.asyncio
    async def test_success_runs_verify(self, tmp_path: Path) -> None:
        runner = FakeRunner()

        result = await _publisher(runner, LOCK_TIME).publish(_request(tmp_path))

        assert result == Ok(None)
        assert [c[:2] for c in runner.calls] == [["deb-s3", "upload"], ["deb-s3", "verify"]]

    @pytest.mark.asyncio
    async def test_missing_package(self, tmp_path: Path) -> None:
        runner = FakeRunner()
        request = PublishRequest(tmp_path / "nope.deb", "1", "bullseye", "stable")

        result = await _publisher(runner, LOCK_TIME).publish(request)

        assert isinstance(result, Err)
        assert result.error.kind == "validation"
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_stale_lock_is_deleted_and_failure_reported(self, tmp_path: Path) -> None:
        runner = _locked_runner()
        now = LOCK_TIME + timedelta(minutes=10)

        result = await _publisher(runner, now).publish(_request(tmp_path))

        assert isinstance(result, Err)
        assert result.error.kind == "command_failed"
        assert result.error.hint == "Unable to obtain lock: lockfile exists"
        assert runner.commands("aws", "s3", "rm") == [["aws", "s3", "rm", LOCK_URI]]
        assert len(runner.commands("deb-s3", "upload")) == 1

    @pytest.mark.asyncio
    async def test_young_lock_is_kept(self, tmp_path: Path) -> None:
        runner = _locked_runner()
        now = LOCK_TIME + timedelta(minutes=2)

        result = await _publisher(runner, now).publish(_request(tmp_path))

        assert isinstance(result, Err)
        assert result.error.kind == "validation"
        assert "too recent" in result.error.message
        assert runner.commands("aws", "s3", "rm") == []

    @pytest.mark.asyncio
    async def test_lock_at_threshold_is_deleted(self, tmp_path: Path) -> None:
        runner = _locked_runner()
        now = LOCK_TIME + timedelta(seconds=300)

        await _publisher(runner, now).publish(_request(tmp_path))

        assert len(runner.commands("aws", "s3", "rm")) == 1

    @pytest.mark.asyncio
    async def test_unparsable_lock_is_deleted(self, tmp_path: Path) -> None:
        runner = _locked_runner(listing="PRE lockfile/\n")
        console = MockConsole()

        result = await _publisher(runner, LOCK_TIME, console).publish(_request(tmp_path))

        assert isinstance(result, Err)
        assert result.error.kind == "command_failed"
        assert len(runner.commands("aws", "s3", "rm")) == 1
        assert any("could not parse" in w for w in console.warnings())

    @pytest.mark.asyncio
    async def test_no_lock_found(self, tmp_path: Path) -> None:
        runner = (
            FakeRunner()
            .on("deb-s3", "upload", handler=lambda cmd: fail(cmd, "lockfile busy"))
            .on("aws", "s3", "ls", handler=lambda cmd: fail(cmd, "", returncode=1))
        )

        result = await _publisher(runner, LOCK_TIME).publish(_request(tmp_path))

        assert isinstance(result, Err)
        assert result.error.kind == "command_failed"
        assert runner.commands("aws", "s3", "rm") == []

    @pytest.mark.asyncio
    async def test_other_upload_failure_skips_lock_inspection(self, tmp_path: Path) -> None:
        runner = FakeRunner().on("deb-s3", "upload", handler=lambda cmd: fail(cmd, "AccessDenied"))

        result = await _publisher(runner, LOCK_TIME).publish(_request(tmp_path))

        assert isinstance(result, Err)
        assert result.error.context == "mina-devnet_3.0.0.deb@bullseye/stable"
        assert runner.commands("aws") == []

    @pytest.mark.asyncio
    async def test_verify_failure_is_unverified(self, tmp_path: Path) -> None:
        runner = FakeRunner().on("deb-s3", "verify", handler=lambda cmd: fail(cmd, "missing package"))

        result = await _publisher(runner, LOCK_TIME).publish(_request(tmp_path))

        assert isinstance(result, Err)
        assert result.error.kind == "unverified"
        assert result.error.hint == "missing package"


@pytest.mark.asyncio
async def test_fix_manifests() -> None:
    runner = FakeRunner()

    result = await _publisher(runner, LOCK_TIME).fix_manifests("focal", "unstable")

    assert result == Ok(None)
    assert runner.calls[0][:3] == ["deb-s3", "verify", "--fix-manifests"]
    assert "focal" in runner.calls[0]
