from __future__ import annotations

from pathlib import Path

import pytest
import typer
from typer.testing import CliRunner

from relman import __version__
from relman.cli.app import app
from relman.cli.context import CLIContext, build_context
from relman.core.config import Config
from relman.core.errors import ErrorCode
from relman.output.console import MockConsole
from relman.test._fakes import FakeRunner, fail

cli = CliRunner()


def _patch(monkeypatch: pytest.MonkeyPatch, runner: FakeRunner, config: Config | None = None) -> MockConsole:
    import relman.cli.commands.debian as debian_cmd
    import relman.cli.commands.docker as docker_cmd

    console = MockConsole()
    ctx = CLIContext(config=config or Config(), console=console)
    monkeypatch.setattr(debian_cmd, "build_context", lambda *args, **kwargs: ctx)
    monkeypatch.setattr(docker_cmd, "build_context", lambda *args, **kwargs: ctx)
    monkeypatch.setattr(debian_cmd, "run_process", runner)
    return console


def test_version() -> None:
    result = cli.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_promote_image_dry_run(monkeypatch: pytest.MonkeyPatch) -> None:
    runner = FakeRunner()
    console = _patch(monkeypatch, runner)

    result = cli.invoke(
        app,
        [
            "promote-image",
            "--artifact",
            "mina-rosetta",
            "--codename",
            "focal",
            "--source-version",
            "3.0.0-abc",
            "--target-version",
            "3.0.0",
            "--network",
            "mainnet",
            "--registry",
            "docker-io",
            "--dry-run",
        ],
    )

    assert result.exit_code == 0, result.output
    assert console.find("3.0.0-abc-focal-mainnet -> 3.0.0-focal-mainnet")
    assert runner.calls == []


def test_unknown_artifact_is_user_error(monkeypatch: pytest.MonkeyPatch) -> None:
    console = _patch(monkeypatch, FakeRunner())

    result = cli.invoke(
        app,
        [
            "promote-debian",
            "--artifact",
            "mina-wallet",
            "--codename",
            "bullseye",
            "--build-id",
            "1",
            "--source-version",
            "1",
            "--target-version",
            "2",
            "--target-channel",
            "stable",
        ],
    )

    assert result.exit_code == int(ErrorCode.USER_ERROR)
    assert console.find("unknown artifact: mina-wallet")


def test_unsupported_backend(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _patch(monkeypatch, FakeRunner(), Config().with_storage(backend="ftp"))

    result = cli.invoke(
        app,
        ["pull", "--artifact", "mina-daemon", "--codename", "focal", "--build-id", "7", "--target", str(tmp_path)],
    )

    assert result.exit_code == int(ErrorCode.USER_ERROR)


def test_fix_manifests_failure_exit_code(monkeypatch: pytest.MonkeyPatch) -> None:
    runner = FakeRunner().on("deb-s3", handler=lambda cmd: fail(cmd, "broken index"))
    console = _patch(monkeypatch, runner)

    result = cli.invoke(app, ["fix-manifests", "--codename", "focal", "--channel", "unstable"])

    assert result.exit_code == int(ErrorCode.BUILD_ERROR)
    assert console.find("hint: broken index")


def test_reversion_missing_source(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    runner = FakeRunner()
    _patch(monkeypatch, runner)

    result = cli.invoke(
        app,
        [
            "reversion",
            "--deb",
            str(tmp_path / "missing.deb"),
            "--package",
            "mina-devnet",
            "--source-version",
            "1",
            "--new-version",
            "2",
            "--suite",
            "unstable",
            "--new-suite",
            "stable",
        ],
    )

    assert result.exit_code == int(ErrorCode.USER_ERROR)
    assert runner.calls == []


class TestBuildContext:
    def test_overrides(self, tmp_path: Path) -> None:
        ctx = build_context(
            tmp_path / "absent.toml",
            backend="hetzner",
            remote_host="box.example",
            cache_folder=str(tmp_path / "cache"),
        )
        assert ctx.config.storage.backend == "hetzner"
        assert ctx.config.storage.remote.host == "box.example"
        assert ctx.config.storage.remote.user == Config().storage.remote.user
        assert ctx.config.cache.path == tmp_path / "cache"

    def test_broken_config_exits(self, tmp_path: Path) -> None:
        path = tmp_path / "relman.toml"
        path.write_text("[storage", encoding="utf-8")

        with pytest.raises(typer.Exit) as exc:
            build_context(path)

        assert exc.value.exit_code == int(ErrorCode.ENV_ERROR)
