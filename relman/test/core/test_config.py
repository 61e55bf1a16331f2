"""Tests for relman.core.config module."""

from __future__ import annotations

from pathlib import Path

import pytest

from relman.core.config import (
    LOCK_STALENESS_SECONDS,
    Config,
    ConfigError,
    RemoteHostConfig,
    StorageConfig,
    load_config,
    load_config_or_default,
)
from relman.core.result import Err, Ok


class TestDefaults:
    def test_storage_defaults_to_local(self) -> None:
        assert StorageConfig().backend == "local"

    def test_remote_host_defaults(self) -> None:
        host = RemoteHostConfig()
        assert host.port == 23
        assert host.destination == "u434410@u434410-sub2.your-storagebox.de"

    def test_expanded_key_path(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("HOME", str(tmp_path))
        host = RemoteHostConfig(key_path="~/.ssh/key")
        assert host.expanded_key_path == str(tmp_path / ".ssh" / "key")

    def test_lock_staleness(self) -> None:
        assert Config().repository.lock_staleness_seconds == LOCK_STALENESS_SECONDS == 300

    def test_frozen(self) -> None:
        config = Config()
        with pytest.raises(AttributeError):
            config.storage = StorageConfig()  # type: ignore[misc]


class TestFromDict:
    def test_empty_uses_defaults(self) -> None:
        assert Config.from_dict({}) == Config()

    def test_overrides(self) -> None:
        config = Config.from_dict(
            {
                "storage": {"backend": "hetzner", "remote": {"host": "box", "port": 2222}},
                "repository": {"bucket": "packages.example", "sign_key": "ABC123"},
                "registries": {"docker_io": "docker.io/example"},
                "cache": {"folder": "/tmp/cache"},
            }
        )
        assert config.storage.backend == "hetzner"
        assert config.storage.remote.host == "box"
        assert config.storage.remote.port == 2222
        assert config.storage.remote.user == RemoteHostConfig().user
        assert config.repository.bucket == "packages.example"
        assert config.repository.sign_key == "ABC123"
        assert config.registries.docker_io == "docker.io/example"
        assert config.cache.path == Path("/tmp/cache")

    def test_wrong_types_fall_back(self) -> None:
        config = Config.from_dict({"storage": {"remote": {"port": True}}, "repository": "x"})
        assert config.storage.remote.port == 23
        assert config.repository == Config().repository

    def test_with_storage(self) -> None:
        config = Config().with_storage(backend="gs")
        assert config.storage.backend == "gs"
        assert config.repository == Config().repository


class TestLoadConfig:
    def test_valid_file(self, tmp_path: Path) -> None:
        path = tmp_path / "relman.toml"
        path.write_text('[storage]\nbackend = "gs"\n', encoding="utf-8")

        result = load_config(path)

        assert isinstance(result, Ok)
        assert result.value.storage.backend == "gs"

    def test_missing_file(self, tmp_path: Path) -> None:
        result = load_config(tmp_path / "missing.toml")
        assert isinstance(result, Err)
        assert isinstance(result.error, ConfigError)
        assert "not found" in result.error.message

    def test_invalid_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "relman.toml"
        path.write_text("[storage\n", encoding="utf-8")

        result = load_config(path)

        assert isinstance(result, Err)
        assert "Invalid TOML" in result.error.message
        assert result.error.path == path


class TestLoadConfigOrDefault:
    def test_none_path(self) -> None:
        assert load_config_or_default(None) == Ok(Config())

    def test_absent_file(self, tmp_path: Path) -> None:
        assert load_config_or_default(tmp_path / "nope.toml") == Ok(Config())

    def test_broken_file_is_still_an_error(self, tmp_path: Path) -> None:
        path = tmp_path / "relman.toml"
        path.write_text("not = [valid", encoding="utf-8")
        assert isinstance(load_config_or_default(path), Err)
