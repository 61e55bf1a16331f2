"""Artifact storage backends and the local package cache."""

from .backend import (
    GsBackend,
    LocalBackend,
    RemoteHostBackend,
    StorageBackend,
    create_backend,
)
from .cache import CacheEntry, ensure_cached, pull_artifact

__all__ = [
    "CacheEntry",
    "GsBackend",
    "LocalBackend",
    "RemoteHostBackend",
    "StorageBackend",
    "create_backend",
    "ensure_cached",
    "pull_artifact",
]
