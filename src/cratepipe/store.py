# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Content-addressed cache store with publish-if-absent semantics."""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from types import MappingProxyType
from typing import Final, Protocol, runtime_checkable

from .errors import CacheIntegrityError
from .hashing import sha256_hex
from .models import JsonValue

LOGGER = logging.getLogger(__name__)

MANIFEST_FILENAME: Final[str] = "manifest.json"
FILES_DIRNAME: Final[str] = "files"
_KEY_FIELD: Final[str] = "key"
_MANIFEST_FIELD: Final[str] = "manifest"
_DIGESTS_FIELD: Final[str] = "files"


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """Stored artifact: a JSON manifest plus opaque file payloads."""

    key: str
    manifest: Mapping[str, JsonValue]
    files: Mapping[str, bytes] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "manifest", MappingProxyType(dict(self.manifest)))
        object.__setattr__(self, "files", MappingProxyType(dict(self.files)))


@runtime_checkable
class CacheStore(Protocol):
    """Key/value store addressed by content hash.

    Writes are idempotent: publishing a key that already exists leaves the
    stored entry untouched and returns it.
    """

    def fetch(self, key: str) -> CacheEntry | None:
        """Return the entry stored under ``key`` when present."""
        ...

    def publish_if_absent(self, entry: CacheEntry) -> CacheEntry:
        """Store ``entry`` unless its key exists; return the stored entry."""
        ...

    def __contains__(self, key: object) -> bool:
        """Return whether ``key`` has been published."""
        ...


@dataclass(slots=True)
class CacheStats:
    """Thread-safe counters describing cache reuse by a builder."""

    hits: int = 0
    builds: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_hit(self) -> None:
        with self._lock:
            self.hits += 1

    def record_build(self) -> None:
        with self._lock:
            self.builds += 1


class InMemoryCacheStore:
    """Process-local store used by tests and one-shot runs."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def fetch(self, key: str) -> CacheEntry | None:
        with self._lock:
            return self._entries.get(key)

    def publish_if_absent(self, entry: CacheEntry) -> CacheEntry:
        with self._lock:
            return self._entries.setdefault(entry.key, entry)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class FileCacheStore:
    """Persist entries beneath ``root/<key[:2]>/<key>``.

    Each entry directory holds ``manifest.json`` and a ``files`` tree. Entries
    are staged in a sibling temporary directory and renamed into place, so a
    reader never observes a partially written entry and concurrent writers of
    the same key race harmlessly.
    """

    def __init__(self, root: Path) -> None:
        """Initialise the store rooted at ``root``.

        Args:
            root: Directory holding every cache entry.
        """

        self._root = Path(root)

    @property
    def root(self) -> Path:
        """Return the directory holding every cache entry."""

        return self._root

    def fetch(self, key: str) -> CacheEntry | None:
        """Return the entry stored under ``key`` after verifying its content.

        Args:
            key: Content-derived cache key.

        Returns:
            CacheEntry | None: Stored entry, or ``None`` when absent.

        Raises:
            CacheIntegrityError: If the manifest is unreadable, names another
                key, or a payload digest does not match.
        """

        entry_dir = self._entry_dir(key)
        manifest_path = entry_dir / MANIFEST_FILENAME
        if not manifest_path.is_file():
            return None
        document = self._read_manifest(manifest_path, key)
        digests = document.get(_DIGESTS_FIELD, {})
        if not isinstance(digests, dict):
            raise CacheIntegrityError("Cache manifest has an invalid file index.", context={"key": key})
        files: dict[str, bytes] = {}
        for relative, expected in digests.items():
            payload_path = entry_dir / FILES_DIRNAME / _safe_relative(relative, key)
            try:
                payload = payload_path.read_bytes()
            except OSError as exc:
                raise CacheIntegrityError(
                    "Cache payload is missing.",
                    hint="Remove the entry directory and rebuild.",
                    context={"key": key, "path": relative},
                ) from exc
            if sha256_hex(payload) != expected:
                raise CacheIntegrityError(
                    "Cache payload digest mismatch.",
                    hint="Remove the entry directory and rebuild.",
                    context={"key": key, "path": relative},
                )
            files[relative] = payload
        manifest = document.get(_MANIFEST_FIELD, {})
        if not isinstance(manifest, dict):
            raise CacheIntegrityError("Cache manifest payload is not a table.", context={"key": key})
        return CacheEntry(key=key, manifest=manifest, files=files)

    def publish_if_absent(self, entry: CacheEntry) -> CacheEntry:
        """Atomically store ``entry`` unless its key is already present.

        Args:
            entry: Entry to publish.

        Returns:
            CacheEntry: The entry held by the store after the call.
        """

        final_dir = self._entry_dir(entry.key)
        existing = self.fetch(entry.key)
        if existing is not None:
            return existing

        final_dir.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f".{entry.key}.", dir=final_dir.parent))
        try:
            self._write_entry(staging, entry)
            try:
                os.rename(staging, final_dir)
                LOGGER.debug("published cache entry %s", entry.key)
            except OSError:
                if not final_dir.is_dir():
                    raise
                LOGGER.debug("cache entry %s published concurrently; discarding copy", entry.key)
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

        stored = self.fetch(entry.key)
        if stored is None:  # pragma: no cover - rename succeeded or a peer published
            raise CacheIntegrityError("Cache entry vanished after publishing.", context={"key": entry.key})
        return stored

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and (self._entry_dir(key) / MANIFEST_FILENAME).is_file()

    def _entry_dir(self, key: str) -> Path:
        if not key or "/" in key or key.startswith("."):
            raise CacheIntegrityError("Invalid cache key.", context={"key": key})
        return self._root / key[:2] / key

    @staticmethod
    def _write_entry(staging: Path, entry: CacheEntry) -> None:
        digests: dict[str, str] = {}
        for relative, payload in sorted(entry.files.items()):
            target = staging / FILES_DIRNAME / _safe_relative(relative, entry.key)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(payload)
            digests[relative] = sha256_hex(payload)
        document = {
            _KEY_FIELD: entry.key,
            _MANIFEST_FIELD: dict(entry.manifest),
            _DIGESTS_FIELD: digests,
        }
        (staging / MANIFEST_FILENAME).write_text(json.dumps(document, indent=2, sort_keys=True), encoding="utf-8")

    @staticmethod
    def _read_manifest(path: Path, key: str) -> dict[str, JsonValue]:
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise CacheIntegrityError(
                "Cache manifest is not readable JSON.",
                hint="Remove the entry directory and rebuild.",
                context={"key": key, "path": str(path)},
            ) from exc
        if not isinstance(document, dict) or document.get(_KEY_FIELD) != key:
            raise CacheIntegrityError(
                "Cache manifest key mismatch.",
                hint="Remove the entry directory and rebuild.",
                context={"key": key, "path": str(path)},
            )
        return document


def _safe_relative(relative: str, key: str) -> PurePosixPath:
    candidate = PurePosixPath(relative)
    if candidate.is_absolute() or ".." in candidate.parts or not candidate.parts:
        raise CacheIntegrityError("Cache payload path escapes its entry.", context={"key": key, "path": relative})
    return candidate


__all__ = [
    "CacheEntry",
    "CacheStats",
    "CacheStore",
    "FileCacheStore",
    "InMemoryCacheStore",
]
