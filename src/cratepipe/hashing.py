# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Canonical hashing helpers used to derive content-addressed cache keys."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Mapping
from typing import Final

_ENCODING: Final[str] = "utf-8"
_FIELD_DELIMITER: Final[bytes] = b"\x00"
_KEY_DELIMITER: Final[bytes] = b"::"

DEPENDENCY_KEY_PREFIX: Final[str] = "deps"
PACKAGE_KEY_PREFIX: Final[str] = "pkg"
CHECK_KEY_PREFIX: Final[str] = "check"
NO_DEPENDENCIES: Final[str] = "-"


def sha256_hex(data: bytes) -> str:
    """Return the hexadecimal sha256 digest of ``data``.

    Args:
        data: Raw bytes to hash.

    Returns:
        str: Lower-case hexadecimal digest.
    """

    return hashlib.sha256(data).hexdigest()


def tree_digest(entries: Iterable[tuple[str, bytes]]) -> str:
    """Return a digest over ordered ``(path, content)`` pairs.

    Each entry is framed by its path and content length so that moving bytes
    between adjacent files always changes the digest.

    Args:
        entries: Ordered relative paths paired with file content.

    Returns:
        str: Hexadecimal digest of the framed entries.
    """

    hasher = hashlib.sha256()
    for path, content in entries:
        hasher.update(path.encode(_ENCODING))
        hasher.update(_FIELD_DELIMITER)
        hasher.update(str(len(content)).encode(_ENCODING))
        hasher.update(_FIELD_DELIMITER)
        hasher.update(content)
    return hasher.hexdigest()


def canonical_digest(payload: Mapping[str, object]) -> str:
    """Return the digest of ``payload`` serialised as canonical JSON.

    Args:
        payload: JSON-compatible mapping.

    Returns:
        str: Hexadecimal digest of the sorted, compact JSON encoding.
    """

    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return sha256_hex(canonical.encode(_ENCODING))


def _derive_key(prefix: str, *components: str) -> str:
    hasher = hashlib.sha256()
    hasher.update(prefix.encode(_ENCODING))
    for component in components:
        hasher.update(_KEY_DELIMITER)
        hasher.update(component.encode(_ENCODING))
    return f"{prefix}-{hasher.hexdigest()}"


def dependency_cache_key(lock_hash: str, toolchain_fingerprint: str) -> str:
    """Return the dependency cache key for a lock file and toolchain pair.

    Args:
        lock_hash: Digest of the lock file content.
        toolchain_fingerprint: Stable toolchain identity string.

    Returns:
        str: Cache key prefixed with ``deps-``.
    """

    return _derive_key(DEPENDENCY_KEY_PREFIX, lock_hash, toolchain_fingerprint)


def package_key(source_digest: str, dependency_key: str) -> str:
    """Return the package artifact key for a source tree and dependency cache.

    Args:
        source_digest: Digest of the filtered source tree.
        dependency_key: Key of the dependency artifact the build links against.

    Returns:
        str: Cache key prefixed with ``pkg-``.
    """

    return _derive_key(PACKAGE_KEY_PREFIX, source_digest, dependency_key)


def check_key(
    check: str,
    source_digest: str,
    dependency_key: str | None,
    toolchain_fingerprint: str,
) -> str:
    """Return the cache key of a check result.

    Args:
        check: Registered check name.
        source_digest: Digest of the filtered source tree.
        dependency_key: Dependency artifact key, or ``None`` for checks
            that do not consume the dependency cache.
        toolchain_fingerprint: Stable toolchain identity string.

    Returns:
        str: Cache key prefixed with ``check-``.
    """

    return _derive_key(
        CHECK_KEY_PREFIX,
        check,
        source_digest,
        dependency_key or NO_DEPENDENCIES,
        toolchain_fingerprint,
    )


__all__ = [
    "canonical_digest",
    "check_key",
    "dependency_cache_key",
    "package_key",
    "sha256_hex",
    "tree_digest",
]
