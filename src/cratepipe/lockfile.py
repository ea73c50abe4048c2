# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Cargo lock file parsing and dependency-only source stubbing."""

from __future__ import annotations

import tomllib
from collections.abc import Iterable, Mapping
from pathlib import PurePosixPath
from typing import Any, Final

from .errors import DependencyResolutionError
from .hashing import sha256_hex
from .models import LockedPackage, SourceEntry, SourceTree

LOCK_FILE: Final[str] = "Cargo.lock"
MANIFEST_FILE: Final[str] = "Cargo.toml"
CARGO_CONFIG_NAMES: Final[frozenset[str]] = frozenset({"config", "config.toml"})
TOOLCHAIN_FILES: Final[frozenset[str]] = frozenset({"rust-toolchain", "rust-toolchain.toml"})

LIB_STUB: Final[bytes] = b"#![allow(dead_code)]\n"
MAIN_STUB: Final[bytes] = b"fn main() {}\n"
TEST_STUB: Final[bytes] = b""

# Auto-discovered target roots relative to a manifest directory.
_LIB_ROOT: Final[str] = "src/lib.rs"
_MAIN_ROOT: Final[str] = "src/main.rs"
_BUILD_SCRIPT: Final[str] = "build.rs"
_MAIN_DIRS: Final[tuple[str, ...]] = ("src/bin", "examples", "benches")
_TEST_DIR: Final[str] = "tests"


def lock_hash(content: bytes) -> str:
    """Return the digest identifying a lock file's content."""

    return sha256_hex(content)


def extract_lock_file(tree: SourceTree) -> bytes:
    """Return the root lock file content stored in ``tree``.

    Args:
        tree: Filtered repository snapshot.

    Returns:
        bytes: Raw ``Cargo.lock`` content.

    Raises:
        DependencyResolutionError: If the tree carries no lock file.
    """

    entry = tree.get(LOCK_FILE)
    if entry is None:
        raise DependencyResolutionError(
            "Dependency lock file is missing.",
            hint="Run `cargo generate-lockfile` and commit Cargo.lock.",
            context={"path": LOCK_FILE},
        )
    return entry.content


def parse_lock_file(content: bytes) -> tuple[LockedPackage, ...]:
    """Parse ``Cargo.lock`` content into locked packages sorted by name.

    Args:
        content: Raw lock file bytes.

    Returns:
        tuple[LockedPackage, ...]: Every package pinned by the lock file.

    Raises:
        DependencyResolutionError: If the document is not valid TOML or an
            entry lacks a name or version.
    """

    digest = lock_hash(content)
    try:
        document = tomllib.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        raise DependencyResolutionError(
            "Dependency lock file is not valid TOML.",
            hint=str(exc),
            context={"path": LOCK_FILE, "lock_hash": digest},
        ) from exc

    raw_packages = document.get("package", [])
    if not isinstance(raw_packages, list):
        raise DependencyResolutionError(
            "Dependency lock file has an invalid `package` table.",
            context={"path": LOCK_FILE, "lock_hash": digest},
        )
    packages = [_parse_locked_package(item, digest) for item in raw_packages]
    return tuple(sorted(packages, key=lambda package: (package.name, package.version)))


def external_dependencies(packages: Iterable[LockedPackage]) -> tuple[LockedPackage, ...]:
    """Return the packages that come from outside the workspace."""

    return tuple(package for package in packages if package.is_external)


def _parse_locked_package(item: Any, digest: str) -> LockedPackage:
    if not isinstance(item, Mapping):
        raise DependencyResolutionError(
            "Dependency lock file contains a malformed package entry.",
            context={"path": LOCK_FILE, "lock_hash": digest},
        )
    name = item.get("name")
    version = item.get("version")
    if not isinstance(name, str) or not isinstance(version, str):
        raise DependencyResolutionError(
            "Locked package is missing a name or version.",
            context={"path": LOCK_FILE, "lock_hash": digest, "entry": repr(dict(item))},
        )
    dependencies = item.get("dependencies", [])
    return LockedPackage(
        name=name,
        version=version,
        source=item.get("source"),
        checksum=item.get("checksum"),
        dependencies=tuple(str(dep) for dep in dependencies),
    )


def dependency_only_tree(tree: SourceTree) -> SourceTree:
    """Return a tree that can compile the dependency closure only.

    Manifests, the lock file, cargo configuration and toolchain pins are kept.
    Every crate target root is replaced with an empty stub and all other Rust
    source is dropped, so edits to application code never change the result.
    Manifests without any target root gain a ``src/lib.rs`` stub so the
    package still compiles when application source is absent.

    Args:
        tree: Filtered repository snapshot.

    Returns:
        SourceTree: Stubbed tree suitable for a dependency-only build.

    Raises:
        DependencyResolutionError: If a manifest is not valid TOML.
    """

    files: dict[str, bytes] = {}
    manifests: dict[PurePosixPath, Mapping[str, Any]] = {}
    for entry in tree.entries:
        path = PurePosixPath(entry.path)
        if path.name == MANIFEST_FILE:
            files[entry.path] = entry.content
            manifests[path.parent] = _load_manifest(entry)
        elif _is_dependency_input(path):
            files[entry.path] = entry.content

    rust_paths = {entry.path for entry in tree.entries if entry.path.endswith(".rs")}
    for directory, manifest in manifests.items():
        files.update(_stub_targets(directory, manifest, rust_paths))
    return SourceTree.from_files(files)


def _is_dependency_input(path: PurePosixPath) -> bool:
    if path.as_posix() == LOCK_FILE or path.name in TOOLCHAIN_FILES:
        return True
    return path.parent.name == ".cargo" and path.name in CARGO_CONFIG_NAMES


def _load_manifest(entry: SourceEntry) -> Mapping[str, Any]:
    try:
        return tomllib.loads(entry.content.decode("utf-8"))
    except (UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        raise DependencyResolutionError(
            "Package manifest is not valid TOML.",
            hint=str(exc),
            context={"path": entry.path},
        ) from exc


def _stub_targets(
    directory: PurePosixPath,
    manifest: Mapping[str, Any],
    rust_paths: set[str],
) -> dict[str, bytes]:
    """Return stub files for every target root declared by ``manifest``.

    Args:
        directory: Directory holding the manifest, relative to the tree root.
        manifest: Parsed manifest document.
        rust_paths: Every Rust source path present in the tree.

    Returns:
        dict[str, bytes]: Stub content keyed by tree-relative path.
    """

    package = manifest.get("package")
    if not isinstance(package, Mapping):
        # Virtual workspace manifest; members carry their own targets.
        return {}

    def rel(path: str) -> str:
        return (directory / path).as_posix()

    stubs: dict[str, bytes] = {}
    for candidate in (_LIB_ROOT, _MAIN_ROOT):
        if rel(candidate) in rust_paths:
            stubs[rel(candidate)] = LIB_STUB if candidate == _LIB_ROOT else MAIN_STUB

    build_script = package.get("build")
    if isinstance(build_script, str):
        stubs[rel(build_script)] = MAIN_STUB
    elif build_script is not False and rel(_BUILD_SCRIPT) in rust_paths:
        stubs[rel(_BUILD_SCRIPT)] = MAIN_STUB

    lib = manifest.get("lib")
    if isinstance(lib, Mapping) and isinstance(lib.get("path"), str):
        stubs[rel(lib["path"])] = LIB_STUB

    for section in ("bin", "example", "bench"):
        for target in _declared_targets(manifest, section):
            stubs[rel(target)] = MAIN_STUB
    for target in _declared_targets(manifest, "test"):
        stubs[rel(target)] = TEST_STUB

    for path in rust_paths:
        relative = PurePosixPath(path)
        if not relative.is_relative_to(directory):
            continue
        inner = relative.relative_to(directory)
        parent = inner.parent.as_posix()
        nested_bin = len(inner.parts) == 4 and inner.parts[:2] == ("src", "bin") and inner.name == "main.rs"
        if parent in _MAIN_DIRS or nested_bin:
            stubs.setdefault(path, MAIN_STUB)
        elif parent == _TEST_DIR:
            stubs.setdefault(path, TEST_STUB)

    if not any(stub in (rel(_LIB_ROOT), rel(_MAIN_ROOT)) for stub in stubs) and not lib:
        stubs[rel(_LIB_ROOT)] = LIB_STUB
    return stubs


def _declared_targets(manifest: Mapping[str, Any], section: str) -> list[str]:
    entries = manifest.get(section, [])
    if not isinstance(entries, list):
        return []
    return [entry["path"] for entry in entries if isinstance(entry, Mapping) and isinstance(entry.get("path"), str)]


__all__ = [
    "LOCK_FILE",
    "MANIFEST_FILE",
    "dependency_only_tree",
    "external_dependencies",
    "extract_lock_file",
    "lock_hash",
    "parse_lock_file",
]
