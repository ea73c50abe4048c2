# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Immutable data model shared by every pipeline component."""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import TypeAlias

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator, model_validator

from .hashing import canonical_digest, tree_digest

JsonScalar: TypeAlias = str | int | float | bool | None
JsonValue: TypeAlias = "JsonScalar | list[JsonValue] | dict[str, JsonValue]"


class PathKind(str, Enum):
    """Enumerate filesystem entry kinds presented to filter rules."""

    REGULAR = "regular"
    DIRECTORY = "directory"
    SYMLINK = "symlink"


class SourceEntry(BaseModel):
    """Single file of a filtered repository snapshot."""

    model_config = ConfigDict(frozen=True)

    path: str
    content: bytes

    @field_validator("path")
    @classmethod
    def _normalise_path(cls, value: str) -> str:
        """Return ``value`` as a clean, relative POSIX path.

        Args:
            value: Raw relative path supplied by the caller.

        Returns:
            str: Normalised POSIX path.

        Raises:
            ValueError: If the path is empty, absolute or escapes the tree.
        """

        candidate = PurePosixPath(value.replace("\\", "/"))
        if candidate.is_absolute() or ".." in candidate.parts or not candidate.parts:
            raise ValueError(f"source path must be relative and inside the tree: {value!r}")
        return candidate.as_posix()


class SourceTree(BaseModel):
    """Ordered, deterministic set of ``(path, content)`` pairs.

    Entries are sorted by path on construction so two trees holding the same
    files always compare equal and share a digest, regardless of the order in
    which they were collected.
    """

    model_config = ConfigDict(frozen=True)

    entries: tuple[SourceEntry, ...] = Field(default_factory=tuple)
    _digest: str = PrivateAttr(default="")

    @field_validator("entries")
    @classmethod
    def _sort_entries(cls, value: tuple[SourceEntry, ...]) -> tuple[SourceEntry, ...]:
        """Sort entries by path and reject duplicates.

        Args:
            value: Entries in collection order.

        Returns:
            tuple[SourceEntry, ...]: Entries ordered by path.

        Raises:
            ValueError: If two entries share a path.
        """

        ordered = tuple(sorted(value, key=lambda entry: entry.path))
        for previous, current in zip(ordered, ordered[1:]):
            if previous.path == current.path:
                raise ValueError(f"duplicate source path: {current.path}")
        return ordered

    @model_validator(mode="after")
    def _compute_digest(self) -> SourceTree:
        """Cache the content digest of the tree.

        Returns:
            SourceTree: Tree instance with its digest populated.
        """

        self._digest = tree_digest((entry.path, entry.content) for entry in self.entries)
        return self

    @classmethod
    def from_files(cls, files: dict[str, bytes]) -> SourceTree:
        """Build a tree from a mapping of relative path to content."""

        return cls(entries=tuple(SourceEntry(path=path, content=content) for path, content in files.items()))

    @property
    def digest(self) -> str:
        """Return the sha256 digest of the framed tree content."""

        return self._digest

    def paths(self) -> tuple[str, ...]:
        """Return the relative paths held by the tree in order."""

        return tuple(entry.path for entry in self.entries)

    def get(self, path: str) -> SourceEntry | None:
        """Return the entry stored at ``path`` when present.

        Args:
            path: Relative POSIX path to look up.

        Returns:
            SourceEntry | None: Matching entry, otherwise ``None``.
        """

        for entry in self.entries:
            if entry.path == path:
                return entry
        return None

    def only(self, paths: Iterable[str]) -> SourceTree:
        """Return a tree restricted to ``paths``."""

        wanted = set(paths)
        return SourceTree(entries=tuple(entry for entry in self.entries if entry.path in wanted))

    def without(self, paths: Iterable[str]) -> SourceTree:
        """Return a tree with ``paths`` removed; unknown paths are ignored."""

        dropped = set(paths)
        return SourceTree(entries=tuple(entry for entry in self.entries if entry.path not in dropped))

    def write_to(self, directory: Path) -> None:
        """Materialise every entry beneath ``directory``.

        Args:
            directory: Existing scratch directory receiving the files.
        """

        for entry in self.entries:
            target = directory / entry.path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(entry.content)

    def __len__(self) -> int:
        """Return the number of files in the tree."""

        return len(self.entries)


class PackageIdentity(BaseModel):
    """Name and version tagging the artifacts of a build."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str

    @property
    def label(self) -> str:
        """Return the ``name-version`` label used in logs and reports."""

        return f"{self.name}-{self.version}"


class BuildInputSpec(BaseModel):
    """Filtered source tree paired with the identity of the package."""

    model_config = ConfigDict(frozen=True)

    source: SourceTree
    identity: PackageIdentity


class ToolchainIdentity(BaseModel):
    """Declared compiler toolchain identity used in cache keys."""

    model_config = ConfigDict(frozen=True)

    name: str = "rust"
    channel: str = "stable"
    version: str | None = None
    components: tuple[str, ...] = Field(default_factory=tuple)

    @field_validator("components")
    @classmethod
    def _sort_components(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(sorted(set(value)))

    @property
    def fingerprint(self) -> str:
        """Return a stable string identifying the toolchain."""

        version = self.version or "unknown"
        return f"{self.name}-{self.channel}-{version}+{','.join(self.components)}"


class LockedPackage(BaseModel):
    """Single package pinned by the dependency lock file."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    source: str | None = None
    checksum: str | None = None
    dependencies: tuple[str, ...] = Field(default_factory=tuple)

    @property
    def is_external(self) -> bool:
        """Return whether the package comes from outside the workspace."""

        return self.source is not None

    @property
    def label(self) -> str:
        return f"{self.name}@{self.version}"


class DependencyCacheArtifact(BaseModel):
    """Compiled dependency closure stored under ``key``.

    ``key`` derives from the lock file hash and the toolchain fingerprint only;
    the package identity is a tag and never influences addressing.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    lock_hash: str
    toolchain: ToolchainIdentity
    identity: PackageIdentity
    dependencies: tuple[LockedPackage, ...] = Field(default_factory=tuple)
    outputs: tuple[str, ...] = Field(default_factory=tuple)


class PackageArtifact(BaseModel):
    """Compiled package addressed by source digest and dependency key."""

    model_config = ConfigDict(frozen=True)

    key: str
    identity: PackageIdentity
    source_digest: str
    dependency_key: str
    outputs: tuple[str, ...] = Field(default_factory=tuple)


class CheckKind(str, Enum):
    """Enumerate the verification task variants."""

    BUILD = "build"
    LINT = "lint"
    DOC = "doc"
    FORMAT = "format"


class CheckResult(BaseModel):
    """Outcome of a single registered check."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: CheckKind
    passed: bool
    diagnostics: str = ""
    cached: bool = False
    key: str | None = None

    @property
    def status(self) -> str:
        """Return ``pass`` or ``fail`` for reporting."""

        return "pass" if self.passed else "fail"


class ToolRequirement(BaseModel):
    """Tool a component needs in its environment."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str | None = None
    origin: tuple[str, ...] = Field(default_factory=tuple)


class DevEnvironmentSpec(BaseModel):
    """Read-only union of every tool the builder and checks declare."""

    model_config = ConfigDict(frozen=True)

    toolchain: ToolchainIdentity
    tools: tuple[ToolRequirement, ...] = Field(default_factory=tuple)
    sources: tuple[str, ...] = Field(default_factory=tuple)
    digest: str = ""

    def tool_names(self) -> tuple[str, ...]:
        """Return the names of the tools in the environment."""

        return tuple(tool.name for tool in self.tools)

    def to_manifest(self) -> dict[str, JsonValue]:
        """Return the JSON manifest describing the environment."""

        return self.model_dump(mode="json")

    @staticmethod
    def compute_digest(
        toolchain: ToolchainIdentity,
        tools: Iterable[ToolRequirement],
    ) -> str:
        """Return the reproducibility digest of a toolchain and tool set.

        Args:
            toolchain: Toolchain identity included in the environment.
            tools: Merged tool requirements.

        Returns:
            str: Digest over names and versions; origins are excluded.
        """

        payload: dict[str, object] = {
            "toolchain": toolchain.fingerprint,
            "tools": [[tool.name, tool.version] for tool in tools],
        }
        return canonical_digest(payload)


__all__ = [
    "BuildInputSpec",
    "CheckKind",
    "CheckResult",
    "DependencyCacheArtifact",
    "DevEnvironmentSpec",
    "JsonValue",
    "LockedPackage",
    "PackageArtifact",
    "PackageIdentity",
    "PathKind",
    "SourceEntry",
    "SourceTree",
    "ToolRequirement",
    "ToolchainIdentity",
]
