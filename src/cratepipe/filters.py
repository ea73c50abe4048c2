# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Source filtering: select the repository files that form a build input."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path, PurePosixPath
from typing import Final, Protocol, runtime_checkable

from .errors import FilterError
from .lockfile import CARGO_CONFIG_NAMES, LOCK_FILE
from .models import PathKind, SourceEntry, SourceTree

LOGGER = logging.getLogger(__name__)

VCS_DIRS: Final[frozenset[str]] = frozenset({".git", ".hg", ".svn", ".jj", ".pijul"})
BUILD_OUTPUT_DIRS: Final[frozenset[str]] = frozenset({"target"})
RESULT_LINK_PREFIX: Final[str] = "result"
SCRATCH_PATTERNS: Final[tuple[str, ...]] = ("*~", ".#*", "#*#", "*.swp", "*.swo", "*.orig", "*.rej")
RUST_SUFFIXES: Final[tuple[str, ...]] = (".rs", ".toml")


@runtime_checkable
class FilterRule(Protocol):
    """Decide whether a repository entry belongs to the build input."""

    def accept(self, path: str, kind: PathKind) -> bool:
        """Return whether ``path`` of type ``kind`` is part of the input.

        Args:
            path: Repository-relative POSIX path.
            kind: Filesystem entry kind.

        Returns:
            bool: ``True`` when the entry should be kept.
        """
        ...


@dataclass(frozen=True, slots=True)
class PatternRule:
    """Accept regular files whose name matches any configured glob."""

    patterns: tuple[str, ...]

    def accept(self, path: str, kind: PathKind) -> bool:
        if kind is PathKind.DIRECTORY:
            return False
        name = PurePosixPath(path).name
        return any(fnmatchcase(name, pattern) for pattern in self.patterns)


@dataclass(frozen=True, slots=True)
class ManifestAwareRule:
    """Accept exactly the files Cargo reads when compiling a package.

    Directories are accepted so traversal continues, except build outputs,
    VCS metadata and ``result`` links left behind by previous builds.
    """

    def accept(self, path: str, kind: PathKind) -> bool:
        candidate = PurePosixPath(path)
        name = candidate.name
        if name in VCS_DIRS or any(fnmatchcase(name, pattern) for pattern in SCRATCH_PATTERNS):
            return False
        if name.startswith(RESULT_LINK_PREFIX) and kind is PathKind.SYMLINK:
            return False
        if kind is PathKind.DIRECTORY:
            return name not in BUILD_OUTPUT_DIRS
        if name == LOCK_FILE or name.endswith(RUST_SUFFIXES):
            return True
        return candidate.parent.name == ".cargo" and name in CARGO_CONFIG_NAMES


@dataclass(frozen=True, slots=True)
class AnyOf:
    """Compose rules by logical OR."""

    rules: tuple[FilterRule, ...]

    def accept(self, path: str, kind: PathKind) -> bool:
        return any(rule.accept(path, kind) for rule in self.rules)


@dataclass(frozen=True, slots=True)
class SourceFilter:
    """Walk a repository and collect every entry the rule accepts.

    ``excludes`` names repository-relative directories that are pruned before
    any rule is consulted, such as the pipeline's own cache directory.
    """

    rule: FilterRule
    excludes: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def default(cls, include_patterns: Sequence[str] = ("*.html",), *, excludes: Iterable[str] = ()) -> SourceFilter:
        """Return the filter combining template patterns with Cargo's rule.

        Args:
            include_patterns: Extra file globs kept alongside Rust sources.
            excludes: Repository-relative directories always pruned.

        Returns:
            SourceFilter: Filter accepting pattern matches or Cargo inputs.
        """

        rule = AnyOf((PatternRule(tuple(include_patterns)), ManifestAwareRule()))
        return cls(rule=rule, excludes=frozenset(PurePosixPath(path).as_posix() for path in excludes))

    def filter(self, repository_root: Path) -> SourceTree:
        """Return the filtered snapshot of ``repository_root``.

        Args:
            repository_root: Directory holding the repository.

        Returns:
            SourceTree: Deterministic snapshot of the accepted files.

        Raises:
            FilterError: If the root, or a directory beneath it, cannot be read.
        """

        root = Path(repository_root)
        if not root.is_dir():
            raise FilterError(
                "Repository root is not a readable directory.",
                context={"path": str(root)},
            )
        entries = [
            SourceEntry(path=relative, content=self._read(root / relative)) for relative in self._walk(root)
        ]
        tree = SourceTree(entries=tuple(entries))
        LOGGER.debug("filtered %s into %d files (digest %s)", root, len(tree), tree.digest)
        return tree

    def _walk(self, root: Path) -> Iterator[str]:
        """Yield accepted file paths beneath ``root`` in sorted order."""

        pending: list[PurePosixPath] = [PurePosixPath()]
        while pending:
            relative = pending.pop()
            directory = root / relative
            try:
                children = sorted(os.scandir(directory), key=lambda item: item.name)
            except OSError as exc:
                raise FilterError(
                    "Unable to read repository directory.",
                    hint=exc.strerror,
                    context={"path": str(directory)},
                ) from exc
            subdirectories: list[PurePosixPath] = []
            for child in children:
                child_path = relative / child.name
                posix = child_path.as_posix()
                kind = _entry_kind(child)
                if kind is PathKind.DIRECTORY:
                    if posix not in self.excludes and self.rule.accept(posix, kind):
                        subdirectories.append(child_path)
                elif self.rule.accept(posix, kind) and child.is_file():
                    yield posix
            pending.extend(reversed(subdirectories))

    @staticmethod
    def _read(path: Path) -> bytes:
        try:
            return path.read_bytes()
        except OSError as exc:
            raise FilterError(
                "Unable to read repository file.",
                hint=exc.strerror,
                context={"path": str(path)},
            ) from exc


def _entry_kind(entry: os.DirEntry[str]) -> PathKind:
    if entry.is_symlink():
        return PathKind.SYMLINK
    if entry.is_dir(follow_symlinks=False):
        return PathKind.DIRECTORY
    return PathKind.REGULAR


__all__ = [
    "AnyOf",
    "FilterRule",
    "ManifestAwareRule",
    "PatternRule",
    "SourceFilter",
]
