# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Private scratch directories where builds and checks run."""

from __future__ import annotations

import tempfile
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path

from .models import SourceTree
from .toolchain import TARGET_DIR_NAME


@contextmanager
def scratch_workdir(
    tree: SourceTree,
    *,
    prefix: str,
    target_files: Mapping[str, bytes] | None = None,
) -> Iterator[Path]:
    """Yield a temporary directory holding ``tree`` and restored outputs.

    The directory and everything built inside it are removed on exit, whether
    the work completed, failed or was cancelled; only explicitly published
    outputs survive.

    Args:
        tree: Source tree to materialise.
        prefix: Temporary directory name prefix, for debugging.
        target_files: Previously built files restored under ``target``.

    Yields:
        Path: The populated scratch directory.
    """

    with tempfile.TemporaryDirectory(prefix=f"cratepipe-{prefix}-") as raw:
        workdir = Path(raw)
        tree.write_to(workdir)
        if target_files:
            write_files(workdir / TARGET_DIR_NAME, target_files)
        yield workdir


def write_files(root: Path, files: Mapping[str, bytes]) -> None:
    """Write every ``files`` entry beneath ``root``."""

    for relative, payload in files.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(payload)


def snapshot_files(root: Path) -> dict[str, bytes]:
    """Return every regular file beneath ``root`` keyed by POSIX path.

    Args:
        root: Directory to capture; a missing directory yields no files.

    Returns:
        dict[str, bytes]: File content ordered by relative path.
    """

    if not root.is_dir():
        return {}
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file() and not path.is_symlink()
    }


__all__ = ["scratch_workdir", "snapshot_files", "write_files"]
