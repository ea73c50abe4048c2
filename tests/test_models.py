# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Tests for the source tree model."""

from __future__ import annotations

import pytest

from cratepipe.models import SourceTree


def make_tree() -> SourceTree:
    return SourceTree.from_files(
        {
            "src/main.rs": b"fn main() {}\n",
            "Cargo.toml": b"[package]\n",
            "templates/index.html": b"<h1></h1>\n",
        }
    )


def test_without_drops_paths_and_ignores_unknown_ones() -> None:
    tree = make_tree()

    trimmed = tree.without(["templates/index.html", "missing.rs"])

    assert trimmed.paths() == ("Cargo.toml", "src/main.rs")
    assert trimmed.digest == tree.only(["Cargo.toml", "src/main.rs"]).digest
    assert trimmed.digest != tree.digest
    assert tree.without([]).digest == tree.digest


def test_only_keeps_order_and_content() -> None:
    tree = make_tree()

    kept = tree.only(["src/main.rs", "Cargo.toml"])

    assert kept.paths() == ("Cargo.toml", "src/main.rs")
    assert kept.get("src/main.rs") == tree.get("src/main.rs")
    assert kept.get("templates/index.html") is None


def test_duplicate_paths_are_rejected() -> None:
    tree = make_tree()

    with pytest.raises(ValueError, match="duplicate source path"):
        SourceTree(entries=tree.entries + tree.only(["Cargo.toml"]).entries)
