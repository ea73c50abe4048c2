# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Configuration models and TOML loading for the pipeline."""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError
from .lockfile import MANIFEST_FILE
from .models import PackageIdentity, SourceTree, ToolRequirement

CONFIG_FILENAME: Final[str] = "cratepipe.toml"
METADATA_SECTION: Final[tuple[str, ...]] = ("package", "metadata", "cratepipe")
DEFAULT_CACHE_DIR: Final[str] = ".cratepipe-cache"
MAX_DEFAULT_JOBS: Final[int] = 4


def _default_jobs() -> int:
    return max(1, min(MAX_DEFAULT_JOBS, os.cpu_count() or 1))


class PackageSection(BaseModel):
    """Optional overrides for the package identity."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    version: str | None = None


class SourcesSection(BaseModel):
    """Source filter settings."""

    model_config = ConfigDict(extra="forbid")

    include_patterns: tuple[str, ...] = ("*.html",)


class ToolchainSection(BaseModel):
    """Declared toolchain identity."""

    model_config = ConfigDict(extra="forbid")

    channel: str = "stable"
    components: tuple[str, ...] = ("rust-analyzer", "rust-src")


class ChecksSection(BaseModel):
    """Check registry settings."""

    model_config = ConfigDict(extra="forbid")

    enabled: tuple[str, ...] | None = None


class EnvironmentSection(BaseModel):
    """Developer environment extras."""

    model_config = ConfigDict(extra="forbid")

    extra_tools: tuple[str, ...] = ("cargo-edit", "cargo-msrv", "cargo-outdated", "gh", "nixpkgs-fmt")

    def requirements(self) -> tuple[ToolRequirement, ...]:
        """Return the extra tools as requirements; ``name@version`` pins."""

        requirements: list[ToolRequirement] = []
        for raw in self.extra_tools:
            name, _, version = raw.partition("@")
            requirements.append(ToolRequirement(name=name, version=version or None))
        return tuple(requirements)


class ExecutionSection(BaseModel):
    """Execution and cache settings."""

    model_config = ConfigDict(extra="forbid")

    jobs: int = Field(default_factory=_default_jobs)
    cache_dir: Path = Path(DEFAULT_CACHE_DIR)

    @field_validator("jobs")
    @classmethod
    def _positive_jobs(cls, value: int) -> int:
        if value < 1:
            raise ValueError("jobs must be at least 1")
        return value


class PipelineConfig(BaseModel):
    """Top-level configuration assembled from defaults and TOML sources."""

    model_config = ConfigDict(extra="forbid")

    package: PackageSection = Field(default_factory=PackageSection)
    sources: SourcesSection = Field(default_factory=SourcesSection)
    toolchain: ToolchainSection = Field(default_factory=ToolchainSection)
    checks: ChecksSection = Field(default_factory=ChecksSection)
    environment: EnvironmentSection = Field(default_factory=EnvironmentSection)
    execution: ExecutionSection = Field(default_factory=ExecutionSection)

    def resolve_cache_dir(self, root: Path) -> Path:
        """Return the cache directory, relative entries anchored at ``root``."""

        cache_dir = self.execution.cache_dir
        return cache_dir if cache_dir.is_absolute() else root / cache_dir

    def resolve_identity(self, tree: SourceTree) -> PackageIdentity:
        """Return the package identity from overrides or the root manifest.

        Args:
            tree: Filtered tree holding the root ``Cargo.toml``.

        Returns:
            PackageIdentity: Name and version tagging the build.

        Raises:
            ConfigError: If neither source provides a name and version.
        """

        manifest_package: Mapping[str, Any] = {}
        entry = tree.get(MANIFEST_FILE)
        if entry is not None:
            document = _parse_toml(entry.content, MANIFEST_FILE)
            package = document.get("package")
            if isinstance(package, Mapping):
                manifest_package = package
        name = self.package.name or manifest_package.get("name")
        version = self.package.version or manifest_package.get("version")
        if not isinstance(name, str) or not isinstance(version, str):
            raise ConfigError(
                "Package name and version could not be determined.",
                hint=f"Declare them in {MANIFEST_FILE} [package] or the [package] section of {CONFIG_FILENAME}.",
                context={"name": str(name), "version": str(version)},
            )
        return PackageIdentity(name=name, version=version)


def load_config(root: Path) -> PipelineConfig:
    """Load configuration for the repository at ``root``.

    ``[package.metadata.cratepipe]`` in ``Cargo.toml`` is applied first and
    ``cratepipe.toml`` second; later sources override earlier ones key by key.

    Args:
        root: Repository root.

    Returns:
        PipelineConfig: Validated configuration.

    Raises:
        ConfigError: If a document is not valid TOML or fails validation.
    """

    merged: dict[str, Any] = {}
    manifest = root / MANIFEST_FILE
    if manifest.is_file():
        section: Any = _parse_toml(manifest.read_bytes(), str(manifest))
        for key in METADATA_SECTION:
            section = section.get(key, {}) if isinstance(section, Mapping) else {}
        if not isinstance(section, Mapping):
            raise ConfigError("Pipeline metadata must be a table.", context={"path": str(manifest)})
        merged = _deep_merge(merged, section)
    config_file = root / CONFIG_FILENAME
    if config_file.is_file():
        merged = _deep_merge(merged, _parse_toml(config_file.read_bytes(), str(config_file)))
    try:
        return PipelineConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError("Invalid pipeline configuration.", hint=str(exc), context={"root": str(root)}) from exc


def _parse_toml(content: bytes, source: str) -> dict[str, Any]:
    try:
        return tomllib.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError("Configuration is not valid TOML.", hint=str(exc), context={"path": source}) from exc


def _deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            result[key] = _deep_merge(current, value)
        else:
            result[key] = value
    return result


__all__ = [
    "CONFIG_FILENAME",
    "DEFAULT_CACHE_DIR",
    "PipelineConfig",
    "load_config",
]
