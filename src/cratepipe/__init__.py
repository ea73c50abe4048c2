# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Core package metadata and convenience exports."""

from __future__ import annotations

from importlib import metadata

from .config import PipelineConfig, load_config
from .errors import (
    CacheIntegrityError,
    CheckFailure,
    CompilationError,
    ConfigError,
    DependencyResolutionError,
    EnvironmentConflictError,
    FilterError,
    GraphError,
    IncompleteChecksError,
    PipelineError,
    ToolchainError,
)
from .pipeline import Pipeline, PipelineReport
from .reporting import create_checks_table, render_report

__all__ = [
    "CacheIntegrityError",
    "CheckFailure",
    "CompilationError",
    "ConfigError",
    "DependencyResolutionError",
    "EnvironmentConflictError",
    "FilterError",
    "GraphError",
    "IncompleteChecksError",
    "Pipeline",
    "PipelineConfig",
    "PipelineError",
    "PipelineReport",
    "ToolchainError",
    "__version__",
    "create_checks_table",
    "load_config",
    "render_report",
]

try:
    __version__ = metadata.version("cratepipe")
except metadata.PackageNotFoundError:  # pragma: no cover - local development fallback
    __version__ = "0.0.0"
