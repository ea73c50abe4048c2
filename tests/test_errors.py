# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Tests for the pipeline error taxonomy."""

from cratepipe.errors import (
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
from cratepipe.models import CheckKind, CheckResult


def test_every_error_derives_from_pipeline_error() -> None:
    for error_type in (
        CacheIntegrityError,
        CompilationError,
        ConfigError,
        DependencyResolutionError,
        EnvironmentConflictError,
        FilterError,
        GraphError,
        ToolchainError,
    ):
        assert issubclass(error_type, PipelineError)
    assert isinstance(CheckFailure("fmt", "diff"), PipelineError)


def test_str_renders_hint_and_context() -> None:
    error = DependencyResolutionError(
        "Dependency closure failed to resolve or compile.",
        hint="Check the registry.",
        context={"lock_hash": "abc", "empty": ""},
    )

    assert str(error) == "Dependency closure failed to resolve or compile.\nHint: Check the registry.\n  lock_hash: abc"


def test_to_dict_is_json_ready() -> None:
    error = CompilationError("Package app-0.1.0 failed to compile.", diagnostics="E0425", context={"package": "app"})

    assert error.to_dict() == {
        "error": "CompilationError",
        "message": "Package app-0.1.0 failed to compile.",
        "context": {"package": "app"},
    }
    assert error.diagnostics == "E0425"


def test_check_failure_keeps_diagnostics() -> None:
    failure = CheckFailure("clippy", "warning: unused variable")

    assert failure.check == "clippy"
    assert failure.diagnostics == "warning: unused variable"
    assert failure.context == {"check": "clippy"}


def test_incomplete_checks_keep_completed_results() -> None:
    fmt = CheckResult(name="fmt", kind=CheckKind.FORMAT, passed=True)
    blocked = DependencyResolutionError("Dependency closure failed to resolve or compile.")

    error = IncompleteChecksError([fmt], {"clippy": blocked, "doc": blocked})

    assert error.results == (fmt,)
    assert error.errors == {"clippy": blocked, "doc": blocked}
    assert error.context == {"blocked": "clippy, doc", "completed": "fmt"}
    assert isinstance(error, PipelineError)
