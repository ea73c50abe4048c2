# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Compose one reproducible development environment from declared inputs."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Final

from .errors import EnvironmentConflictError
from .models import DevEnvironmentSpec, ToolchainIdentity, ToolRequirement

TOOLCHAIN_ORIGIN: Final[str] = "toolchain"
DEVSHELL_ORIGIN: Final[str] = "devshell"


class DevEnvironmentComposer:
    """Union the tool requirements of the builder and every check.

    Composition is pure aggregation: no build or check logic runs, and the
    input sets are only read.
    """

    def __init__(self, toolchain: ToolchainIdentity, extra_tools: Sequence[ToolRequirement] = ()) -> None:
        """Create a composer.

        Args:
            toolchain: Toolchain whose components join the environment.
            extra_tools: Developer-only tools added on top of the inputs.
        """

        self._toolchain = toolchain
        self._extra_tools = tuple(extra_tools)

    def compose(self, input_sets: Mapping[str, Iterable[ToolRequirement]]) -> DevEnvironmentSpec:
        """Return the environment holding every declared tool.

        Args:
            input_sets: Tool requirements keyed by declaring component.

        Returns:
            DevEnvironmentSpec: Tools merged by name and sorted.

        Raises:
            EnvironmentConflictError: If two declarations pin one tool to
                different versions.
        """

        merged: dict[str, ToolRequirement] = {}
        toolchain_tools = (
            ToolRequirement(name=component, version=self._toolchain.version) for component in self._toolchain.components
        )
        sources = (
            *((name, tuple(tools)) for name, tools in sorted(input_sets.items())),
            (TOOLCHAIN_ORIGIN, tuple(toolchain_tools)),
            (DEVSHELL_ORIGIN, self._extra_tools),
        )
        for origin, tools in sources:
            for tool in tools:
                merged[tool.name] = _merge(merged.get(tool.name), tool, origin)

        ordered = tuple(merged[name] for name in sorted(merged))
        return DevEnvironmentSpec(
            toolchain=self._toolchain,
            tools=ordered,
            sources=tuple(sorted(input_sets)),
            digest=DevEnvironmentSpec.compute_digest(self._toolchain, ordered),
        )


def _merge(current: ToolRequirement | None, incoming: ToolRequirement, origin: str) -> ToolRequirement:
    origins = tuple(sorted({*incoming.origin, origin, *(current.origin if current else ())}))
    if current is None:
        return incoming.model_copy(update={"origin": origins})
    if current.version and incoming.version and current.version != incoming.version:
        raise EnvironmentConflictError(
            f"Tool '{incoming.name}' is pinned to conflicting versions.",
            hint="Align the tool versions declared by the builder and checks.",
            context={
                "tool": incoming.name,
                "versions": f"{current.version} ({', '.join(current.origin)}) vs {incoming.version} ({origin})",
            },
        )
    return current.model_copy(update={"version": current.version or incoming.version, "origin": origins})


__all__ = ["DevEnvironmentComposer"]
