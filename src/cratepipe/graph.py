# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Explicit component graph and a concurrent executor for it."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from graphlib import CycleError, TopologicalSorter

from .errors import GraphError, PipelineError

LOGGER = logging.getLogger(__name__)

NodeAction = Callable[[Mapping[str, object]], object]


@dataclass(frozen=True, slots=True)
class Node:
    """Component invocation with the names of the nodes it consumes.

    ``action`` receives the results of its upstream nodes keyed by name.
    """

    name: str
    action: NodeAction
    upstream: tuple[str, ...] = ()


class PipelineGraph:
    """Directed acyclic graph of components keyed by name."""

    def __init__(self, nodes: Iterable[Node]) -> None:
        """Create and validate a graph.

        Args:
            nodes: Nodes in declaration order; the order breaks ties when
                sorting topologically.

        Raises:
            GraphError: On duplicate names, unknown upstream nodes or cycles.
        """

        self._nodes: dict[str, Node] = {}
        for node in nodes:
            if node.name in self._nodes:
                raise GraphError(f"Duplicate graph node '{node.name}'.", context={"node": node.name})
            self._nodes[node.name] = node
        for node in self._nodes.values():
            missing = [name for name in node.upstream if name not in self._nodes]
            if missing:
                raise GraphError(
                    f"Node '{node.name}' depends on unknown nodes.",
                    context={"node": node.name, "missing": ", ".join(missing)},
                )
        self._index = {name: position for position, name in enumerate(self._nodes)}
        self._order = self._sort()

    @property
    def nodes(self) -> Mapping[str, Node]:
        """Return the nodes keyed by name."""

        return dict(self._nodes)

    def topological_order(self) -> tuple[str, ...]:
        """Return node names so every node follows its upstream nodes."""

        return self._order

    def downstream(self, name: str) -> set[str]:
        """Return every node that transitively consumes ``name``."""

        found: set[str] = set()
        frontier = [name]
        while frontier:
            current = frontier.pop()
            for node in self._nodes.values():
                if current in node.upstream and node.name not in found:
                    found.add(node.name)
                    frontier.append(node.name)
        return found

    def sorter(self) -> TopologicalSorter[str]:
        """Return a prepared sorter over the graph for incremental scheduling.

        Raises:
            GraphError: If the graph contains a cycle.
        """

        sorter: TopologicalSorter[str] = TopologicalSorter(
            {name: node.upstream for name, node in self._nodes.items()}
        )
        try:
            sorter.prepare()
        except CycleError as exc:
            cycle = exc.args[1] if len(exc.args) > 1 else ()
            raise GraphError("Component graph contains a cycle.", context={"cycle": " -> ".join(cycle)}) from exc
        return sorter

    def ready_order(self, names: Iterable[str]) -> list[str]:
        """Return ``names`` in declaration order."""

        return sorted(names, key=self._index.__getitem__)

    def _sort(self) -> tuple[str, ...]:
        sorter = self.sorter()
        order: list[str] = []
        while sorter.is_active():
            ready = self.ready_order(sorter.get_ready())
            order.extend(ready)
            sorter.done(*ready)
        return tuple(order)


@dataclass(slots=True)
class GraphRun:
    """Results of executing a graph."""

    results: dict[str, object] = field(default_factory=dict)
    errors: dict[str, PipelineError] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Return ``True`` when every node produced a result."""

        return not self.errors and not self.skipped


class GraphExecutor:
    """Run ready nodes concurrently on a thread pool.

    A node failing with a :class:`PipelineError` marks every downstream node
    as skipped; independent nodes keep running. Any other exception is a bug
    and propagates once in-flight nodes finish.
    """

    def __init__(self, jobs: int = 1) -> None:
        self._jobs = max(1, jobs)

    def execute(self, graph: PipelineGraph) -> GraphRun:
        """Execute ``graph`` and return the collected outcomes.

        Args:
            graph: Validated component graph.

        Returns:
            GraphRun: Per-node results, fatal errors and skipped node names.
        """

        run = GraphRun()
        nodes = graph.nodes
        sorter = graph.sorter()
        running: dict[Future[object], str] = {}
        with ThreadPoolExecutor(max_workers=self._jobs) as executor:
            while sorter.is_active():
                for name in graph.ready_order(sorter.get_ready()):
                    upstream = nodes[name].upstream
                    if any(dep in run.errors or dep in run.skipped for dep in upstream):
                        run.skipped.append(name)
                        sorter.done(name)
                        LOGGER.debug("skipping %s: upstream failed", name)
                        continue
                    inputs = {dep: run.results[dep] for dep in upstream}
                    running[executor.submit(nodes[name].action, inputs)] = name
                if not running:
                    continue
                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    name = running.pop(future)
                    try:
                        run.results[name] = future.result()
                    except PipelineError as exc:
                        LOGGER.debug("node %s failed: %s", name, exc.message)
                        run.errors[name] = exc
                    sorter.done(name)
        return run


__all__ = ["GraphExecutor", "GraphRun", "Node", "PipelineGraph"]
