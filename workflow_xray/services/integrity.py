"""
Workflow X-Ray
Referential integrity for decomposed step graphs.

Three deterministic repairs, applied in order:
    1. dedupe_steps        - first occurrence of each step id wins
    2. prune_dependencies  - drop self references and ids with no surviving step
    3. break_cycles        - remove every DFS back-edge until the graph is a DAG

None of these ever raise; every repair is logged.

Usage:
    from workflow_xray.services.integrity import enforce_referential_integrity
    report = enforce_referential_integrity(steps, gaps)
    report.steps   # acyclic, fully resolved
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, replace

from workflow_xray.models.decomposition import Gap, Step

logger = logging.getLogger(__name__)

_WHITE, _GRAY, _BLACK = 0, 1, 2


# ═════════════════════════════════════════════════════════════════════════════
# Dependency graph
# ═════════════════════════════════════════════════════════════════════════════

class DependencyGraph:
    """
    Adjacency list over step ids: ``edges[step_id]`` lists the ids that step
    depends on, in the step's original order. Node order is step order.
    """

    def __init__(self, nodes: list[str], edges: dict[str, list[str]]):
        self.nodes = list(nodes)
        self.edges = {node: list(edges.get(node, [])) for node in self.nodes}

    @classmethod
    def from_steps(cls, steps) -> DependencyGraph:
        return cls([s.id for s in steps], {s.id: list(s.dependencies) for s in steps})

    def copy(self) -> DependencyGraph:
        return DependencyGraph(self.nodes, self.edges)

    def edge_count(self) -> int:
        return sum(len(deps) for deps in self.edges.values())

    def remove_edge(self, node: str, dependency: str):
        """Remove one occurrence of ``node → dependency``."""
        self.edges[node].remove(dependency)

    def find_back_edges(self) -> list[tuple[str, str]]:
        """
        One full iterative DFS pass (white/gray/black colouring).

        Returns every edge that points at a node still on the DFS stack, in
        discovery order. Edges to unknown nodes are ignored.
        """
        state = {node: _WHITE for node in self.nodes}
        back_edges = []

        for root in self.nodes:
            if state[root] != _WHITE:
                continue
            state[root] = _GRAY
            stack = [(root, iter(self.edges[root]))]
            while stack:
                node, pending = stack[-1]
                descended = False
                for dep in pending:
                    dep_state = state.get(dep)
                    if dep_state == _GRAY:
                        back_edges.append((node, dep))
                    elif dep_state == _WHITE:
                        state[dep] = _GRAY
                        stack.append((dep, iter(self.edges[dep])))
                        descended = True
                        break
                if not descended:
                    state[node] = _BLACK
                    stack.pop()

        return back_edges

    def topological_order(self) -> list[str] | None:
        """Kahn ordering (dependencies first), or None if a cycle remains."""
        known = set(self.nodes)
        remaining = {node: sum(1 for d in self.edges[node] if d in known) for node in self.nodes}
        dependents: dict[str, list[str]] = {node: [] for node in self.nodes}
        for node in self.nodes:
            for dep in self.edges[node]:
                if dep in known:
                    dependents[dep].append(node)

        ready = deque(node for node in self.nodes if remaining[node] == 0)
        order = []
        while ready:
            node = ready.popleft()
            order.append(node)
            for dependent in dependents[node]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    ready.append(dependent)

        return order if len(order) == len(self.nodes) else None

    def is_acyclic(self) -> bool:
        return self.topological_order() is not None


def break_cycles(graph: DependencyGraph) -> tuple[DependencyGraph, list[tuple[str, str]]]:
    """
    Return an acyclic copy of ``graph`` and the edges removed to get there.

    Each back-edge found by a DFS pass is the edge that closes a cycle; it is
    dropped from its owning step and the pass is repeated until clean.
    """
    result = graph.copy()
    removed: list[tuple[str, str]] = []

    while True:
        back_edges = result.find_back_edges()
        if not back_edges:
            break
        for node, dep in back_edges:
            result.remove_edge(node, dep)
            removed.append((node, dep))
            logger.info("Broke dependency cycle: removed edge %s -> %s", node, dep,
                        extra={"step_id": node})

    return result, removed


# ═════════════════════════════════════════════════════════════════════════════
# Step-level repairs
# ═════════════════════════════════════════════════════════════════════════════

def dedupe_steps(steps) -> tuple[list[Step], list[str]]:
    """Keep the first step for each id. Returns (steps, dropped duplicate ids)."""
    seen = set()
    kept, dropped = [], []
    for step in steps:
        if step.id in seen:
            dropped.append(step.id)
            logger.info("Dropped duplicate step id '%s' (%s)", step.id, step.name,
                        extra={"step_id": step.id})
            continue
        seen.add(step.id)
        kept.append(step)
    return kept, dropped


def prune_dependencies(steps) -> tuple[list[Step], list[tuple[str, str]]]:
    """Drop self references and dangling dependency ids. Returns (steps, pruned edges)."""
    known = {s.id for s in steps}
    result, pruned = [], []
    for step in steps:
        deps = []
        for dep in step.dependencies:
            if dep == step.id or dep not in known:
                pruned.append((step.id, dep))
                logger.info("Pruned %s dependency %s -> %s",
                            "self" if dep == step.id else "dangling", step.id, dep,
                            extra={"step_id": step.id})
                continue
            deps.append(dep)
        if len(deps) != len(step.dependencies):
            step = replace(step, dependencies=tuple(deps))
        result.append(step)
    return result, pruned


def _apply_graph(steps, graph: DependencyGraph) -> list[Step]:
    result = []
    for step in steps:
        deps = tuple(graph.edges[step.id])
        result.append(step if deps == step.dependencies else replace(step, dependencies=deps))
    return result


def _prune_gap_references(gaps, known_ids: set[str]) -> list[Gap]:
    result = []
    for gap in gaps:
        step_ids = tuple(sid for sid in gap.step_ids if sid in known_ids)
        if step_ids != gap.step_ids:
            logger.info("Pruned %d unknown step reference(s) from %s gap",
                        len(gap.step_ids) - len(step_ids), gap.type.value)
            gap = replace(gap, step_ids=step_ids)
        result.append(gap)
    return result


@dataclass(frozen=True)
class IntegrityReport:
    """Repaired steps/gaps plus a record of every repair made."""
    steps: tuple[Step, ...]
    gaps: tuple[Gap, ...]
    duplicate_ids: tuple[str, ...] = ()
    pruned_edges: tuple[tuple[str, str], ...] = ()
    broken_edges: tuple[tuple[str, str], ...] = ()

    @property
    def repaired(self) -> bool:
        return bool(self.duplicate_ids or self.pruned_edges or self.broken_edges)


def enforce_referential_integrity(steps, gaps=()) -> IntegrityReport:
    """Run dedupe → prune → cycle breaking over ``steps`` and clean gap references."""
    deduped, duplicate_ids = dedupe_steps(steps)
    pruned, pruned_edges = prune_dependencies(deduped)
    acyclic, broken_edges = break_cycles(DependencyGraph.from_steps(pruned))
    repaired_steps = _apply_graph(pruned, acyclic)
    repaired_gaps = _prune_gap_references(gaps, {s.id for s in repaired_steps})

    return IntegrityReport(
        steps=tuple(repaired_steps),
        gaps=tuple(repaired_gaps),
        duplicate_ids=tuple(duplicate_ids),
        pruned_edges=tuple(pruned_edges),
        broken_edges=tuple(broken_edges),
    )
