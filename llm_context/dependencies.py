"""Call-dependency graph and impact analysis over graph records.

Nodes are unit names. An edge ``a -> b`` is recorded when ``a`` calls ``b``
and ``b`` is the name of some known unit; calls to anything else (library
functions, unresolved attributes) are dropped. Units sharing a name across
files collapse into one node.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional

from llm_context.fileio import write_text_atomic
from llm_context.graph_store import GraphRecord
from llm_context.manifest import utc_now

logger = logging.getLogger(__name__)

DEPENDENCIES_VERSION = "1.0.0"
DEFAULT_MAX_DEPTH = 10
DEFAULT_MAX_CALLERS = 2
ENTRY_POINT_MARKERS = ("main", "init", "start")


def node_name(record: GraphRecord) -> str:
    """Graph node for a record; anonymous units keep their unique identifier."""
    if not record.name or record.name == "anonymous":
        return record.id
    return record.name


@dataclass
class DependencyGraph:
    """Forward and reverse call maps. Lists keep first-seen order."""

    dependencies: dict[str, list[str]] = field(default_factory=dict)  # name -> names it calls
    dependents: dict[str, list[str]] = field(default_factory=dict)  # name -> names calling it

    @property
    def names(self) -> list[str]:
        return list(self.dependencies)

    @property
    def edge_count(self) -> int:
        return sum(len(deps) for deps in self.dependencies.values())

    def __contains__(self, name: str) -> bool:
        return name in self.dependencies


def build_dependency_graph(records: Iterable[GraphRecord]) -> DependencyGraph:
    """Build the forward/reverse maps from graph records.

    Args:
        records: Graph records; ``calls`` lists are the edge candidates.

    Returns:
        DependencyGraph with every unit name as a node.
    """
    records = list(records)
    graph = DependencyGraph()

    for record in records:
        name = node_name(record)
        graph.dependencies.setdefault(name, [])
        graph.dependents.setdefault(name, [])

    for record in records:
        name = node_name(record)
        deps = graph.dependencies[name]
        for called in record.calls:
            # Only track dependencies to functions we know about
            if called not in graph.dependencies:
                continue
            if called not in deps:
                deps.append(called)
            callers = graph.dependents[called]
            if name not in callers:
                callers.append(name)

    return graph


def impact_set(name: str, graph: DependencyGraph, max_depth: int = DEFAULT_MAX_DEPTH) -> list[str]:
    """Units transitively calling ``name``, up to ``max_depth`` hops.

    Breadth-first over ``dependents``. The start node is excluded. Unknown
    names have an empty impact set.

    Returns:
        Impacted names in BFS order.
    """
    impacted: list[str] = []
    visited: set[str] = set()
    queue: deque[tuple[str, int]] = deque([(name, 0)])

    while queue:
        current, depth = queue.popleft()
        if current in visited or depth > max_depth:
            continue
        visited.add(current)

        if current != name:
            impacted.append(current)

        for dependent in graph.dependents.get(current, []):
            if dependent not in visited:
                queue.append((dependent, depth + 1))

    return impacted


def find_entry_points(graph: DependencyGraph, max_callers: int = DEFAULT_MAX_CALLERS) -> list[dict[str, Any]]:
    """Units with few callers, or whose name suggests an entry point.

    Returns:
        ``[{"name", "callers"}]`` sorted by caller count (stable).
    """
    entry_points = []
    for name, callers in graph.dependents.items():
        if len(callers) <= max_callers or any(marker in name for marker in ENTRY_POINT_MARKERS):
            entry_points.append({"name": name, "callers": len(callers)})
    return sorted(entry_points, key=lambda ep: ep["callers"])


def find_leaves(graph: DependencyGraph) -> list[str]:
    """Units that call no other known unit."""
    return [name for name, deps in graph.dependencies.items() if not deps]


def detect_cycles(graph: DependencyGraph) -> list[list[str]]:
    """Find call cycles with a depth-first search.

    Each back edge to a node on the current path yields the path from that
    node's first occurrence, closed by repeating it (``[A, B, C, A]``). The
    search continues after a cycle is found, so one strongly connected
    component may report several cycles.
    """
    cycles: list[list[str]] = []
    visited: set[str] = set()

    for root in graph.dependencies:
        if root in visited:
            continue

        path: list[str] = [root]
        on_path: set[str] = {root}
        visited.add(root)
        stack = [iter(graph.dependencies.get(root, []))]

        while stack:
            dep = next(stack[-1], None)
            if dep is None:
                stack.pop()
                on_path.discard(path.pop())
                continue
            if dep not in visited:
                visited.add(dep)
                on_path.add(dep)
                path.append(dep)
                stack.append(iter(graph.dependencies.get(dep, [])))
            elif dep in on_path:
                cycle = path[path.index(dep):]
                cycle.append(dep)
                cycles.append(cycle)

    return cycles


def dependency_depth(name: str, graph: DependencyGraph) -> int:
    """Longest outgoing call chain from ``name``, cycle-safe.

    Nodes are visited at most once, so the result depends on traversal
    order when paths share nodes.
    """
    visited: set[str] = set()

    def dfs(node: str, depth: int) -> int:
        if node in visited:
            return 0
        visited.add(node)

        deps = graph.dependencies.get(node, [])
        if not deps:
            return depth

        deepest = depth
        for dep in deps:
            deepest = max(deepest, dfs(dep, depth + 1))
        return deepest

    return dfs(name, 0)


def analyze_impact(
    names: Iterable[str],
    graph: DependencyGraph,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> dict[str, Any]:
    """Impact report for a set of changed units.

    Returns:
        Dict with ``changedFunctions``, ``perFunctionImpact`` (direct callers,
        total impacted, impacted list per name) and ``totalImpacted`` (union).
    """
    names = list(names)
    per_function: dict[str, dict[str, Any]] = {}
    total: list[str] = []

    for name in names:
        impacted = impact_set(name, graph, max_depth)
        per_function[name] = {
            "directCallers": list(graph.dependents.get(name, [])),
            "totalImpacted": len(impacted),
            "impactedFunctions": impacted,
        }
        for item in impacted:
            if item not in total:
                total.append(item)

    return {
        "changedFunctions": names,
        "perFunctionImpact": per_function,
        "totalImpacted": total,
    }


def build_dependency_index(
    graph: DependencyGraph,
    total_functions: int,
    max_callers: int = DEFAULT_MAX_CALLERS,
) -> dict[str, Any]:
    """Build the dependencies.json structure.

    Entry points carry the depth of their longest outgoing call chain.
    """
    entry_points = [
        {**entry, "depth": dependency_depth(entry["name"], graph)}
        for entry in find_entry_points(graph, max_callers)
    ]
    leaves = find_leaves(graph)
    cycles = detect_cycles(graph)

    return {
        "version": DEPENDENCIES_VERSION,
        "generated": utc_now(),
        "stats": {
            "totalFunctions": total_functions,
            "totalDependencies": graph.edge_count,
            "entryPoints": len(entry_points),
            "leafFunctions": len(leaves),
            "cycles": len(cycles),
        },
        "entryPoints": entry_points,
        "leaves": leaves,
        "cycles": cycles,
        "dependencies": {name: list(deps) for name, deps in graph.dependencies.items()},
        "dependents": {name: list(callers) for name, callers in graph.dependents.items()},
    }


def dump_dependency_index(index: dict[str, Any]) -> str:
    return json.dumps(index, indent=2) + "\n"


def write_dependency_index(index: dict[str, Any], path: Path | str) -> None:
    """Write dependencies.json atomically."""
    write_text_atomic(path, dump_dependency_index(index))


def load_dependency_index(path: Path | str) -> Optional[dict[str, Any]]:
    """Load dependencies.json, or None if missing or malformed."""
    path = Path(path)
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Ignoring malformed dependency index {path}: {e}")
        return None
    return data if isinstance(data, dict) else None
