"""File-level dependency graph with layered coordinates for visualisation.

Only relative import specifiers are resolved; package imports are external
and never graphed.  Layout is a Kahn-style layering in which a file sits one
level to the right of its right-most dependency:

    a.ts -> b.ts -> c.ts      c: level 0, b: level 1, a: level 2

Files caught in import cycles (and anything that depends on them) cannot be
layered that way; they share one trailing "unresolved" level.
"""

from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import Dict, Iterable, List, Optional, Set

from .models import DependencyGraph, FileRecord, GraphEdge, GraphNode

logger = logging.getLogger(__name__)

RESOLVE_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".json")
NODE_SPACING = 250
LEVEL_HEIGHT = 120

CODE_LANGUAGES = {"typescript", "javascript", "python"}
CONFIG_LANGUAGES = {"json", "yaml"}


def resolve_import_path(
    current_file: str,
    specifier: str,
    known_files: Set[str],
) -> Optional[str]:
    """Resolve a relative specifier against the importing file's directory.

    Returns a member of *known_files* or ``None``; never resolves package
    imports.
    """
    if not specifier.startswith("."):
        return None

    directory = str(PurePosixPath(current_file).parent)
    dir_parts = [] if directory in ("", ".") else directory.split("/")
    spec_parts = specifier.split("/")

    if spec_parts[0] == "..":
        ups = 0
        while ups < len(spec_parts) and spec_parts[ups] == "..":
            ups += 1
        if ups > len(dir_parts):
            return None
        base_parts = dir_parts[:len(dir_parts) - ups] + spec_parts[ups:]
    elif spec_parts[0] == ".":
        base_parts = dir_parts + spec_parts[1:]
    else:
        # ".hidden/x" style specifiers are still directory-relative
        base_parts = dir_parts + spec_parts

    base = "/".join(p for p in base_parts if p)
    for ext in RESOLVE_EXTENSIONS:
        for candidate in (f"{base}{ext}", f"{base}/index{ext}"):
            if candidate in known_files:
                return candidate
    return None


def build_dependency_map(files: Iterable[FileRecord]) -> Dict[str, List[str]]:
    """One entry per file: its resolved, de-duplicated dependency targets."""
    records = list(files)
    known = {f.path for f in records}
    dependency_map: Dict[str, List[str]] = {}
    for record in records:
        targets: List[str] = []
        for specifier in record.imports:
            target = resolve_import_path(record.path, specifier, known)
            if target is None or target == record.path or target in targets:
                continue
            targets.append(target)
        dependency_map[record.path] = targets
    return dependency_map


def is_entry_point(path: str, dependency_map: Dict[str, List[str]]) -> bool:
    """True when no other file depends on *path*."""
    return not any(
        path in targets for source, targets in dependency_map.items() if source != path
    )


def file_type_for(record: FileRecord) -> str:
    if record.language in CODE_LANGUAGES:
        if record.classes:
            return "class"
        if record.functions:
            return "function"
        return "module"
    if record.language in CONFIG_LANGUAGES:
        return "config"
    if record.language == "markdown":
        return "documentation"
    return "file"


# ===================================================================
# Index-based graph
# ===================================================================

class FileGraph:
    """Arena of file paths with integer adjacency lists.

    ``dependencies[i]`` holds the indices file *i* imports and
    ``dependents[i]`` the indices importing file *i*.
    """

    def __init__(self, paths: Iterable[str]) -> None:
        self.paths: List[str] = list(paths)
        self.index: Dict[str, int] = {p: i for i, p in enumerate(self.paths)}
        self.dependencies: List[List[int]] = [[] for _ in self.paths]
        self.dependents: List[List[int]] = [[] for _ in self.paths]

    @classmethod
    def from_dependency_map(cls, dependency_map: Dict[str, List[str]]) -> "FileGraph":
        graph = cls(dependency_map.keys())
        for source, targets in dependency_map.items():
            for target in targets:
                graph.add_edge(source, target)
        return graph

    def add_edge(self, source: str, target: str) -> bool:
        src, dst = self.index.get(source), self.index.get(target)
        if src is None or dst is None or src == dst or dst in self.dependencies[src]:
            return False
        self.dependencies[src].append(dst)
        self.dependents[dst].append(src)
        return True

    def edges(self) -> List[GraphEdge]:
        return [
            GraphEdge(source=self.paths[src], target=self.paths[dst])
            for src, targets in enumerate(self.dependencies)
            for dst in targets
        ]

    def entry_points(self) -> List[str]:
        return [self.paths[i] for i, importers in enumerate(self.dependents) if not importers]

    def find_cycle_members(self) -> Set[int]:
        """Indices lying on at least one dependency cycle (Tarjan SCC)."""
        index_of: Dict[int, int] = {}
        low: Dict[int, int] = {}
        on_stack: Set[int] = set()
        stack: List[int] = []
        members: Set[int] = set()
        counter = 0

        for root in range(len(self.paths)):
            if root in index_of:
                continue
            # Iterative DFS: (node, next child position)
            work = [(root, 0)]
            while work:
                node, child_pos = work.pop()
                if child_pos == 0:
                    index_of[node] = low[node] = counter
                    counter += 1
                    stack.append(node)
                    on_stack.add(node)
                recurse = False
                children = self.dependencies[node]
                for pos in range(child_pos, len(children)):
                    child = children[pos]
                    if child not in index_of:
                        work.append((node, pos + 1))
                        work.append((child, 0))
                        recurse = True
                        break
                    if child in on_stack:
                        low[node] = min(low[node], index_of[child])
                if recurse:
                    continue
                if low[node] == index_of[node]:
                    component = []
                    while True:
                        top = stack.pop()
                        on_stack.discard(top)
                        component.append(top)
                        if top == node:
                            break
                    if len(component) > 1:
                        members.update(component)
                if work:
                    parent = work[-1][0]
                    low[parent] = min(low[parent], low[node])
        return members

    def layer(self) -> List[List[int]]:
        """Kahn layering on dependency counts; leftovers form a final level."""
        remaining = [len(deps) for deps in self.dependencies]
        current = [i for i, count in enumerate(remaining) if count == 0]
        placed: Set[int] = set()
        levels: List[List[int]] = []

        while current:
            levels.append(current)
            placed.update(current)
            following: List[int] = []
            for node in current:
                for dependent in self.dependents[node]:
                    remaining[dependent] -= 1
                    if remaining[dependent] == 0:
                        following.append(dependent)
            current = sorted(following)

        unresolved = [i for i in range(len(self.paths)) if i not in placed]
        if unresolved:
            levels.append(unresolved)
        return levels


def layout_positions(levels: List[List[int]]) -> Dict[int, Dict[str, float]]:
    positions: Dict[int, Dict[str, float]] = {}
    for level_index, level in enumerate(levels):
        middle = (len(level) - 1) / 2
        for position, node in enumerate(level):
            positions[node] = {
                "x": level_index * NODE_SPACING,
                "y": (position - middle) * LEVEL_HEIGHT,
            }
    return positions


def build_dependency_graph(files: Iterable[FileRecord]) -> DependencyGraph:
    records = list(files)
    dependency_map = build_dependency_map(records)
    graph = FileGraph.from_dependency_map(dependency_map)

    cycle_members = graph.find_cycle_members()
    if cycle_members:
        logger.warning(
            "Import cycles among %d files: %s",
            len(cycle_members),
            ", ".join(sorted(graph.paths[i] for i in cycle_members)[:10]),
        )

    levels = graph.layer()
    positions = layout_positions(levels)
    # The last level is only "unresolved" when something failed to layer
    unresolved: List[str] = []
    if levels and any(i in cycle_members for i in levels[-1]):
        unresolved = [graph.paths[i] for i in levels[-1]]

    nodes: List[GraphNode] = []
    for i, record in enumerate(records):
        pos = positions.get(i, {"x": 0.0, "y": 0.0})
        nodes.append(GraphNode(
            id=record.path,
            label=PurePosixPath(record.path).name,
            x=pos["x"],
            y=pos["y"],
            language=record.language,
            function_count=len(record.functions),
            class_count=len(record.classes),
            lines=record.lines_of_code,
            file_type=file_type_for(record),
        ))

    return DependencyGraph(
        nodes=nodes,
        edges=graph.edges(),
        languages={r.language for r in records if r.language and r.language != "unknown"},
        entry_points=graph.entry_points(),
        unresolved=unresolved,
    )
