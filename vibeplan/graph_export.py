"""Dependency graph export helpers for DOT and JSON outputs."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List

from .models import DependencyGraph, GraphEdge

FILE_TYPE_SHAPES = {
    "class": "component",
    "function": "box",
    "module": "box",
    "config": "note",
    "documentation": "note",
    "file": "ellipse",
}


def export_dot(graph: DependencyGraph, output_file: Path, focus: str = "") -> None:
    selected = _focused_subgraph(graph, focus)
    nodes = {n.id: n for n in graph.nodes}
    entry_points = set(graph.entry_points)
    unresolved = set(graph.unresolved)

    lines = ["digraph Dependencies {"]
    lines.append("  rankdir=LR;")

    for node_id in selected["nodes"]:
        node = nodes[node_id]
        label = f"{node.label}\\n{node.file_type}"
        attrs = [f'label="{_esc(label)}"', f'shape={FILE_TYPE_SHAPES.get(node.file_type, "ellipse")}']
        if node_id in entry_points:
            attrs.append("style=bold")
        if node_id in unresolved:
            attrs.append("color=red")
        lines.append(f'  "{_esc(node_id)}" [{", ".join(attrs)}];')

    for edge in selected["edges"]:
        lines.append(f'  "{_esc(edge.source)}" -> "{_esc(edge.target)}";')

    lines.append("}")
    output_file.write_text("\n".join(lines), encoding="utf-8")


def export_json(graph: DependencyGraph, output_file: Path, focus: str = "") -> None:
    selected = _focused_subgraph(graph, focus)
    keep = set(selected["nodes"])
    payload = graph.to_dict()
    payload["nodes"] = [n for n in payload["nodes"] if n["id"] in keep]
    payload["edges"] = [e.to_dict() for e in selected["edges"]]
    output_file.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def _focused_subgraph(graph: DependencyGraph, focus: str) -> Dict[str, List]:
    all_ids = [n.id for n in graph.nodes]
    if not focus:
        return {"nodes": all_ids, "edges": list(graph.edges)}

    focus_ids = {n.id for n in graph.nodes if focus in n.id}
    if not focus_ids:
        return {"nodes": all_ids, "edges": list(graph.edges)}

    edge_subset: List[GraphEdge] = [
        e for e in graph.edges if e.source in focus_ids or e.target in focus_ids
    ]
    node_subset = set(focus_ids)
    for e in edge_subset:
        node_subset.add(e.source)
        node_subset.add(e.target)
    return {"nodes": [i for i in all_ids if i in node_subset], "edges": edge_subset}


def _esc(text: str) -> str:
    return text.replace('"', '\\"')
