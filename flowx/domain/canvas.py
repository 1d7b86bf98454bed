"""Pure helpers keeping a diagram free of dangling edges."""
from __future__ import annotations

from typing import Iterable, List, Tuple

from flowx.domain.entities import CanvasEdge, CanvasNode


def remove_node(
    nodes: Iterable[CanvasNode], edges: Iterable[CanvasEdge], node_id: str
) -> Tuple[List[CanvasNode], List[CanvasEdge]]:
    """Drop a node together with every edge that references it."""
    kept_nodes = [node for node in nodes if node.id != node_id]
    kept_edges = [edge for edge in edges if edge.source != node_id and edge.target != node_id]
    return kept_nodes, kept_edges


def prune_dangling_edges(
    nodes: Iterable[CanvasNode], edges: Iterable[CanvasEdge]
) -> Tuple[List[CanvasEdge], List[CanvasEdge]]:
    """Split edges into (kept, dropped) by whether both endpoints exist."""
    node_ids = {node.id for node in nodes}
    kept: List[CanvasEdge] = []
    dropped: List[CanvasEdge] = []
    for edge in edges:
        if edge.source in node_ids and edge.target in node_ids:
            kept.append(edge)
        else:
            dropped.append(edge)
    return kept, dropped
