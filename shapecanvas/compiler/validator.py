"""Graph validation: structural checks and topological ordering."""

from __future__ import annotations
from shapecanvas.models.schemas import Graph, GraphEdge, GraphIssue, GraphNode


def topological_sort(
    nodes: list[GraphNode], edges: list[GraphEdge]
) -> tuple[list[GraphNode], list[str]]:
    """Order nodes so every node follows its upstream dependencies.

    Uses Kahn's algorithm seeded in node declaration order. Returns the
    ordered nodes plus the ids of nodes that never reach in-degree zero
    (cycle participants and anything downstream of a cycle). Edges that
    reference unknown node ids are ignored.
    """
    nodes_by_id = {n.id: n for n in nodes}
    adj: dict[str, list[str]] = {n.id: [] for n in nodes}
    in_degree: dict[str, int] = {n.id: 0 for n in nodes}

    for edge in edges:
        if edge.source not in nodes_by_id or edge.target not in nodes_by_id:
            continue
        adj[edge.source].append(edge.target)
        in_degree[edge.target] += 1

    # Kahn's algorithm
    queue = [n.id for n in nodes if in_degree[n.id] == 0]
    ordered: list[GraphNode] = []

    while queue:
        node_id = queue.pop(0)
        ordered.append(nodes_by_id[node_id])
        for neighbor in adj[node_id]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)

    visited = {n.id for n in ordered}
    cycles = [n.id for n in nodes if n.id not in visited]
    return ordered, cycles


def get_input_edges(graph: Graph, node_id: str) -> list[GraphEdge]:
    """Edges targeting a node, in edge declaration order."""
    return [e for e in graph.edges if e.target == node_id]


def get_input_nodes(graph: Graph, node_id: str) -> list[str]:
    """Get the source node IDs connected to a given node."""
    return [e.source for e in get_input_edges(graph, node_id)]


def validate_graph(graph: Graph) -> list[GraphIssue]:
    """Shape-independent structural checks.

    Issues are advisory: nothing here blocks code generation.
    """
    issues: list[GraphIssue] = []
    node_ids = {n.id for n in graph.nodes}

    if not any(n.kind == "Input" for n in graph.nodes):
        issues.append(GraphIssue(level="error", message="Graph needs at least one Input node"))
    if not any(n.kind == "Output" for n in graph.nodes):
        issues.append(GraphIssue(level="error", message="Graph needs at least one Output node"))

    for edge in graph.edges:
        for endpoint in (edge.source, edge.target):
            if endpoint not in node_ids:
                issues.append(
                    GraphIssue(
                        level="error",
                        message=f"Edge {edge.id} references unknown node: {endpoint}",
                    )
                )

    sources = {e.source for e in graph.edges}
    for node in graph.nodes:
        if node.kind == "Input" or node.id in sources:
            continue
        issues.append(
            GraphIssue(
                level="warning",
                message=f"{node.label or node.id} is not connected to any downstream node",
                node_id=node.id,
            )
        )

    seen: set[tuple[str, str]] = set()
    for edge in graph.edges:
        pair = (edge.source, edge.target)
        if pair in seen:
            issues.append(
                GraphIssue(
                    level="warning",
                    message=f"Multiple edges detected between {edge.source} and {edge.target}",
                )
            )
        else:
            seen.add(pair)

    return issues
