"""Trainable parameter estimate for a graph, without building the model."""

from __future__ import annotations
from typing import Mapping

from shapecanvas.compiler.registry import REGISTRY, NodeSpec
from shapecanvas.models.schemas import Graph


def count_parameters(
    graph: Graph, registry: Mapping[str, NodeSpec] = REGISTRY
) -> int:
    """Count total trainable parameters declared by the graph's nodes.

    Uses the configured layer sizes, so it matches the generated model only
    when the graph is shape-clean. Unknown kinds and malformed params count 0.
    """
    total = 0
    for node in graph.nodes:
        spec = registry.get(node.kind)
        if spec is None or spec.count_params is None:
            continue
        try:
            total += spec.count_params(spec.resolve_params(node.params))
        except (TypeError, ValueError):
            continue
    return total
