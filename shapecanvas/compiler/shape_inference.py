"""Shape inference: propagate tensor shapes through the graph."""

from __future__ import annotations
import logging
from typing import Mapping, get_args

from shapecanvas.compiler.registry import (
    REGISTRY,
    NodeSpec,
    Shape,
    ShapeError,
    format_shape,
)
from shapecanvas.compiler.validator import topological_sort
from shapecanvas.models.schemas import (
    DType,
    Graph,
    GraphEdge,
    NodeStatus,
    ShapeContext,
    ShapeResult,
)

logger = logging.getLogger(__name__)

_SEVERITY: dict[str, int] = {"pending": 0, "valid": 1, "warning": 2, "error": 3}
_DTYPES = set(get_args(DType))


def escalate(current: NodeStatus, new: NodeStatus) -> NodeStatus:
    """Return the more severe of two statuses."""
    return new if _SEVERITY[new] > _SEVERITY[current] else current


def infer_shapes(
    graph: Graph, registry: Mapping[str, NodeSpec] = REGISTRY
) -> ShapeContext:
    """Evaluate every node of the graph in topological order.

    Each node gets a ShapeResult with its resolved shape and dtype, a status
    and diagnostics. Failures are local to the node that produced them; only
    ``has_errors`` summarizes the whole graph.
    """
    ordered, cycles = topological_sort(graph.nodes, graph.edges)
    nodes_by_id = {n.id: n for n in graph.nodes}
    incoming: dict[str, list[GraphEdge]] = {}
    for edge in graph.edges:
        incoming.setdefault(edge.target, []).append(edge)

    results: dict[str, ShapeResult] = {}
    trace: list[str] = []

    for node_id in cycles:
        results[node_id] = ShapeResult(
            node_id=node_id, status="error", messages=["Cycle detected"]
        )

    for node in ordered:
        spec = registry.get(node.kind)
        if spec is None:
            results[node.id] = ShapeResult(
                node_id=node.id,
                status="error",
                messages=[f"Unknown node kind '{node.kind}'"],
            )
            continue

        edges = incoming.get(node.id, [])
        upstream = [results.get(e.source) for e in edges]
        input_shapes: list[Shape] = [
            list(r.shape) for r in upstream if r is not None and r.shape is not None
        ]
        messages: list[str] = []
        status: NodeStatus = "valid"

        if len(input_shapes) < len(edges):
            messages.append("Waiting for upstream nodes")
            status = escalate(status, "warning")
        if len(input_shapes) < spec.min_inputs:
            messages.append(f"Requires at least {spec.min_inputs} input(s)")
            status = escalate(status, "error")
        if spec.max_inputs is not None and len(input_shapes) > spec.max_inputs:
            messages.append(f"Supports up to {spec.max_inputs} input(s)")
            status = escalate(status, "error")

        params = spec.resolve_params(node.params)
        shape: Shape | None = None
        try:
            shape = spec.infer_shape(input_shapes, params)
        except ShapeError as e:
            messages.append(e.message)
            status = escalate(status, "error")
        except Exception as e:
            logger.debug("Shape function for %s (%s) failed", node.id, node.kind, exc_info=True)
            messages.append(f"Shape inference failed: {e}")
            status = escalate(status, "error")

        if node.kind == "Input" and not shape:
            shape = list(graph.input_spec.shape)

        if spec.validate is not None:
            try:
                diagnostics = spec.validate(input_shapes, params)
            except Exception as e:
                messages.append(f"Validation failed: {e}")
                status = escalate(status, "error")
            else:
                for diagnostic in diagnostics:
                    messages.append(diagnostic.message)
                    status = escalate(status, diagnostic.level)

        if shape is None and status != "error":
            messages.append("Unable to resolve an output shape")
            status = "error"

        if node.kind == "Input":
            declared = params.get("dtype")
            dtype = declared if declared in _DTYPES else graph.input_spec.dtype
        elif node.kind == "Embeddings":
            dtype = "float32"
        else:
            dtype = next(
                (r.dtype for r in upstream if r is not None and r.dtype is not None),
                None,
            )

        label = f"{node.label or node.id} {format_shape(shape)}"
        if node.kind == "Input":
            trace.append(f"Input {label}")
        else:
            sources = ", ".join(
                (nodes_by_id[e.source].label or e.source) if e.source in nodes_by_id else e.source
                for e in edges
            )
            trace.append(f"{sources} → {label}")

        results[node.id] = ShapeResult(
            node_id=node.id,
            shape=shape,
            dtype=dtype,
            status=status,
            messages=messages,
        )

    has_errors = any(r.status == "error" for r in results.values())
    logger.debug(
        "Inferred shapes for %d nodes (%d in cycles, errors=%s)",
        len(results),
        len(cycles),
        has_errors,
    )
    return ShapeContext(results=results, trace=trace, has_errors=has_errors)
