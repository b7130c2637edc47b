"""Normalize incoming graph JSON so the engine sees canonical kinds and typed params."""

from __future__ import annotations
from typing import Any, Mapping

from shapecanvas.compiler.registry import REGISTRY, NodeSpec
from shapecanvas.models.schemas import Graph, GraphEdge, GraphNode, ParamDef

# Spellings seen in exported graphs -> canonical kind
KIND_ALIASES: dict[str, str] = {
    "maxpool": "MaxPool2d",
    "avgpool": "AvgPool2d",
    "conv": "Conv2d",
    "dense": "Linear",
    "fc": "Linear",
    "batchnorm": "BatchNorm2d",
    "embedding": "Embeddings",
    "concatenate": "Concat",
    "residual": "ResidualBlock",
}

ACTIVATIONS: dict[str, str] = {
    "relu": "ReLU",
    "leakyrelu": "LeakyReLU",
    "leaky_relu": "LeakyReLU",
    "sigmoid": "Sigmoid",
    "tanh": "Tanh",
}


def _int_param(value, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    if isinstance(value, (list, tuple)) and len(value) > 0:
        return _int_param(value[0], default)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return default
    return default


def _number(value: Any, default: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            return default
    return default


def _coerce(definition: ParamDef, value: Any) -> Any:
    """Coerce a raw param value to the schema's type, keeping pairs for number params."""
    if value is None:
        return definition.default
    if definition.type == "boolean":
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes", "on")
        return bool(value)
    if definition.type == "number":
        if isinstance(value, (list, tuple)):
            return [_number(item, definition.default) for item in value]
        return _number(value, definition.default)
    if definition.type == "number-array":
        if isinstance(value, str):
            value = [part for part in value.split(",") if part.strip()]
        if isinstance(value, (list, tuple)):
            # e.g. [null, 3, 224, 224]: a null batch axis becomes dynamic
            return [-1 if item is None else _int_param(item, -1) for item in value]
        return definition.default
    if definition.type == "select" and definition.options and value not in definition.options:
        return definition.default
    return value


def canonical_kind(
    raw_kind: str, params: Mapping[str, Any], registry: Mapping[str, NodeSpec] = REGISTRY
) -> str:
    t = (raw_kind or "").strip()
    if t in registry:
        return t
    lowered = t.lower()
    by_lower = {kind.lower(): kind for kind in registry}
    if lowered in by_lower:
        return by_lower[lowered]
    # Activation block: kind "activation" + params.activation -> "ReLU"/"Tanh"/etc.
    if lowered == "activation":
        act = params.get("activation") or params.get("function") or "relu"
        return ACTIVATIONS.get(str(act).strip().lower(), "ReLU")
    if lowered in ACTIVATIONS:
        return ACTIVATIONS[lowered]
    return KIND_ALIASES.get(lowered, t)


def normalize_params(
    kind: str, params: Mapping[str, Any], registry: Mapping[str, NodeSpec] = REGISTRY
) -> dict[str, Any]:
    """Return params with exactly the schema's keys, defaults filled in."""
    spec = registry.get(kind)
    if spec is None:
        return dict(params)
    p = dict(params)

    # Conv2d: "same" padding -> kernel // 2
    if kind == "Conv2d" and str(p.get("padding", "")).strip().lower() == "same":
        k = _int_param(p.get("kernel_size"), 3)
        p["padding"] = k // 2 if k > 0 else 0

    out: dict[str, Any] = {}
    for key, definition in spec.params.items():
        default = list(definition.default) if isinstance(definition.default, list) else definition.default
        out[key] = _coerce(definition, p[key]) if key in p else default
    return out


def normalize_node(node: GraphNode, registry: Mapping[str, NodeSpec] = REGISTRY) -> GraphNode:
    kind = canonical_kind(node.kind, node.params, registry)
    return GraphNode(
        id=node.id,
        kind=kind,
        label=node.label or kind,
        params=normalize_params(kind, node.params, registry),
    )


def normalize_graph(graph: Graph, registry: Mapping[str, NodeSpec] = REGISTRY) -> Graph:
    """Return a new Graph with canonical kinds and schema-complete params."""
    nodes = [normalize_node(n, registry) for n in graph.nodes]
    node_ids = {n.id for n in nodes}
    edges = [e for e in graph.edges if e.source in node_ids and e.target in node_ids]
    return Graph(
        nodes=nodes,
        edges=edges,
        training=graph.training,
        input_spec=graph.input_spec,
    )


def normalize_graph_dict(graph_dict: dict, registry: Mapping[str, NodeSpec] = REGISTRY) -> Graph:
    """Normalize a graph given as a plain dict (e.g. an imported file).

    Tolerates missing ids, labels and edge ids, drops malformed entries and
    edges to unknown nodes, and derives the input spec from the first Input
    node when the document has none.
    """
    out_nodes: list[GraphNode] = []
    for n in graph_dict.get("nodes") or []:
        if not isinstance(n, dict) or "id" not in n:
            continue
        params = n.get("params") if isinstance(n.get("params"), dict) else {}
        raw = GraphNode(
            id=str(n["id"]),
            kind=str(n.get("kind") or n.get("type") or ""),
            label=str(n.get("label") or ""),
            params=params,
        )
        out_nodes.append(normalize_node(raw, registry))

    node_ids = {n.id for n in out_nodes}
    out_edges: list[GraphEdge] = []
    for e in graph_dict.get("edges") or []:
        if not isinstance(e, dict):
            continue
        src = e.get("source", e.get("from"))
        tgt = e.get("target", e.get("to"))
        if src is None or tgt is None:
            continue
        src, tgt = str(src), str(tgt)
        if src in node_ids and tgt in node_ids:
            out_edges.append(
                GraphEdge(
                    id=str(e.get("id") or f"e-{src}-{tgt}"),
                    source=src,
                    target=tgt,
                    port=e.get("port") or e.get("targetHandle"),
                )
            )

    input_spec = graph_dict.get("input_spec") or graph_dict.get("inputSpec")
    if not isinstance(input_spec, dict):
        first_input = next((n for n in out_nodes if n.kind == "Input"), None)
        input_spec = {}
        if first_input is not None and first_input.params.get("shape"):
            input_spec["shape"] = first_input.params["shape"]

    training = graph_dict.get("training")
    return Graph(
        nodes=out_nodes,
        edges=out_edges,
        training=training if isinstance(training, dict) else {},
        input_spec=input_spec,
    )
