"""Built-in example graphs offered as starting points in the editor."""

from __future__ import annotations
from typing import Any, Callable

from shapecanvas.compiler.registry import default_params
from shapecanvas.models.schemas import Graph, GraphEdge, GraphNode, InputSpec, TrainingConfig


def _node(node_id: str, kind: str, label: str, **params: Any) -> GraphNode:
    return GraphNode(id=node_id, kind=kind, label=label, params={**default_params(kind), **params})


def _chain(*node_ids: str) -> list[GraphEdge]:
    return [
        GraphEdge(id=f"{src}-{tgt}", source=src, target=tgt)
        for src, tgt in zip(node_ids, node_ids[1:])
    ]


def empty_graph() -> Graph:
    return Graph(
        nodes=[
            _node("input", "Input", "Input", shape=[1, 3, 224, 224]),
            _node("output", "Output", "Output"),
        ],
        edges=_chain("input", "output"),
        input_spec=InputSpec(shape=[1, 3, 224, 224]),
    )


def mlp_graph() -> Graph:
    return Graph(
        nodes=[
            _node("input", "Input", "Input", shape=[1, 784]),
            _node("flatten", "Flatten", "Flatten"),
            _node("fc1", "Linear", "Linear 1", in_features=784, out_features=256),
            _node("relu1", "ReLU", "ReLU 1"),
            _node("dropout", "Dropout", "Dropout", p=0.2),
            _node("fc2", "Linear", "Linear 2", in_features=256, out_features=10),
            _node("output", "Output", "Output"),
        ],
        edges=_chain("input", "flatten", "fc1", "relu1", "dropout", "fc2", "output"),
        training=TrainingConfig(batch_size=64),
        input_spec=InputSpec(shape=[1, 784]),
    )


def simple_cnn_graph() -> Graph:
    return Graph(
        nodes=[
            _node("image", "Input", "Image", shape=[1, 3, 224, 224]),
            _node(
                "conv1", "Conv2d", "Conv7x7",
                in_channels=3, out_channels=64, kernel_size=7, stride=2, padding=3,
            ),
            _node("bn1", "BatchNorm2d", "BN1", num_features=64),
            _node("relu1", "ReLU", "ReLU"),
            _node("pool1", "MaxPool2d", "MaxPool", kernel_size=3, stride=2, padding=1),
            _node(
                "conv2", "Conv2d", "Conv3x3",
                in_channels=64, out_channels=128, kernel_size=3, padding=1,
            ),
            _node("relu2", "ReLU", "ReLU 2"),
            _node("flatten", "Flatten", "Flatten"),
            _node("classifier", "Linear", "Classifier", in_features=128 * 56 * 56, out_features=1000),
            _node("output", "Output", "Output"),
        ],
        edges=_chain(
            "image", "conv1", "bn1", "relu1", "pool1", "conv2", "relu2", "flatten", "classifier", "output"
        ),
        training=TrainingConfig(num_classes=1000, batch_size=16),
        input_spec=InputSpec(shape=[1, 3, 224, 224]),
    )


def residual_graph() -> Graph:
    return Graph(
        nodes=[
            _node("image", "Input", "Image", shape=[1, 64, 56, 56]),
            _node("res1", "ResidualBlock", "ResBlock1", in_channels=64, out_channels=64),
            _node(
                "res2", "ResidualBlock", "ResBlock2",
                in_channels=64, out_channels=128, stride=2, use_projection=True,
            ),
            _node("relu", "ReLU", "Post-ReLU"),
            _node("pool", "AdaptiveAvgPool2d", "Adaptive Pool", output_size=1),
            _node("flatten", "Flatten", "Flatten"),
            _node("classifier", "Linear", "Classifier", in_features=128, out_features=10),
            _node("output", "Output", "Output"),
        ],
        edges=_chain("image", "res1", "res2", "relu", "pool", "flatten", "classifier", "output"),
        training=TrainingConfig(epochs=30),
        input_spec=InputSpec(shape=[1, 64, 56, 56]),
    )


def lstm_classifier_graph() -> Graph:
    return Graph(
        nodes=[
            _node("tokens", "Input", "Tokens", shape=[1, 128], dtype="int64"),
            _node("embedding", "Embeddings", "Embedding", num_embeddings=20000, embedding_dim=256),
            _node("lstm", "LSTM", "LSTM", input_size=256, hidden_size=128, batch_first=True),
            _node("flatten", "Flatten", "Flatten"),
            _node("classifier", "Linear", "Classifier", in_features=128 * 128, out_features=2),
            _node("output", "Output", "Output"),
        ],
        edges=_chain("tokens", "embedding", "lstm", "flatten", "classifier", "output"),
        training=TrainingConfig(num_classes=2, epochs=5),
        input_spec=InputSpec(shape=[1, 128], dtype="int64"),
    )


def two_branch_graph() -> Graph:
    edges = [
        GraphEdge(id="input-a", source="input", target="branch_a"),
        GraphEdge(id="input-b", source="input", target="branch_b"),
        GraphEdge(id="a-concat", source="branch_a", target="concat"),
        GraphEdge(id="b-concat", source="branch_b", target="concat"),
        *_chain("concat", "head", "output"),
    ]
    return Graph(
        nodes=[
            _node("input", "Input", "Features", shape=[1, 4]),
            _node("branch_a", "Linear", "Branch A", in_features=4, out_features=4),
            _node("branch_b", "Linear", "Branch B", in_features=4, out_features=6),
            _node("concat", "Concat", "Concat", dim=1),
            _node("head", "Linear", "Head", in_features=10, out_features=3),
            _node("output", "Output", "Output"),
        ],
        edges=edges,
        training=TrainingConfig(num_classes=3),
        input_spec=InputSpec(shape=[1, 4]),
    )


TEMPLATES: dict[str, Callable[[], Graph]] = {
    "empty": empty_graph,
    "mlp": mlp_graph,
    "simple-cnn": simple_cnn_graph,
    "residual": residual_graph,
    "lstm-classifier": lstm_classifier_graph,
    "two-branch": two_branch_graph,
}


def list_templates() -> list[str]:
    return list(TEMPLATES)


def get_template(name: str) -> Graph:
    """Build a fresh copy of a named template. Raises KeyError if unknown."""
    return TEMPLATES[name]()
