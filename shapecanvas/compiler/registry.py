"""Node kind registry: parameter schemas, arity and shape algebra per kind.

Every kind is described by a frozen ``NodeSpec``. Shape functions take the
resolved upstream shapes (one per incoming edge, in edge order) and the node's
parameters with schema defaults filled in, and return the output shape or
``None`` when nothing can be resolved yet. They raise ``ShapeError`` when the
configuration cannot produce a tensor.
"""

from __future__ import annotations
import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Mapping, NamedTuple

from shapecanvas.models.schemas import NodeKindInfo, ParamDef

Shape = list[int]
Params = Mapping[str, Any]


class ShapeError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class Diagnostic(NamedTuple):
    level: str  # "warning" | "error"
    message: str


ShapeFn = Callable[[list[Shape], Params], Shape | None]
ValidateFn = Callable[[list[Shape], Params], list[Diagnostic]]
ParamCountFn = Callable[[Params], int]


@dataclass(frozen=True)
class NodeSpec:
    kind: str
    description: str
    category: str
    params: Mapping[str, ParamDef]
    infer_shape: ShapeFn
    min_inputs: int = 1
    max_inputs: int | None = None
    outputs: int = 1
    validate: ValidateFn | None = None
    module: str | None = None
    count_params: ParamCountFn | None = None

    def resolve_params(self, params: Mapping[str, Any]) -> dict[str, Any]:
        """Overlay node params on the schema defaults."""
        resolved = {key: p.default for key, p in self.params.items()}
        resolved.update(params)
        return resolved

    def describe(self) -> NodeKindInfo:
        return NodeKindInfo(
            kind=self.kind,
            description=self.description,
            category=self.category,
            params=dict(self.params),
            min_inputs=self.min_inputs,
            max_inputs=self.max_inputs,
            outputs=self.outputs,
        )


# ---------------------------------------------------------------------------
# Shape helpers
# ---------------------------------------------------------------------------


def format_shape(shape: Shape | None) -> str:
    """Render a shape for humans, with -1 shown as the batch marker ``B``."""
    if shape is None:
        return "?"
    return "[" + ",".join("B" if dim == -1 else str(dim) for dim in shape) + "]"


def as_pair(value: Any, fallback: int) -> tuple[int, int]:
    """Broadcast a scalar to both spatial axes, or read a pair."""
    if value is None:
        return fallback, fallback
    if isinstance(value, (list, tuple)):
        if not value:
            return fallback, fallback
        first = int(value[0])
        second = int(value[1]) if len(value) > 1 else first
        return first, second
    return int(value), int(value)


def conv_output_size(
    size: int, kernel: int, stride: int, padding: int, dilation: int = 1
) -> int:
    """floor((size + 2*padding - dilation*(kernel-1) - 1) / stride + 1)"""
    if size < 0:
        return -1
    if stride <= 0:
        raise ShapeError(f"Stride must be positive, got {stride}")
    return (size + 2 * padding - dilation * (kernel - 1) - 1) // stride + 1


def flatten_shape(shape: Shape, start: int = 1, end: int = -1) -> Shape:
    if not shape:
        return []
    rank = len(shape)
    start_axis = start + rank if start < 0 else start
    end_axis = end + rank if end < 0 else end
    if not 0 <= start_axis <= end_axis < rank:
        raise ShapeError(
            f"Flatten range [{start}, {end}] is invalid for a {rank}D input"
        )
    collapsed = shape[start_axis : end_axis + 1]
    size = -1 if any(dim < 0 for dim in collapsed) else math.prod(collapsed)
    return shape[:start_axis] + [size] + shape[end_axis + 1 :]


def _first(inputs: list[Shape]) -> Shape | None:
    return inputs[0] if inputs else None


def _require_rank(kind: str, shape: Shape, *ranks: int, layout: str = "") -> None:
    if len(shape) not in ranks:
        expected = " or ".join(f"{r}D" for r in ranks)
        hint = f" {layout}" if layout else ""
        raise ShapeError(f"{kind} expects {expected} input{hint}, got shape {shape}")


def _spatial_output(
    kind: str,
    height: int,
    width: int,
    kernel: tuple[int, int],
    stride: tuple[int, int],
    padding: tuple[int, int],
    dilation: tuple[int, int] = (1, 1),
) -> tuple[int, int]:
    out_h = conv_output_size(height, kernel[0], stride[0], padding[0], dilation[0])
    out_w = conv_output_size(width, kernel[1], stride[1], padding[1], dilation[1])
    if (height >= 0 and out_h <= 0) or (width >= 0 and out_w <= 0):
        raise ShapeError(
            f"{kind} output dimensions are non-positive: ({out_h}, {out_w})"
        )
    return out_h, out_w


def _mismatch(actual: int, expected: int) -> bool:
    return actual != expected and actual >= 0 and expected >= 0


# ---------------------------------------------------------------------------
# Shape functions
# ---------------------------------------------------------------------------


def _input_shape(inputs: list[Shape], p: Params) -> Shape | None:
    shape = p.get("shape")
    if isinstance(shape, (list, tuple)) and shape:
        return [int(dim) for dim in shape]
    return None


def _identity_shape(inputs: list[Shape], p: Params) -> Shape | None:
    shape = _first(inputs)
    return list(shape) if shape is not None else None


def _linear_shape(inputs: list[Shape], p: Params) -> Shape | None:
    shape = _first(inputs)
    if shape is None:
        return None
    if len(shape) < 2:
        raise ShapeError(f"Linear expects at least 2D input, got shape {shape}")
    return shape[:-1] + [int(p["out_features"])]


def _flatten(inputs: list[Shape], p: Params) -> Shape | None:
    shape = _first(inputs)
    if shape is None:
        return None
    return flatten_shape(shape, int(p["start_dim"]), int(p["end_dim"]))


def _conv2d_shape(inputs: list[Shape], p: Params) -> Shape | None:
    shape = _first(inputs)
    if shape is None:
        return None
    _require_rank("Conv2d", shape, 4, layout="[B,C,H,W]")
    batch, _, height, width = shape
    out_h, out_w = _spatial_output(
        "Conv2d",
        height,
        width,
        as_pair(p["kernel_size"], 3),
        as_pair(p["stride"], 1),
        as_pair(p["padding"], 0),
        as_pair(p.get("dilation"), 1),
    )
    return [batch, int(p["out_channels"]), out_h, out_w]


def _pool_shape(kind: str) -> ShapeFn:
    def infer(inputs: list[Shape], p: Params) -> Shape | None:
        shape = _first(inputs)
        if shape is None:
            return None
        _require_rank(kind, shape, 4, layout="[B,C,H,W]")
        batch, channels, height, width = shape
        kernel = as_pair(p["kernel_size"], 2)
        stride = kernel if p.get("stride") is None else as_pair(p["stride"], kernel[0])
        out_h, out_w = _spatial_output(
            kind, height, width, kernel, stride, as_pair(p.get("padding"), 0)
        )
        return [batch, channels, out_h, out_w]

    return infer


def _adaptive_pool_shape(inputs: list[Shape], p: Params) -> Shape | None:
    shape = _first(inputs)
    if shape is None:
        return None
    _require_rank("AdaptiveAvgPool2d", shape, 4, layout="[B,C,H,W]")
    out_h, out_w = as_pair(p["output_size"], 1)
    return [shape[0], shape[1], out_h, out_w]


def _batchnorm_shape(kind: str, *ranks: int) -> ShapeFn:
    def infer(inputs: list[Shape], p: Params) -> Shape | None:
        shape = _first(inputs)
        if shape is None:
            return None
        _require_rank(kind, shape, *ranks)
        return list(shape)

    return infer


def _add_shape(inputs: list[Shape], p: Params) -> Shape | None:
    return _identity_shape(inputs, p)


def _concat_axis(dim: int, rank: int) -> int:
    axis = dim + rank if dim < 0 else dim
    if not 0 <= axis < rank:
        raise ShapeError(f"Concat dim {dim} is out of range for a {rank}D input")
    return axis


def _concat_shape(inputs: list[Shape], p: Params) -> Shape | None:
    base = _first(inputs)
    if base is None:
        return None
    axis = _concat_axis(int(p["dim"]), len(base))
    sizes = [shape[axis] for shape in inputs if axis < len(shape)]
    result = list(base)
    result[axis] = -1 if any(size < 0 for size in sizes) else sum(sizes)
    return result


def _residual_shape(inputs: list[Shape], p: Params) -> Shape | None:
    shape = _first(inputs)
    if shape is None:
        return None
    _require_rank("ResidualBlock", shape, 4, layout="[B,C,H,W]")
    batch, _, height, width = shape
    stride = int(p["stride"])
    out_h, out_w = _spatial_output(
        "ResidualBlock", height, width, (3, 3), (stride, stride), (1, 1)
    )
    return [batch, int(p["out_channels"]), out_h, out_w]


def _embedding_shape(inputs: list[Shape], p: Params) -> Shape | None:
    shape = _first(inputs)
    if shape is None:
        return None
    return list(shape) + [int(p["embedding_dim"])]


def _recurrent_shape(kind: str) -> ShapeFn:
    def infer(inputs: list[Shape], p: Params) -> Shape | None:
        shape = _first(inputs)
        if shape is None:
            return None
        # batch_first only decides which leading axis is the batch; both
        # layouts keep the leading axes and replace the feature axis.
        layout = "[B,T,F]" if p.get("batch_first", True) else "[T,B,F]"
        _require_rank(kind, shape, 2, 3, layout=layout)
        factor = 2 if p.get("bidirectional") else 1
        return shape[:-1] + [int(p["hidden_size"]) * factor]

    return infer


# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------


def _validate_linear(inputs: list[Shape], p: Params) -> list[Diagnostic]:
    shape = _first(inputs)
    if not shape:
        return []
    expected = int(p["in_features"])
    last = shape[-1]
    if _mismatch(last, expected):
        return [
            Diagnostic("error", f"Expected in_features={expected} but received {last}")
        ]
    return []


def _validate_conv2d(inputs: list[Shape], p: Params) -> list[Diagnostic]:
    shape = _first(inputs)
    if not shape or len(shape) != 4:
        return []
    expected = int(p["in_channels"])
    if _mismatch(shape[1], expected):
        return [
            Diagnostic(
                "error",
                f"Conv2d expected in_channels={expected} but received {shape[1]}",
            )
        ]
    return []


def _validate_batchnorm(kind: str) -> ValidateFn:
    def validate(inputs: list[Shape], p: Params) -> list[Diagnostic]:
        shape = _first(inputs)
        if not shape or len(shape) < 2:
            return []
        expected = int(p["num_features"])
        if _mismatch(shape[1], expected):
            return [
                Diagnostic(
                    "error",
                    f"{kind} expected num_features={expected} but received {shape[1]}",
                )
            ]
        return []

    return validate


def _validate_add(inputs: list[Shape], p: Params) -> list[Diagnostic]:
    reference = _first(inputs)
    return [
        Diagnostic("error", f"Input {idx} shape mismatch for Add")
        for idx, shape in enumerate(inputs, start=1)
        if shape != reference
    ]


def _validate_concat(inputs: list[Shape], p: Params) -> list[Diagnostic]:
    reference = _first(inputs)
    if not reference:
        return []
    dim = int(p["dim"])
    target = dim + len(reference) if dim < 0 else dim
    issues: list[Diagnostic] = []
    for idx, shape in enumerate(inputs[1:], start=2):
        if len(shape) != len(reference):
            issues.append(
                Diagnostic(
                    "warning",
                    f"Concat input {idx} has rank {len(shape)}, expected {len(reference)}",
                )
            )
        for axis, value in enumerate(shape[: len(reference)]):
            if axis != target and _mismatch(value, reference[axis]):
                issues.append(
                    Diagnostic("warning", f"Concat input {idx} mismatch on dim {axis}")
                )
    return issues


def _validate_residual(inputs: list[Shape], p: Params) -> list[Diagnostic]:
    shape = _first(inputs)
    if not shape or len(shape) < 2:
        return []
    issues: list[Diagnostic] = []
    in_channels = shape[1]
    expected = int(p["in_channels"])
    if _mismatch(in_channels, expected):
        issues.append(
            Diagnostic(
                "warning",
                f"Residual expects in_channels {expected} but received {in_channels}",
            )
        )
    changes_shape = int(p["stride"]) != 1 or expected != int(p["out_channels"])
    if changes_shape and not p.get("use_projection"):
        issues.append(
            Diagnostic(
                "warning",
                "Identity shortcut cannot match the block output; enable use_projection",
            )
        )
    return issues


def _validate_recurrent(kind: str) -> ValidateFn:
    def validate(inputs: list[Shape], p: Params) -> list[Diagnostic]:
        shape = _first(inputs)
        if not shape:
            return []
        expected = int(p["input_size"])
        features = shape[-1]
        if _mismatch(features, expected):
            return [
                Diagnostic(
                    "error",
                    f"Expected {kind} input_size {expected} but received {features}",
                )
            ]
        return []

    return validate


# ---------------------------------------------------------------------------
# Parameter counts
# ---------------------------------------------------------------------------


def _linear_params(p: Params) -> int:
    out = int(p["out_features"])
    return int(p["in_features"]) * out + (out if p.get("bias") else 0)


def _conv2d_params(p: Params) -> int:
    kernel_h, kernel_w = as_pair(p["kernel_size"], 3)
    out = int(p["out_channels"])
    weights = out * int(p["in_channels"]) * kernel_h * kernel_w
    return weights + (out if p.get("bias") else 0)


def _batchnorm_params(p: Params) -> int:
    return 2 * int(p["num_features"])


def _embedding_params(p: Params) -> int:
    return int(p["num_embeddings"]) * int(p["embedding_dim"])


def _recurrent_params(gates: int) -> ParamCountFn:
    def count(p: Params) -> int:
        hidden = int(p["hidden_size"])
        directions = 2 if p.get("bidirectional") else 1
        total = 0
        layer_input = int(p["input_size"])
        for _ in range(int(p["num_layers"])):
            per_direction = gates * hidden * (layer_input + hidden) + 2 * gates * hidden
            total += per_direction * directions
            layer_input = hidden * directions
        return total

    return count


def _residual_params(p: Params) -> int:
    c_in = int(p["in_channels"])
    c_out = int(p["out_channels"])
    total = c_out * c_in * 9 + c_out * c_out * 9 + 4 * c_out
    if p.get("use_projection"):
        total += c_out * c_in + 2 * c_out
    return total


# ---------------------------------------------------------------------------
# Parameter schema helpers
# ---------------------------------------------------------------------------


def _number(label: str, default: Any, **kwargs: Any) -> ParamDef:
    return ParamDef(label=label, type="number", default=default, **kwargs)


def _flag(label: str, default: bool, **kwargs: Any) -> ParamDef:
    return ParamDef(label=label, type="boolean", default=default, **kwargs)


def _passthrough(kind: str, description: str, category: str, **params: ParamDef) -> NodeSpec:
    return NodeSpec(
        kind=kind,
        description=description,
        category=category,
        params=MappingProxyType(params),
        infer_shape=_identity_shape,
        module=f"nn.{kind}",
    )


def _pool_spec(kind: str, description: str) -> NodeSpec:
    return NodeSpec(
        kind=kind,
        description=description,
        category="Pooling",
        params=MappingProxyType(
            {
                "kernel_size": _number("Kernel", 2, min=1, help="Int or pair"),
                "stride": _number("Stride", 2, min=1, help="Defaults to the kernel"),
                "padding": _number("Padding", 0, min=0),
            }
        ),
        infer_shape=_pool_shape(kind),
        module=f"nn.{kind}",
    )


def _recurrent_spec(kind: str, gates: int) -> NodeSpec:
    return NodeSpec(
        kind=kind,
        description=f"{kind} block",
        category="Sequence",
        params=MappingProxyType(
            {
                "input_size": _number("Input Size", 128, min=1, required=True),
                "hidden_size": _number("Hidden Size", 256, min=1, required=True),
                "num_layers": _number("Layers", 1, min=1),
                "bidirectional": _flag("Bidirectional", False),
                "batch_first": _flag("Batch First", True),
                "dropout": _number("Dropout", 0.0, min=0, max=1, step=0.1),
            }
        ),
        infer_shape=_recurrent_shape(kind),
        validate=_validate_recurrent(kind),
        module=f"nn.{kind}",
        count_params=_recurrent_params(gates),
    )


_DTYPES = ["float32", "float16", "bfloat16", "int64", "int32"]

_SPECS: list[NodeSpec] = [
    NodeSpec(
        kind="Input",
        description="Model input specification.",
        category="IO",
        params=MappingProxyType(
            {
                "shape": ParamDef(
                    label="Shape",
                    type="number-array",
                    default=[],
                    help="Use -1 for the dynamic batch dimension; empty uses the graph input spec",
                ),
                "dtype": ParamDef(
                    label="DType",
                    type="select",
                    default=None,
                    options=_DTYPES,
                    help="Defaults to the graph input spec dtype",
                ),
            }
        ),
        infer_shape=_input_shape,
        min_inputs=0,
        max_inputs=0,
    ),
    NodeSpec(
        kind="Output",
        description="Graph output placeholder.",
        category="IO",
        params=MappingProxyType({}),
        infer_shape=_identity_shape,
        outputs=0,
    ),
    NodeSpec(
        kind="Linear",
        description="Fully-connected layer",
        category="Core",
        params=MappingProxyType(
            {
                "in_features": _number("In Features", 128, min=1, required=True),
                "out_features": _number("Out Features", 64, min=1, required=True),
                "bias": _flag("Bias", True),
            }
        ),
        infer_shape=_linear_shape,
        validate=_validate_linear,
        module="nn.Linear",
        count_params=_linear_params,
    ),
    _passthrough("ReLU", "ReLU activation", "Activation"),
    _passthrough(
        "LeakyReLU",
        "Leaky ReLU activation",
        "Activation",
        negative_slope=_number("Negative Slope", 0.01, min=0, step=0.01),
    ),
    _passthrough("Sigmoid", "Sigmoid activation", "Activation"),
    _passthrough("Tanh", "Tanh activation", "Activation"),
    NodeSpec(
        kind="BatchNorm1d",
        description="1D BatchNorm",
        category="Normalization",
        params=MappingProxyType(
            {"num_features": _number("Num Features", 64, min=1, required=True)}
        ),
        infer_shape=_batchnorm_shape("BatchNorm1d", 2, 3),
        validate=_validate_batchnorm("BatchNorm1d"),
        module="nn.BatchNorm1d",
        count_params=_batchnorm_params,
    ),
    NodeSpec(
        kind="BatchNorm2d",
        description="2D BatchNorm",
        category="Normalization",
        params=MappingProxyType(
            {"num_features": _number("Num Features", 64, min=1, required=True)}
        ),
        infer_shape=_batchnorm_shape("BatchNorm2d", 4),
        validate=_validate_batchnorm("BatchNorm2d"),
        module="nn.BatchNorm2d",
        count_params=_batchnorm_params,
    ),
    _passthrough(
        "Dropout",
        "Dropout layer",
        "Regularization",
        p=_number("Dropout P", 0.5, min=0, max=1, step=0.05),
    ),
    NodeSpec(
        kind="Flatten",
        description="Flatten tensor",
        category="Utility",
        params=MappingProxyType(
            {
                "start_dim": _number("Start Dim", 1),
                "end_dim": _number("End Dim", -1),
            }
        ),
        infer_shape=_flatten,
        module="nn.Flatten",
    ),
    NodeSpec(
        kind="Conv2d",
        description="2D Convolution",
        category="Convolution",
        params=MappingProxyType(
            {
                "in_channels": _number("In Channels", 3, min=1, required=True),
                "out_channels": _number("Out Channels", 64, min=1, required=True),
                "kernel_size": _number("Kernel Size", 3, min=1, help="Int or pair"),
                "stride": _number("Stride", 1, min=1),
                "padding": _number("Padding", 0, min=0),
                "dilation": _number("Dilation", 1, min=1),
                "bias": _flag("Bias", True),
            }
        ),
        infer_shape=_conv2d_shape,
        validate=_validate_conv2d,
        module="nn.Conv2d",
        count_params=_conv2d_params,
    ),
    _pool_spec("MaxPool2d", "2D Max pooling"),
    _pool_spec("AvgPool2d", "2D Average pooling"),
    NodeSpec(
        kind="AdaptiveAvgPool2d",
        description="Adaptive Avg Pool",
        category="Pooling",
        params=MappingProxyType(
            {"output_size": _number("Output Size", 1, min=1, help="Int or pair")}
        ),
        infer_shape=_adaptive_pool_shape,
        module="nn.AdaptiveAvgPool2d",
    ),
    NodeSpec(
        kind="Add",
        description="Element-wise add",
        category="Graph",
        params=MappingProxyType({}),
        infer_shape=_add_shape,
        min_inputs=2,
        max_inputs=8,
        validate=_validate_add,
    ),
    NodeSpec(
        kind="Concat",
        description="Concatenate tensors",
        category="Graph",
        params=MappingProxyType({"dim": _number("Concat Dim", 1)}),
        infer_shape=_concat_shape,
        min_inputs=2,
        max_inputs=8,
        validate=_validate_concat,
    ),
    NodeSpec(
        kind="ResidualBlock",
        description="Conv-BN-ReLU x2 residual block",
        category="Composite",
        params=MappingProxyType(
            {
                "in_channels": _number("In Channels", 64, min=1),
                "out_channels": _number("Out Channels", 64, min=1),
                "stride": _number("Stride", 1, min=1),
                "use_projection": _flag(
                    "Projection", False, help="Use 1x1 conv shortcut"
                ),
            }
        ),
        infer_shape=_residual_shape,
        validate=_validate_residual,
        module="ResidualBlock",
        count_params=_residual_params,
    ),
    NodeSpec(
        kind="Embeddings",
        description="nn.Embedding layer",
        category="Sequence",
        params=MappingProxyType(
            {
                "num_embeddings": _number("Vocab Size", 1000, min=1),
                "embedding_dim": _number("Embedding Dim", 128, min=1),
            }
        ),
        infer_shape=_embedding_shape,
        module="nn.Embedding",
        count_params=_embedding_params,
    ),
    _recurrent_spec("LSTM", gates=4),
    _recurrent_spec("GRU", gates=3),
]

REGISTRY: Mapping[str, NodeSpec] = MappingProxyType({s.kind: s for s in _SPECS})

# Kinds whose module returns (output, state) instead of a tensor.
RECURRENT_KINDS = frozenset({"LSTM", "GRU"})


def get_spec(kind: str, registry: Mapping[str, NodeSpec] = REGISTRY) -> NodeSpec | None:
    return registry.get(kind)


def default_params(kind: str, registry: Mapping[str, NodeSpec] = REGISTRY) -> dict[str, Any]:
    """Fresh parameter dict for a new node of ``kind``. Raises KeyError if unknown."""
    spec = registry[kind]
    return {
        key: list(p.default) if isinstance(p.default, list) else p.default
        for key, p in spec.params.items()
    }


def describe_registry(registry: Mapping[str, NodeSpec] = REGISTRY) -> list[NodeKindInfo]:
    return [spec.describe() for spec in registry.values()]
