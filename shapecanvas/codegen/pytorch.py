"""PyTorch source generation from a shape-checked graph."""

from __future__ import annotations
import keyword
import logging
import re
from datetime import datetime
from typing import Any, Mapping

from shapecanvas.codegen.ir import Apply, Declare, ModelIR, Return
from shapecanvas.codegen.render import (
    comment_block,
    format_kwargs,
    format_value,
    indent,
    render_model,
    timestamp_comment,
)
from shapecanvas.compiler.registry import REGISTRY, RECURRENT_KINDS, NodeSpec
from shapecanvas.compiler.shape_inference import infer_shapes
from shapecanvas.compiler.validator import topological_sort
from shapecanvas.models.schemas import (
    CodegenResult,
    Graph,
    GraphNode,
    ShapeContext,
    TrainingConfig,
)

logger = logging.getLogger(__name__)

IMPORTS = """import argparse

import torch
import torch.nn as nn
import torch.nn.functional as F
from torch.utils.data import DataLoader, Dataset"""

RESIDUAL_BLOCK = '''class ResidualBlock(nn.Module):
    def __init__(self, in_channels, out_channels, stride=1, use_projection=False):
        super().__init__()
        self.conv1 = nn.Conv2d(in_channels, out_channels, kernel_size=3, stride=stride, padding=1, bias=False)
        self.bn1 = nn.BatchNorm2d(out_channels)
        self.relu = nn.ReLU(inplace=True)
        self.conv2 = nn.Conv2d(out_channels, out_channels, kernel_size=3, stride=1, padding=1, bias=False)
        self.bn2 = nn.BatchNorm2d(out_channels)
        self.use_projection = use_projection
        if use_projection:
            self.proj = nn.Sequential(
                nn.Conv2d(in_channels, out_channels, kernel_size=1, stride=stride, bias=False),
                nn.BatchNorm2d(out_channels),
            )
        else:
            self.proj = nn.Identity()

    def forward(self, x):
        identity = self.proj(x)
        out = self.relu(self.bn1(self.conv1(x)))
        out = self.bn2(self.conv2(out))
        return self.relu(out + identity)'''

OPTIMIZERS: dict[str, str] = {
    "Adam": "torch.optim.Adam(model.parameters(), lr=args.lr)",
    "SGD": "torch.optim.SGD(model.parameters(), lr=args.lr, momentum=0.9)",
    "AdamW": "torch.optim.AdamW(model.parameters(), lr=args.lr)",
}

LOSSES: dict[str, str] = {
    "CrossEntropyLoss": "nn.CrossEntropyLoss()",
    "MSELoss": "nn.MSELoss()",
    "BCEWithLogitsLoss": "nn.BCEWithLogitsLoss()",
}

_INPUT_NAME = re.compile(r"x(_\d+)?")
_RESERVED = {"inputs", "self", "torch", "nn", "F", "identity"}


def safe_identifier(node_id: str) -> str:
    """Turn a node id into a Python identifier usable as variable and attribute."""
    name = re.sub(r"[^0-9a-zA-Z_]", "_", node_id)
    if not name or name[0].isdigit():
        name = f"n_{name}"
    if keyword.iskeyword(name) or name in _RESERVED or _INPUT_NAME.fullmatch(name):
        name = f"{name}_"
    return name


def _whole(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, (list, tuple)):
        return [_whole(item) for item in value]
    return value


def _module_call(spec: NodeSpec, node: GraphNode) -> str:
    resolved = spec.resolve_params(node.params)
    kwargs = {}
    for key, definition in spec.params.items():
        value = resolved[key]
        # integer-valued schema params must reach torch as ints (3.0 -> 3)
        if isinstance(definition.default, int) and not isinstance(definition.default, bool):
            value = _whole(value)
        kwargs[key] = value
    return f"{spec.module}({format_kwargs(kwargs)})"


def build_model_ir(
    graph: Graph,
    registry: Mapping[str, NodeSpec] = REGISTRY,
    class_name: str = "VisualNet",
) -> tuple[ModelIR, list[str]]:
    """Translate the graph into declarations and forward statements.

    Returns the IR plus warnings about node ids that share an identifier.
    """
    ordered, _ = topological_sort(graph.nodes, graph.edges)
    ir = ModelIR(class_name=class_name)
    warnings: list[str] = []
    tensor_names: dict[str, str] = {}
    owners: dict[str, str] = {}
    outputs: list[str] = []

    for node in ordered:
        if node.kind != "Input":
            continue
        name = "x" if not ir.inputs else f"x_{len(ir.inputs)}"
        ir.inputs.append(name)
        tensor_names[node.id] = name

    for node in ordered:
        spec = registry[node.kind]
        if node.kind == "Input":
            continue
        upstream = [
            tensor_names[e.source]
            for e in graph.edges
            if e.target == node.id and e.source in tensor_names
        ]
        source = upstream[0] if upstream else "x"

        if node.kind == "Output":
            expr = source if len(upstream) <= 1 else f"({', '.join(upstream)})"
            tensor_names[node.id] = expr
            outputs.append(expr)
            continue

        name = safe_identifier(node.id)
        if name in owners:
            base, counter = name, 2
            while f"{base}_{counter}" in owners:
                counter += 1
            name = f"{base}_{counter}"
            warnings.append(
                f"{node.id}: identifier '{base}' is shared with node '{owners[base]}', "
                f"renamed to '{name}'"
            )
        owners[name] = node.id
        tensor_names[node.id] = name

        if node.kind == "Add":
            ir.statements.append(Apply(name, " + ".join(upstream)))
        elif node.kind == "Concat":
            dim = spec.resolve_params(node.params)["dim"]
            ir.statements.append(
                Apply(name, f"torch.cat([{', '.join(upstream)}], dim={format_value(dim)})")
            )
        elif spec.module is not None:
            if node.kind == "ResidualBlock":
                ir.needs_residual = True
            ir.declarations.append(Declare(name, _module_call(spec, node)))
            ir.statements.append(
                Apply(name, f"self.{name}({source})", unpack=node.kind in RECURRENT_KINDS)
            )
        else:
            ir.statements.append(Apply(name, source))

    ir.result = Return(tuple(outputs))
    return ir, warnings


def _sample_expr(shape: list[int], dtype: str | None) -> str:
    """Per-sample tensor for the synthetic dataset (batch axis dropped)."""
    dims = shape[1:] if len(shape) > 1 else shape
    dims = [dim if dim > 0 else 1 for dim in dims]
    size = "(" + ", ".join(str(dim) for dim in dims) + ("," if len(dims) == 1 else "") + ")"
    if dtype in ("int64", "int32"):
        return f"torch.randint(0, 2, {size})"
    return f"torch.randn({size})"


def _target_expr(training: TrainingConfig) -> str:
    classes = max(1, training.num_classes or 1)
    if training.loss == "BCEWithLogitsLoss":
        return f"torch.randint(0, 2, ({classes},)).float()"
    if training.task == "classification":
        return f"torch.randint(0, {classes}, ())"
    return f"torch.randn({classes})"


def render_dataset(samples: list[str], target: str, size: int) -> str:
    if len(samples) == 1:
        sample = samples[0]
    else:
        sample = "[" + ", ".join(samples) + "]"
    return f'''class SyntheticDataset(Dataset):
    """Random samples shaped like the graph input, so the script runs standalone."""

    def __init__(self, size={size}):
        self.size = size

    def __len__(self):
        return self.size

    def __getitem__(self, index):
        sample = {sample}
        target = {target}
        return sample, target'''


def render_training(training: TrainingConfig, multi_input: bool) -> str:
    """train_one_epoch and evaluate; the step body depends on mixed precision."""
    to_device = (
        "[tensor.to(device) for tensor in inputs]" if multi_input else "inputs.to(device)"
    )
    call = "model(*inputs)" if multi_input else "model(inputs)"

    if training.mixed_precision:
        step = f"""optimizer.zero_grad()
with torch.autocast(device_type=device.type, enabled=scaler.is_enabled()):
    outputs = {call}
    loss = criterion(outputs, targets)
scaler.scale(loss).backward()
scaler.step(optimizer)
scaler.update()"""
    else:
        step = f"""optimizer.zero_grad()
outputs = {call}
loss = criterion(outputs, targets)
loss.backward()
optimizer.step()"""

    return f"""def train_one_epoch(model, dataloader, criterion, optimizer, device, scaler=None):
    model.train()
    loss_total = 0.0
    for inputs, targets in dataloader:
        inputs = {to_device}
        targets = targets.to(device)
{indent(step, 2)}
        loss_total += loss.item()
    return loss_total / max(1, len(dataloader))


def evaluate(model, dataloader, criterion, device):
    model.eval()
    loss_total = 0.0
    with torch.no_grad():
        for inputs, targets in dataloader:
            inputs = {to_device}
            targets = targets.to(device)
            outputs = {call}
            loss_total += criterion(outputs, targets).item()
    return loss_total / max(1, len(dataloader))"""


def render_main(training: TrainingConfig, class_name: str) -> str:
    if training.mixed_precision:
        scaler = 'scaler = torch.amp.GradScaler(device.type, enabled=device.type == "cuda")'
    else:
        scaler = "scaler = None"
    return f"""def main():
    parser = argparse.ArgumentParser(description="{class_name} training stub")
    parser.add_argument("--epochs", type=int, default={training.epochs})
    parser.add_argument("--batch-size", type=int, default={training.batch_size})
    parser.add_argument("--lr", type=float, default={training.learning_rate!r})
    parser.add_argument("--device", type=str, default="{training.device_pref}", choices=["auto", "cpu", "cuda"])
    args = parser.parse_args()

    if args.device == "cuda" and torch.cuda.is_available():
        device = torch.device("cuda")
    elif args.device == "cpu":
        device = torch.device("cpu")
    else:
        device = torch.device("cuda" if torch.cuda.is_available() else "cpu")

    model = {class_name}().to(device)
    criterion = {LOSSES[training.loss]}
    optimizer = {OPTIMIZERS[training.optimizer]}
    {scaler}

    dataloader = DataLoader(SyntheticDataset(), batch_size=args.batch_size)
    for epoch in range(args.epochs):
        train_loss = train_one_epoch(model, dataloader, criterion, optimizer, device, scaler)
        val_loss = evaluate(model, dataloader, criterion, device)
        print(f"Epoch {{epoch + 1}}: train_loss={{train_loss:.4f}} val_loss={{val_loss:.4f}}")


if __name__ == "__main__":
    main()"""


def collect_messages(context: ShapeContext, status: str) -> list[str]:
    return [
        f"{result.node_id}: {message}"
        for result in context.results.values()
        if result.status == status
        for message in result.messages
    ]


def emit_pytorch(
    graph: Graph,
    context: ShapeContext | None = None,
    *,
    registry: Mapping[str, NodeSpec] = REGISTRY,
    class_name: str = "VisualNet",
    dataset_size: int = 4,
    generated_at: datetime | None = None,
) -> CodegenResult:
    """Generate a standalone PyTorch training script for the graph.

    Nothing is emitted while any node is in error; the result then carries
    every error message as ``"<nodeId>: <message>"``.
    """
    if context is None:
        context = infer_shapes(graph, registry)

    if context.has_errors:
        errors = collect_messages(context, "error")
        logger.warning("Code generation blocked by %d error(s)", len(errors))
        return CodegenResult(
            errors=errors or ["Graph contains errors. Fix issues before exporting."]
        )

    ir, warnings = build_model_ir(graph, registry, class_name)

    # Input nodes have no incoming edges, so declaration order is forward order.
    samples = [
        _sample_expr(
            context.results[n.id].shape or graph.input_spec.shape,
            context.results[n.id].dtype,
        )
        for n in graph.nodes
        if n.kind == "Input"
    ] or [_sample_expr(graph.input_spec.shape, graph.input_spec.dtype)]

    header = comment_block(
        "\n".join(
            [
                "PyTorch model generated by ShapeCanvas",
                timestamp_comment(generated_at),
                "Serialized graph:",
                graph.model_dump_json(indent=2),
            ]
        )
    )

    sections = [IMPORTS + "\n\n" + header]
    if ir.needs_residual:
        sections.append(RESIDUAL_BLOCK)
    sections.extend(
        [
            render_model(ir),
            render_training(graph.training, multi_input=len(ir.inputs) > 1),
            render_dataset(samples, _target_expr(graph.training), dataset_size),
            render_main(graph.training, class_name),
        ]
    )
    code = "\n\n\n".join(sections) + "\n"

    logger.info(
        "Generated %s with %d declaration(s) and %d statement(s)",
        class_name,
        len(ir.declarations),
        len(ir.statements),
    )
    return CodegenResult(
        code=code,
        warnings=collect_messages(context, "warning") + warnings,
    )
