"""Text formatting for generated Python source."""

from __future__ import annotations
from datetime import datetime, timezone
from typing import Any

from shapecanvas.codegen.ir import Apply, ModelIR

INDENT = "    "


def indent(code: str, level: int = 1) -> str:
    pad = INDENT * level
    return "\n".join(pad + line if line else line for line in code.split("\n"))


def format_value(value: Any) -> str:
    """Render a parameter value as a Python literal."""
    if isinstance(value, bool):
        return "True" if value else "False"
    if value is None:
        return "None"
    if isinstance(value, str):
        return repr(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(format_value(item) for item in value) + "]"
    return repr(value)


def format_kwargs(params: dict[str, Any]) -> str:
    return ", ".join(f"{key}={format_value(value)}" for key, value in params.items())


def comment_block(text: str) -> str:
    return "\n".join(f"# {line}" if line else "#" for line in text.split("\n"))


def timestamp_comment(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"Generated on {now.isoformat()}"


def _render_statement(statement: Apply) -> str:
    if statement.unpack:
        return f"{statement.target}, _ = {statement.expr}"
    return f"{statement.target} = {statement.expr}"


def render_model(ir: ModelIR) -> str:
    """Render the model class.

    Identical declaration lines are emitted once, keeping first-seen order.
    """
    declarations = list(
        dict.fromkeys(f"self.{d.attr} = {d.call}" for d in ir.declarations)
    )
    init_body = "\n".join(["super().__init__()", *declarations])

    if len(ir.inputs) > 1:
        signature = "def forward(self, *inputs):"
        forward_lines = [f"{name} = inputs[{idx}]" for idx, name in enumerate(ir.inputs)]
    else:
        signature = "def forward(self, x):"
        forward_lines = []
    forward_lines.extend(_render_statement(s) for s in ir.statements)

    values = ir.result.values
    if not values:
        forward_lines.append("return x")
    elif len(values) == 1:
        forward_lines.append(f"return {values[0]}")
    else:
        forward_lines.append(f"return ({', '.join(values)})")

    body = "\n".join(
        [
            "def __init__(self):",
            indent(init_body),
            "",
            signature,
            indent("\n".join(forward_lines)),
        ]
    )
    return f"class {ir.class_name}(nn.Module):\n{indent(body)}"
