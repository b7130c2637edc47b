"""Statement-level representation of a generated model class.

The emitter decides what to declare and in which order; ``render`` decides
how it looks as text.
"""

from __future__ import annotations
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Declare:
    """``self.<attr> = <call>`` inside ``__init__``."""

    attr: str
    call: str


@dataclass(frozen=True)
class Apply:
    """``<target> = <expr>`` inside ``forward``.

    ``unpack`` discards the second element of a tuple-returning module
    (recurrent layers return ``(output, state)``).
    """

    target: str
    expr: str
    unpack: bool = False


@dataclass(frozen=True)
class Return:
    values: tuple[str, ...] = ()


@dataclass
class ModelIR:
    class_name: str
    inputs: list[str] = field(default_factory=list)
    declarations: list[Declare] = field(default_factory=list)
    statements: list[Apply] = field(default_factory=list)
    result: Return = field(default_factory=Return)
    needs_residual: bool = False
