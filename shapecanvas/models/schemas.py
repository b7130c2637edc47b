from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from typing import Any, Literal

DType = Literal["float32", "float16", "bfloat16", "int64", "int32"]
NodeStatus = Literal["pending", "valid", "warning", "error"]
IssueLevel = Literal["warning", "error"]


class GraphNode(BaseModel):
    id: str
    kind: str = Field(validation_alias=AliasChoices("kind", "type"))
    label: str = ""
    params: dict[str, Any] = Field(default_factory=dict)


class GraphEdge(BaseModel):
    id: str
    source: str = Field(validation_alias=AliasChoices("source", "from"))
    target: str = Field(validation_alias=AliasChoices("target", "to"))
    port: str | None = None


class TrainingConfig(BaseModel):
    task: Literal["classification", "regression"] = "classification"
    num_classes: int | None = 10
    loss: Literal["CrossEntropyLoss", "MSELoss", "BCEWithLogitsLoss"] = "CrossEntropyLoss"
    optimizer: Literal["Adam", "SGD", "AdamW"] = "Adam"
    learning_rate: float = 0.001
    batch_size: int = 32
    epochs: int = 10
    mixed_precision: bool = False
    device_pref: Literal["auto", "cpu", "cuda"] = "auto"


class InputSpec(BaseModel):
    shape: list[int] = Field(default_factory=lambda: [1, 3, 224, 224])
    dtype: DType = "float32"


class Graph(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)
    training: TrainingConfig = Field(default_factory=TrainingConfig)
    input_spec: InputSpec = Field(
        default_factory=InputSpec,
        validation_alias=AliasChoices("input_spec", "inputSpec"),
    )


class ShapeResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    node_id: str
    shape: list[int] | None = None
    dtype: DType | None = None
    status: NodeStatus = "pending"
    messages: list[str] = Field(default_factory=list)


class ShapeContext(BaseModel):
    """Whole-graph inference result. Built once per evaluation, never updated."""

    model_config = ConfigDict(frozen=True)

    results: dict[str, ShapeResult] = Field(default_factory=dict)
    trace: list[str] = Field(default_factory=list)
    has_errors: bool = False


class GraphIssue(BaseModel):
    level: IssueLevel
    message: str
    node_id: str | None = None


class CodegenResult(BaseModel):
    code: str = ""
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ParamDef(BaseModel):
    label: str
    type: Literal["number", "boolean", "select", "text", "number-array"]
    default: Any
    min: float | None = None
    max: float | None = None
    step: float | None = None
    options: list[str] | None = None
    required: bool = False
    help: str | None = None


class NodeKindInfo(BaseModel):
    kind: str
    description: str
    category: str
    params: dict[str, ParamDef]
    min_inputs: int
    max_inputs: int | None = None
    outputs: int


class InferenceReport(BaseModel):
    context: ShapeContext
    issues: list[GraphIssue] = Field(default_factory=list)
    total_params: int | None = None
