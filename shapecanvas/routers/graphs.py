"""Graph inference, validation and template endpoints."""

import logging
from typing import Any
from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from shapecanvas.compiler.normalize_graph import normalize_graph_dict
from shapecanvas.compiler.param_count import count_parameters
from shapecanvas.compiler.shape_inference import infer_shapes
from shapecanvas.compiler.validator import validate_graph
from shapecanvas.models.schemas import Graph, GraphIssue, InferenceReport
from shapecanvas.templates import TEMPLATES, get_template, list_templates

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/graphs", tags=["graphs"])


@router.post("/infer", response_model=InferenceReport)
async def infer(graph: Graph):
    """Infer per-node shapes and report structural issues.

    The parameter estimate is only returned for shape-clean graphs.
    """
    context = infer_shapes(graph)
    issues = validate_graph(graph)
    logger.info(
        "Inferred graph nodes=%d edges=%d has_errors=%s issues=%d",
        len(graph.nodes),
        len(graph.edges),
        context.has_errors,
        len(issues),
    )
    return InferenceReport(
        context=context,
        issues=issues,
        total_params=None if context.has_errors else count_parameters(graph),
    )


@router.post("/validate", response_model=list[GraphIssue])
async def validate(graph: Graph):
    """Structural checks only (no shape inference)."""
    return validate_graph(graph)


@router.post("/normalize", response_model=Graph)
async def normalize(raw: dict[str, Any]):
    """Canonicalize an imported graph document."""
    try:
        return normalize_graph_dict(raw)
    except ValidationError as e:
        logger.warning("Rejected graph import: %s", e)
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))


@router.get("/templates", response_model=list[str])
async def templates():
    return list_templates()


@router.get("/templates/{name}", response_model=Graph)
async def template(name: str):
    if name not in TEMPLATES:
        raise HTTPException(status_code=404, detail=f"Unknown template: {name}")
    return get_template(name)
