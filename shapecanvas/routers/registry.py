"""Node kind catalogue for the editor palette and parameter forms."""

from typing import Any
from fastapi import APIRouter, HTTPException

from shapecanvas.compiler.registry import REGISTRY, default_params, describe_registry
from shapecanvas.models.schemas import NodeKindInfo

router = APIRouter(prefix="/api/registry", tags=["registry"])


@router.get("", response_model=list[NodeKindInfo])
async def list_kinds():
    return describe_registry()


@router.get("/{kind}/defaults")
async def kind_defaults(kind: str) -> dict[str, Any]:
    """Default params for a new node of the given kind."""
    if kind not in REGISTRY:
        raise HTTPException(status_code=404, detail=f"Unknown node kind: {kind}")
    return default_params(kind)
