"""Code generation endpoints."""

import logging
import re
from fastapi import APIRouter, HTTPException
from fastapi.responses import PlainTextResponse

from shapecanvas.codegen.pytorch import emit_pytorch
from shapecanvas.config import settings
from shapecanvas.models.schemas import CodegenResult, Graph

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/codegen", tags=["codegen"])


def _emit(graph: Graph) -> CodegenResult:
    return emit_pytorch(
        graph,
        class_name=settings.model_class_name,
        dataset_size=settings.synthetic_dataset_size,
    )


@router.post("/pytorch", response_model=CodegenResult)
async def pytorch(graph: Graph):
    """Generate a PyTorch training script, or the errors that block it."""
    result = _emit(graph)
    logger.info(
        "Codegen nodes=%d ok=%s errors=%d warnings=%d",
        len(graph.nodes),
        bool(result.code),
        len(result.errors),
        len(result.warnings),
    )
    return result


@router.post("/pytorch/download", response_class=PlainTextResponse)
async def pytorch_download(graph: Graph):
    """Same as /pytorch, returned as a downloadable .py file."""
    result = _emit(graph)
    if not result.code:
        raise HTTPException(status_code=422, detail=result.errors)
    filename = re.sub(r"(?<!^)(?=[A-Z])", "_", settings.model_class_name).lower() + ".py"
    return PlainTextResponse(
        result.code,
        media_type="text/x-python",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
