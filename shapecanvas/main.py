import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shapecanvas.compiler.registry import REGISTRY
from shapecanvas.config import settings
from shapecanvas.routers import codegen, graphs, registry

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(levelname)s: %(name)s: %(message)s",
)

app = FastAPI(
    title=settings.app_name,
    description="Shape inference and PyTorch code generation for visual network graphs",
    version="0.1.0",
)

# CORS: allow the editor frontend to connect
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(registry.router)
app.include_router(graphs.router)
app.include_router(codegen.router)


@app.get("/")
async def root():
    return {"status": "ok", "service": settings.app_name}


@app.get("/health")
async def health_check():
    return {"status": "healthy", "node_kinds": len(REGISTRY)}
