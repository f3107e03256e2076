"""FastAPI app: serve npm dependency graphs and package metadata for a frontend."""

from __future__ import annotations

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from npmgraph.api import get_default_service
from npmgraph.core.graph import DEFAULT_MAX_DEPTH, DEFAULT_MAX_NODES
from npmgraph.core.service import BuildStatus, GraphService

app = FastAPI(
    title="npmgraph API",
    description="npm package dependency graph backend",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_service() -> GraphService:
    """Shared service, so every request goes through the same registry cache."""
    return get_default_service()


@app.get("/api/graph")
def get_graph(
    packages: list[str] = Query(..., description="Seed package names"),
    max_depth: int = Query(DEFAULT_MAX_DEPTH, ge=0, le=10),
    max_nodes: int = Query(DEFAULT_MAX_NODES, ge=1, le=500),
    refresh: bool = Query(False, description="Drop cached registry responses first"),
    service: GraphService = Depends(get_service),
) -> dict:
    """Build the dependency graph of the given packages."""
    result = service.build_graph(packages, max_depth, max_nodes, clear_cache=refresh)
    if result.status is BuildStatus.TIMED_OUT:
        raise HTTPException(status_code=504, detail=result.message)
    if result.status is BuildStatus.ERRORED:
        raise HTTPException(status_code=500, detail=f"Failed to build graph: {result.message}")
    return result.to_dict()


@app.get("/api/packages/{package_name:path}")
def get_package(package_name: str, service: GraphService = Depends(get_service)) -> dict:
    """Latest version and declared dependencies of one package."""
    info = service.get_package_info(package_name)
    if info is None:
        raise HTTPException(status_code=404, detail=f"Package not found: {package_name}")
    return info.to_dict()


@app.post("/api/cache/clear")
def clear_cache(service: GraphService = Depends(get_service)) -> dict:
    """Forget cached registry responses (forced refresh)."""
    service.clear_cache()
    return {"cleared": True}
