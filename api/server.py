"""
FastAPI server for the Reality Map API.

This module defines REST API endpoints for:
- Storing the upstream extract for a map
- Generating outcome trees and their analysis
- Cancelling a running generation
- Reading the published tree, paths and analysis

The API keeps everything in process memory; it is a thin layer over
``GenerationOrchestrator``.
"""

from dataclasses import asdict
from enum import Enum
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from reality_core.config import GenerationConfig, configure_logging
from reality_core.errors import (
    GenerationInProgress,
    GenerationTimeout,
    InvalidConfiguration,
    MapNotFound,
    NoSourceData,
    RealityMapError,
)
from reality_core.models import Extract, Snapshot
from reality_core.orchestrator import GenerationOrchestrator, MapState


configure_logging()

app = FastAPI(
    title="Reality Map API",
    description="API for branching outcome tree generation and analysis",
    version="0.1.0"
)

# Extracts stored per map id (stands in for the upstream data source)
_extract_store: Dict[str, Dict[str, Any]] = {}


def _fetch_extract(map_id: str) -> Dict[str, Any]:
    if map_id not in _extract_store:
        raise NoSourceData(f"No extract stored for map '{map_id}'")
    return _extract_store[map_id]


orchestrator = GenerationOrchestrator(fetch_extract=_fetch_extract)


class FactorPayload(BaseModel):
    category: str
    direction: str
    severity: float


class TransitionPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_label: str = Field(alias="fromLabel")
    to_label: str = Field(alias="toLabel")
    observed_frequency: Optional[float] = Field(None, alias="observedFrequency")
    factors: List[FactorPayload] = Field(default_factory=list)
    label: Optional[str] = None


class ExtractRequest(BaseModel):
    """Request model for storing a map's extract; accepts snake_case or camelCase keys."""
    model_config = ConfigDict(populate_by_name=True)

    transitions: List[TransitionPayload]
    seed_context: Dict[str, Any] = Field(default_factory=dict, alias="seedContext")


class GenerateResponse(BaseModel):
    """Response model for a finished generation."""
    map_id: str
    version: int
    fingerprint: str
    total_nodes: int
    total_paths: int
    max_depth_reached: int
    executive_summary: Optional[str] = None


def _plain(value: Any) -> Any:
    """Converts enums and tuples inside asdict() output to JSON types."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {_plain(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def _serialize_tree(snapshot: Snapshot) -> Dict[str, Any]:
    """
    Serializes the snapshot's tree to a JSON-serializable dict.

    Args:
        snapshot: Published snapshot

    Returns:
        Dict with nodes, edges and metadata
    """
    tree = snapshot.tree
    nodes = []
    for node in tree.nodes:
        node_dict = _plain(asdict(node))
        node_dict["factor_tags"] = list(node.factor_tags)
        nodes.append(node_dict)

    return {
        "map_id": snapshot.map_id,
        "version": snapshot.version,
        "nodes": nodes,
        "edges": [_plain(asdict(edge)) for edge in tree.edges],
        "metadata": _plain(asdict(tree.metadata)),
        "parameters": dict(tree.parameters),
        "fingerprint": tree.fingerprint(),
    }


def _serialize_paths(snapshot: Snapshot) -> Dict[str, Any]:
    return {
        "map_id": snapshot.map_id,
        "version": snapshot.version,
        "paths": [_plain(asdict(path)) for path in snapshot.paths],
    }


def _serialize_report(snapshot: Snapshot) -> Dict[str, Any]:
    return {
        "map_id": snapshot.map_id,
        "version": snapshot.version,
        "analysis": _plain(asdict(snapshot.report)),
    }


def _serialize_state(state: MapState) -> Dict[str, Any]:
    return {
        "map_id": state.map_id,
        "status": state.status.value,
        "current_version": state.current.version if state.current is not None else None,
        "versions": [s.version for s in state.history],
        "error": state.error,
        "events": [{"event": name, **payload} for name, payload in state.events],
    }


def _http_error(error: RealityMapError) -> HTTPException:
    if isinstance(error, InvalidConfiguration):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, NoSourceData):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, GenerationInProgress):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, MapNotFound):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, GenerationTimeout):
        return HTTPException(status_code=504, detail=str(error))
    return HTTPException(status_code=500, detail=f"Generation failed: {error}")


def _published(map_id: str) -> Snapshot:
    try:
        snapshot = orchestrator.current(map_id)
    except RealityMapError as e:
        raise _http_error(e)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"Map '{map_id}' has no published version")
    return snapshot


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"message": "Reality Map API", "status": "running"}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.put("/maps/{map_id}/extract")
async def store_extract(map_id: str, request: ExtractRequest):
    """Validates and stores the extract a map generates from."""
    payload = request.model_dump()
    try:
        extract = Extract.from_dict(payload)
    except RealityMapError as e:
        raise _http_error(e)
    _extract_store[map_id] = payload
    return {"map_id": map_id, "transitions": len(extract.transitions)}


@app.post("/maps/{map_id}/generate", response_model=GenerateResponse)
def generate(map_id: str, request: Optional[GenerationConfig] = None):
    """
    Generates a new version of the map.

    Flow:
    1. Fetches the stored extract
    2. Builds the tree, extracts paths and runs the analysis
    3. Publishes the snapshot as the map's current version

    Runs synchronously; FastAPI executes it in its threadpool.
    """
    try:
        snapshot = orchestrator.generate(map_id, request or GenerationConfig())
    except RealityMapError as e:
        raise _http_error(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Internal server error: {str(e)}"
        )

    metadata = snapshot.tree.metadata
    return GenerateResponse(
        map_id=map_id,
        version=snapshot.version,
        fingerprint=snapshot.tree.fingerprint(),
        total_nodes=metadata.total_nodes,
        total_paths=metadata.total_paths,
        max_depth_reached=metadata.max_depth_reached,
        executive_summary=snapshot.report.executive_summary,
    )


@app.post("/maps/{map_id}/cancel")
async def cancel(map_id: str):
    """Requests cancellation of the map's running generation."""
    return {"map_id": map_id, "cancelled": orchestrator.cancel(map_id)}


@app.get("/maps/{map_id}")
async def map_state(map_id: str):
    try:
        return _serialize_state(orchestrator.state(map_id))
    except RealityMapError as e:
        raise _http_error(e)


@app.get("/maps/{map_id}/tree")
async def map_tree(map_id: str):
    return _serialize_tree(_published(map_id))


@app.get("/maps/{map_id}/paths")
async def map_paths(map_id: str):
    return _serialize_paths(_published(map_id))


@app.get("/maps/{map_id}/analysis")
async def map_analysis(map_id: str):
    return _serialize_report(_published(map_id))


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
