"""
Compile REST routes.

All routes are mounted under /api by main.py.  The handlers are thin: they
validate the request shape with pydantic and hand the document to
graphscript.compiler, returning the CompiledUnit as JSON.  Compile failures
are a normal 200 response with diagnostics; only malformed requests get 422.
"""
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from graphscript.compiler import compile_pipeline
from graphscript.compiler.registry import DescriptorRegistry

router = APIRouter()


class CompileRequest(BaseModel):
    document: Dict[str, Any]
    target: Optional[str] = None
    mode: Literal["full", "until_target"] = "full"
    pipeline_id: Optional[str] = None


class DiagnosticModel(BaseModel):
    kind: str
    node_id: Optional[str] = None
    message: str
    severity: str


class CompileResponse(BaseModel):
    ok: bool
    script: Optional[str] = None
    dependencies: List[str] = Field(default_factory=list)
    diagnostics: List[DiagnosticModel] = Field(default_factory=list)


class DescriptorInfo(BaseModel):
    type: str
    category: str
    is_output: bool
    preview: str
    dependencies: List[str]


def _registry(request: Request) -> DescriptorRegistry:
    return request.app.state.registry


# ── POST /compile ─────────────────────────────────────────────────────────────

@router.post("/compile", response_model=CompileResponse)
def compile_document(body: CompileRequest, request: Request) -> CompileResponse:
    unit = compile_pipeline(
        body.document,
        _registry(request),
        target=body.target,
        mode=body.mode,
        pipeline_id=body.pipeline_id,
        settings=request.app.state.settings,
    )
    payload = unit.to_dict()
    return CompileResponse(ok=unit.ok, **payload)


# ── GET /descriptors ──────────────────────────────────────────────────────────

@router.get("/descriptors", response_model=List[DescriptorInfo])
def list_descriptors(request: Request) -> List[DescriptorInfo]:
    registry = _registry(request)
    result = []
    for type_name in registry.types():
        descriptor = registry.resolve(type_name)
        result.append(
            DescriptorInfo(
                type=type_name,
                category=descriptor.category.value,
                is_output=descriptor.is_output,
                preview=descriptor.preview.value,
                dependencies=list(descriptor.dependencies),
            )
        )
    return result
