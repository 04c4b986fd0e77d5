"""
FastAPI server exposing the compiler to the editor.

Start with:
    python -m graphscript.server.main

Or via uvicorn directly:
    uvicorn graphscript.server.main:app --port 3001 --reload
"""
from __future__ import annotations

import logging
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from graphscript import __version__
from graphscript.compiler.registry import DescriptorRegistry, build_registry
from graphscript.config import CompilerSettings
from graphscript.server.routes.compile_routes import router

logger = logging.getLogger(__name__)


def create_app(
    registry: Optional[DescriptorRegistry] = None,
    settings: Optional[CompilerSettings] = None,
) -> FastAPI:
    """
    Build the API app.  The registry is populated and frozen here, before the
    first request, and only read afterwards.
    """
    settings = settings or CompilerSettings.from_env()
    if registry is None:
        registry = build_registry(load_plugins=settings.load_plugins)
    elif not registry.frozen:
        registry.freeze()

    app = FastAPI(title="graphscript API", version=__version__)
    app.state.registry = registry
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router, prefix="/api")

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "descriptors": len(registry)}

    logger.info("graphscript API ready with %d descriptor type(s)", len(registry))
    return app


def _create_default_app() -> FastAPI:
    # Load .env from the working directory so GRAPHSCRIPT_* settings apply.
    load_dotenv()
    settings = CompilerSettings.from_env()
    logging.basicConfig(
        level=settings.logging_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    return create_app(settings=settings)


app = _create_default_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "graphscript.server.main:app",
        host="0.0.0.0",
        port=3001,
        reload=True,
    )
