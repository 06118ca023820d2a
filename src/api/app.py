"""FastAPI application entry point.

Single Responsibility: Configure the FastAPI application.

The answering engine is injected: pass a runner to ``create_app`` or set
``app.state.runner`` at startup.
"""

from __future__ import annotations

import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..engine.chain_runners import BaseChainRunner
from . import routes

APP_TITLE = "Archivist Lore Assistant API"
APP_DESCRIPTION = "REST API for grounded answers over a lore vault"
APP_VERSION = "1.0.0"

CORS_ORIGINS = [
    "http://localhost:5173",      # Vite dev server
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


def _cors_origins() -> list[str]:
    origins = list(CORS_ORIGINS)
    extra_origins = os.getenv("CORS_ORIGINS", "")
    if extra_origins:
        origins.extend([o.strip() for o in extra_origins.split(",") if o.strip()])
    return origins


def create_app(runner: BaseChainRunner | None = None) -> FastAPI:
    app = FastAPI(
        title=APP_TITLE,
        description=APP_DESCRIPTION,
        version=APP_VERSION,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(routes.router, prefix="/api")
    app.state.runner = runner

    @app.get("/api")
    async def root():
        """API root endpoint."""
        return {
            "name": APP_TITLE,
            "version": APP_VERSION,
            "docs": "/api/docs",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.api.app:app",
        host="0.0.0.0",
        port=int(os.getenv("API_PORT", "8000")),
        reload=True,
    )
