"""
FastAPI application entry point for the catalog service.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from catalog.config import Settings, get_settings
from catalog.dependencies import Backend, build_backend
from catalog.errors import NotFoundError, TransportError, ValidationError
from catalog.routes import router

logger = logging.getLogger(__name__)


def _error_handler(status_code: int):
    async def handle(request: Request, exc: Exception) -> JSONResponse:
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse({"detail": str(exc)}, status_code=status_code)

    return handle


def create_app(
    backend: Optional[Backend] = None, settings: Optional[Settings] = None
) -> FastAPI:
    settings = backend.settings if backend else (settings or get_settings())
    app = FastAPI(title="Book Catalog (FastAPI)", version="0.1.0")
    app.state.backend = backend or build_backend(settings)
    app.add_exception_handler(ValidationError, _error_handler(422))
    app.add_exception_handler(NotFoundError, _error_handler(404))
    app.add_exception_handler(TransportError, _error_handler(502))
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
