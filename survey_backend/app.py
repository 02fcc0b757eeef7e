"""
FastAPI application entry point for the survey settlement backend.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from survey_backend.config import get_settings
from survey_backend.routes import admin_router, health_router, router
from survey_backend.settlement import InvalidInputError

logger = logging.getLogger(__name__)


async def _invalid_input_handler(request: Request, exc: InvalidInputError) -> JSONResponse:
    logger.warning("Rejected settlement input on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=422, content={"detail": str(exc)})


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())
    app = FastAPI(title="Survey Settlement Backend", version="0.1.0")
    app.add_exception_handler(InvalidInputError, _invalid_input_handler)
    app.include_router(health_router)
    app.include_router(router, prefix=settings.api_prefix)
    app.include_router(admin_router, prefix=f"{settings.api_prefix}/admin")
    return app


app = create_app()
