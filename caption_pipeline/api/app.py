"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from caption_pipeline import __version__
from caption_pipeline.api.context import ServiceContext
from caption_pipeline.api.routes import build_error_response
from caption_pipeline.api.routes import router as api_router
from caption_pipeline.errors import CaptionPipelineError
from caption_pipeline.utils.constant import API_CORS_ORIGINS
from caption_pipeline.utils.logging_config import get_logger

logger = get_logger(__name__)


def create_app(
    context: ServiceContext | None = None, *, cors_origins: str = API_CORS_ORIGINS
) -> FastAPI:
    """Create the API application.

    Args:
        context: Prebuilt services. When omitted, one is built from the
            environment at startup and closed at shutdown.
        cors_origins: Comma-separated allowed origins; CORS is off when empty.

    Returns:
        Configured FastAPI application instance.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = getattr(app.state, "context", None) is None
        if owned:
            app.state.context = ServiceContext.build()
        logger.info("Caption pipeline API started")
        try:
            yield
        finally:
            if owned:
                app.state.context.close()
                app.state.context = None

    app = FastAPI(
        title="Caption Pipeline API",
        version=__version__,
        docs_url="/docs",
        openapi_url="/openapi.json",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.context = context
    app.include_router(api_router)

    origins = [origin.strip() for origin in cors_origins.split(",") if origin.strip()]
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(CaptionPipelineError)
    async def _pipeline_error(_request: Request, exc: CaptionPipelineError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("Request failed: %s (%s)", exc.message, exc.code)
        return build_error_response(
            status_code=exc.status_code,
            message=exc.message,
            error_type=exc.error_type,
            code=exc.code,
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = sorted(
            {str(part) for err in exc.errors() for part in err.get("loc", ()) if part != "body"}
        )
        logger.debug("Request validation failed: fields=%s", fields)
        return build_error_response(
            status_code=400,
            message=f"Invalid request body: {', '.join(fields) or 'malformed JSON'}",
            error_type="invalid_request_error",
            code="invalid_request",
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Return a minimal health status payload."""
        return {"status": "ok"}

    return app
