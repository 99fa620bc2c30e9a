from __future__ import annotations

from fastapi import FastAPI

from src.application.dtos.common_dto import HealthResponse, RootResponse
from src.infrastructure.api.middlewares import add_default_middlewares
from src.infrastructure.api.routes.event_routes import router as event_router
from src.infrastructure.api.routes.variant_routes import router as variant_router
from src.infrastructure.config import Settings
from src.infrastructure.logging_config import configure_logging


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings)

    app = FastAPI(
        title="Image Variant Service",
        version="0.1.0",
        description="""
        ## Image Variant Service

        Origin for an image CDN: derives resized, reformatted and recompressed
        variants of immutable originals on demand and writes them through to
        storage so each variant is computed as rarely as possible.

        ### Features
        - **On-the-fly variants**: `/<original-key>/<operations>`, e.g. `/sample/1.jpg/f=webp,w=400`
        - **Write-through caching**: every computed variant is stored for the edge to reuse
        - **Oversize handling**: variants above the inline limit are redirected to their stored copy
        - **Precompute**: ingestion events produce a configured set of variants up front

        ### Authentication
        Requests must carry the origin secret header injected by the edge.

        ### Error Responses
        - **400 Bad Request**: Method other than GET
        - **403 Forbidden**: Missing or incorrect secret, or variant too large to serve
        - **500 Internal Server Error**: Original missing or transform failed
        """,
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
    )
    app.state.settings = settings
    add_default_middlewares(app, settings)

    @app.get(
        "/",
        response_model=RootResponse,
        summary="API Root",
        description="Get basic information about the variant service",
    )
    def root():
        """Get API root information."""
        return {"status": "ok", "service": "image-variant-service", "version": app.version}

    @app.get(
        "/health",
        response_model=HealthResponse,
        summary="Health Check",
        description="Check if the service is running",
    )
    def health():
        """Check API health status."""
        return {"status": "healthy"}

    app.include_router(event_router)
    # catch-all path, must stay last
    app.include_router(variant_router)
    return app


app = create_app()
