from __future__ import annotations

from urllib.parse import quote

from fastapi import FastAPI, Request
from starlette.middleware.cors import CORSMiddleware

from src.domain.services.edge_normalizer import EdgeNormalizer, NormalizedRequest
from src.infrastructure.config import Settings


def add_default_middlewares(app: FastAPI, settings: Settings) -> None:
    # CORS configuration
    # In development/staging, allow common frontend origins
    if settings.environment in ("development", "staging"):
        allowed_origins = [
            "http://localhost:3000",
            "http://localhost:5173",  # Vite default
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ]
    else:
        # Images are public; the edge decides who may fetch them
        allowed_origins = ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    if settings.edge_normalizer_enabled:
        add_edge_normalizer(app, settings)


def rewrite_scope(scope: dict, normalized: NormalizedRequest, secret_header: bytes, secret: str | None) -> None:
    """Point an ASGI scope at the normalized URI and attach the origin secret."""
    scope["path"] = normalized.uri
    # raw_path holds the percent-encoded form as it would arrive on the wire
    scope["raw_path"] = quote(normalized.uri, safe="/,=").encode("ascii")
    scope["query_string"] = normalized.query.encode("latin-1")
    if secret:
        headers = [(k, v) for k, v in scope["headers"] if k != secret_header]
        headers.append((secret_header, secret.encode("latin-1")))
        scope["headers"] = headers


def add_edge_normalizer(app: FastAPI, settings: Settings) -> None:
    """Do the edge's job in-process, for running without a CDN in front.

    Image requests get their query string folded into the canonical path
    and, like requests forwarded by the real edge, carry the origin secret.
    """
    normalizer = EdgeNormalizer(settings.supported_extension_list)
    secret_header = settings.secret_header_name.lower().encode("latin-1")

    @app.middleware("http")
    async def edge_normalize(request: Request, call_next):
        scope = request.scope
        query = scope.get("query_string", b"").decode("latin-1")
        normalized = normalizer.normalize(scope["path"], query, request.headers.get("accept"))
        if normalized.uri != scope["path"]:
            rewrite_scope(scope, normalized, secret_header, settings.origin_secret)
        return await call_next(request)
