from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response

from src.application.dtos.common_dto import ErrorResponse
from src.application.use_cases.resolve_variant import ResolveVariantUseCase
from src.domain.entities.artifact import AuthorizedRequest, RequestOrigin, VariantResult
from src.infrastructure.api.dependencies import get_resolver

router = APIRouter(tags=["Image Variants"])

# Every method reaches the handler so unsupported ones get the documented 400
_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def to_response(result: VariantResult) -> Response:
    if result.detail is not None:
        return JSONResponse(status_code=result.status, content={"detail": result.detail})
    return Response(content=result.body, status_code=result.status, headers=result.headers)


@router.api_route(
    "/{image_path:path}",
    methods=_ALL_METHODS,
    summary="Resolve Image Variant",
    description="""
    Serve a derived variant of an original image.

    **Path**: `/<original-key>/<canonical-operations>`, for example
    `/sample/1.jpg/f=webp,w=400` or `/sample/1.jpg/original`.

    **Required header**: the origin secret injected by the edge.

    **Responses:**
    - **200**: variant bytes with `Content-Type` and `Cache-Control`
    - **302**: variant is larger than the inline limit; it has been stored and
      `Location` points back through the edge
    - **400**: method other than GET
    - **403**: missing/incorrect secret, or variant too large and not stored
    - **500**: original missing or transform failed
    """,
    responses={
        200: {"content": {"image/*": {}}, "description": "Variant bytes"},
        302: {"description": "Variant stored, fetch it through the edge"},
        400: {"model": ErrorResponse, "description": "Method not supported"},
        403: {"model": ErrorResponse, "description": "Unauthorized, or variant too large to serve"},
        404: {"model": ErrorResponse, "description": "Size not in the allowed list"},
        500: {"model": ErrorResponse, "description": "Original missing or transform failed"},
    },
)
def resolve_variant(
    image_path: str,
    request: Request,
    resolver: ResolveVariantUseCase = Depends(get_resolver),
) -> Response:
    """Resolve one variant request forwarded by the edge."""
    variant_request = AuthorizedRequest(
        method=request.method,
        path=f"/{image_path}",
        origin=RequestOrigin.DIRECT,
        headers=dict(request.headers),
    )
    return to_response(resolver.execute(variant_request))
