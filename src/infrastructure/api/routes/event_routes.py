from __future__ import annotations

from fastapi import APIRouter, Depends

from src.application.dtos.variant_dto import IngestionEventRequest, PrecomputeReportResponse
from src.application.use_cases.precompute_variants import PrecomputeVariantsUseCase
from src.infrastructure.api.dependencies import get_precompute, require_origin_secret

router = APIRouter(
    prefix="/events",
    tags=["Ingestion Events"],
    dependencies=[Depends(require_origin_secret)],
    responses={
        403: {"description": "Unauthorized - Missing or incorrect origin secret header"},
        422: {"description": "Validation Error - Invalid event body"},
    },
)


@router.post(
    "/ingestion",
    response_model=PrecomputeReportResponse,
    summary="Precompute Variants",
    description="""
    Handle an ingestion event for a newly uploaded original.

    Object-creation events for supported image extensions outside the staging
    prefix trigger the configured sizes × formats cross-product. Every
    combination is attempted independently; the response lists each outcome.
    Events that are filtered out return `accepted: false` with a reason.

    Redelivering the same event is safe: it rewrites the same variant keys.
    """,
    response_description="Per-combination outcome of the precompute run",
)
def ingest_original(
    body: IngestionEventRequest,
    precompute: PrecomputeVariantsUseCase = Depends(get_precompute),
):
    """Precompute the configured variants of an ingested original."""
    report = precompute.execute(body.event_type, body.key)
    return PrecomputeReportResponse.from_report(report)
