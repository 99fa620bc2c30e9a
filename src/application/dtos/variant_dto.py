from __future__ import annotations

from pydantic import BaseModel, Field

from src.application.use_cases.precompute_variants import CombinationResult, PrecomputeReport


class IngestionEventRequest(BaseModel):
    """Notification that an object changed in the originals bucket."""

    event_type: str = Field(
        ...,
        description="Event discriminator; only object-creation events trigger precompute",
        example="ObjectCreated:Put",
    )
    key: str = Field(..., description="Storage key of the original image", example="sample/1.jpg", min_length=1)


class CombinationResultResponse(BaseModel):
    operations: str = Field(..., description="Canonical operation string", example="f=webp,w=400")
    status: int | None = Field(None, description="Status the variant request resolved to", example=200)
    derived_key: str | None = Field(None, description="Storage key of the variant", example="sample/1.jpg/f=webp,w=400")
    persisted: bool = Field(False, description="Whether the variant was written to storage")
    error: str | None = Field(None, description="Failure reason when the combination did not succeed")

    @classmethod
    def from_result(cls, result: CombinationResult) -> CombinationResultResponse:
        return cls(
            operations=result.operations,
            status=result.status,
            derived_key=result.derived_key,
            persisted=result.persisted,
            error=result.error,
        )


class PrecomputeReportResponse(BaseModel):
    """Outcome of one ingestion event, one entry per size × format combination."""

    key: str = Field(..., description="Storage key of the original image")
    accepted: bool = Field(..., description="False when the event was filtered out")
    reason: str | None = Field(None, description="Why the event was filtered out")
    succeeded: int = Field(0, ge=0, description="Number of combinations that resolved successfully")
    failed: int = Field(0, ge=0, description="Number of combinations that failed")
    results: list[CombinationResultResponse] = Field(default_factory=list)

    @classmethod
    def from_report(cls, report: PrecomputeReport) -> PrecomputeReportResponse:
        return cls(
            key=report.key,
            accepted=report.accepted,
            reason=report.reason,
            succeeded=len(report.succeeded),
            failed=len(report.failed),
            results=[CombinationResultResponse.from_result(r) for r in report.results],
        )
