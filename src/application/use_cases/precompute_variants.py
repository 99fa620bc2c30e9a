from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field

from src.application.use_cases.resolve_variant import ResolveVariantUseCase
from src.domain.entities.artifact import AuthorizedRequest, RequestOrigin
from src.domain.services import operation_codec
from src.infrastructure.config import Settings

logger = logging.getLogger(__name__)

OBJECT_CREATED = "ObjectCreated"


@dataclass
class CombinationResult:
    operations: str
    status: int | None = None
    derived_key: str | None = None
    persisted: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.status in (200, 302)


@dataclass
class PrecomputeReport:
    key: str
    accepted: bool
    reason: str | None = None
    results: list[CombinationResult] = field(default_factory=list)

    @property
    def succeeded(self) -> list[CombinationResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> list[CombinationResult]:
        return [r for r in self.results if not r.ok]


@dataclass
class PrecomputeVariantsUseCase:
    """
    Produce the configured variants of a freshly ingested original.

    Every size × format combination is resolved through the same path as an
    on-the-fly request, as an internal (already trusted) request. The
    combinations run in parallel and each outcome is recorded separately, so
    one failing combination never stops the others. Redelivered events just
    overwrite the same keys.
    """

    resolver: ResolveVariantUseCase
    settings: Settings

    def rejection_reason(self, event_type: str, key: str) -> str | None:
        if OBJECT_CREATED not in event_type:
            return f"event type {event_type!r} is not an object creation"
        if not key.lower().endswith(self.settings.supported_extension_list):
            return f"unsupported extension for {key!r}"
        prefix = self.settings.staging_prefix
        if prefix and key.lstrip("/").startswith(prefix.lstrip("/")):
            return f"{key!r} is under the staging prefix {prefix!r}"
        return None

    def combinations(self) -> list[str]:
        """Canonical operation strings for the sizes × formats cross-product."""
        operations: dict[str, None] = {}
        for size in self.settings.precompute_size_list:
            for fmt in self.settings.precompute_format_list:
                spec = operation_codec.parse(f"{size},f={fmt}")
                operations[operation_codec.canonicalize(spec)] = None
        return list(operations)

    def execute(self, event_type: str, key: str) -> PrecomputeReport:
        reason = self.rejection_reason(event_type, key)
        if reason is not None:
            logger.info("Skipping ingestion event for %s: %s", key, reason)
            return PrecomputeReport(key=key, accepted=False, reason=reason)

        operations = self.combinations()
        logger.info("Precomputing %d variants for %s", len(operations), key)
        workers = max(1, min(self.settings.precompute_workers, len(operations)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="precompute") as pool:
            futures = [(ops, pool.submit(self._resolve_one, key, ops)) for ops in operations]
            results = [self._collect(key, ops, future) for ops, future in futures]

        report = PrecomputeReport(key=key, accepted=True, results=results)
        if report.failed:
            logger.warning(
                "Precompute for %s finished with %d of %d combinations failed",
                key,
                len(report.failed),
                len(results),
            )
        return report

    def _resolve_one(self, key: str, operations: str) -> CombinationResult:
        request = AuthorizedRequest(
            method="GET",
            path=f"/{key.lstrip('/')}/{operations}",
            origin=RequestOrigin.INTERNAL,
        )
        result = self.resolver.execute(request)
        return CombinationResult(
            operations=operations,
            status=result.status,
            derived_key=result.derived_key,
            persisted=result.persisted,
            error=None if result.ok else result.detail or f"status {result.status}",
        )

    def _collect(self, key: str, operations: str, future: Future) -> CombinationResult:
        try:
            return future.result()
        except Exception as exc:
            logger.exception("Precompute of %s for %s raised", operations, key)
            return CombinationResult(operations=operations, error=str(exc) or type(exc).__name__)
