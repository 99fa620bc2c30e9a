from __future__ import annotations

import hmac
import logging
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator
from urllib.parse import quote

from src.domain.entities.artifact import (
    AuthorizedRequest,
    DerivedArtifact,
    RequestOrigin,
    StoredOriginal,
    VariantResult,
)
from src.domain.entities.operation_spec import OperationSpec
from src.domain.errors import (
    AuthorizationError,
    ImageTooLargeError,
    MethodNotAllowedError,
    NotFoundError,
    StoreReadError,
    StoreWriteError,
    TransformError,
    UnsupportedSizeError,
    VariantError,
)
from src.domain.services import operation_codec
from src.domain.services.transform_executor import TransformExecutor
from src.infrastructure.config import Settings
from src.infrastructure.storage.artifact_store import SupabaseArtifactStore, derive_key

logger = logging.getLogger(__name__)

ALLOWED_METHOD = "GET"

# Stage work runs here so a timed-out upload can finish in the background
_STAGE_POOL = ThreadPoolExecutor(max_workers=32, thread_name_prefix="variant-stage")


def secret_matches(provided: str | None, expected: str | None) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def split_variant_path(path: str) -> tuple[str, str]:
    """Split ``/<original-key>/<operations>`` into its two parts."""
    original_key, sep, operations = path.strip("/").rpartition("/")
    if not sep or not original_key or not operations:
        raise NotFoundError(f"No original key in path {path!r}")
    return original_key, operations


@dataclass(frozen=True)
class StageTimeouts:
    """Per-stage time limits in seconds; ``None`` waits indefinitely."""

    fetch: float | None = None
    transform: float | None = None
    store: float | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> StageTimeouts:
        return cls(fetch=settings.fetch_timeout, transform=settings.transform_timeout, store=settings.store_timeout)


class ServerTiming:
    def __init__(self) -> None:
        self._entries: list[tuple[str, int]] = []

    @contextmanager
    def measure(self, name: str) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            self._entries.append((name, int((time.perf_counter() - start) * 1000)))

    def header(self) -> str:
        return ",".join(f"{name};dur={duration}" for name, duration in self._entries)


@dataclass
class ResolveVariantUseCase:
    """Turn one variant request into a response, writing the variant through to storage.

    Flow: authorize, check method, parse the path, fetch the original,
    transform it, then persist the result and choose between an inline
    200, a 302 to the stored copy, or a 403 when the variant is too big to
    return inline and could not be stored either.

    Store write failures never change a 200 into an error: caching is
    opportunistic, correct bytes are not. Nothing here retries.
    """

    store: SupabaseArtifactStore
    executor: TransformExecutor
    settings: Settings
    stage_pool: Executor = field(default=_STAGE_POOL)

    def execute(self, request: AuthorizedRequest, timeouts: StageTimeouts | None = None) -> VariantResult:
        timeouts = timeouts or StageTimeouts.from_settings(self.settings)
        try:
            return self._resolve(request, timeouts)
        except VariantError as exc:
            return self._error_result(request, exc)

    def _resolve(self, request: AuthorizedRequest, timeouts: StageTimeouts) -> VariantResult:
        self._authorize(request)
        if request.method.upper() != ALLOWED_METHOD:
            raise MethodNotAllowedError(f"Method {request.method} is not supported")

        original_key, operations = split_variant_path(request.path)
        spec = operation_codec.parse(operations)
        self._check_allowed_size(spec)
        canonical = operation_codec.canonicalize(spec)
        derived_key = derive_key(original_key, canonical, self.settings.derived_key_prefix)
        timing = ServerTiming()

        if self.settings.lookup_derived:
            with timing.measure("img-lookup"):
                cached = self._lookup(derived_key, timeouts.store)
            if cached is not None:
                logger.info("Serving stored variant %s", derived_key)
                return self._respond(original_key, canonical, derived_key, cached, True, timing)

        with timing.measure("img-download"):
            original = self._fetch(original_key, timeouts.fetch)
        with timing.measure("img-transform"):
            data, content_type = self._transform(original, spec, timeouts.transform)

        artifact = DerivedArtifact(data=data, content_type=content_type, cache_control=self.settings.cache_control)
        # stored even when too big, so the edge can serve it from storage
        with timing.measure("img-upload"):
            persisted = self._persist(derived_key, artifact, timeouts.store)
        return self._respond(original_key, canonical, derived_key, artifact, persisted, timing)

    def _authorize(self, request: AuthorizedRequest) -> None:
        if request.origin is RequestOrigin.INTERNAL:
            return
        provided = request.header(self.settings.secret_header_name)
        if not secret_matches(provided, self.settings.origin_secret):
            reason = "missing" if not provided else "mismatching"
            raise AuthorizationError(f"Direct request with {reason} origin secret")

    def _check_allowed_size(self, spec: OperationSpec) -> None:
        widths = self.settings.allowed_width_set
        heights = self.settings.allowed_height_set
        if widths and spec.width is not None and spec.width not in widths:
            raise UnsupportedSizeError(f"Width {spec.width} is not in the allowed list")
        if heights and spec.height is not None and spec.height not in heights:
            raise UnsupportedSizeError(f"Height {spec.height} is not in the allowed list")

    def _run(self, fn: Callable[..., Any], timeout: float | None, *args: Any) -> Any:
        if timeout is None:
            return fn(*args)
        return self.stage_pool.submit(fn, *args).result(timeout=timeout)

    def _lookup(self, key: str, timeout: float | None) -> DerivedArtifact | None:
        try:
            return self._run(self.store.get_derived, timeout, key)
        except (StoreReadError, FutureTimeoutError) as exc:
            logger.warning("Lookup of stored variant %s failed, recomputing: %r", key, exc)
            return None

    def _fetch(self, key: str, timeout: float | None) -> StoredOriginal:
        try:
            return self._run(self.store.fetch_original, timeout, key)
        except FutureTimeoutError as exc:
            raise StoreReadError(f"Fetching original {key} timed out after {timeout}s") from exc

    def _transform(self, original: StoredOriginal, spec: OperationSpec, timeout: float | None) -> tuple[bytes, str]:
        try:
            return self._run(self.executor.execute, timeout, original.data, spec, original.content_type)
        except FutureTimeoutError as exc:
            raise TransformError(f"Transform timed out after {timeout}s", stage="timeout") from exc

    def _persist(self, key: str, artifact: DerivedArtifact, timeout: float | None) -> bool:
        future = self.stage_pool.submit(self.store.put_derived, key, artifact)
        try:
            future.result(timeout=timeout)
        except FutureTimeoutError:
            logger.warning("Upload of %s still running after %ss, not waiting for it", key, timeout)
            return False
        except StoreWriteError as exc:
            logger.warning("Could not upload transformed image %s: %s", key, exc)
            return False
        return True

    def _respond(
        self,
        original_key: str,
        canonical: str,
        derived_key: str,
        artifact: DerivedArtifact,
        persisted: bool,
        timing: ServerTiming,
    ) -> VariantResult:
        if artifact.size > self.settings.max_image_size:
            if not persisted:
                raise ImageTooLargeError(
                    f"Variant {derived_key} is {artifact.size} bytes and could not be stored"
                )
            location = f"/{quote(original_key)}?{operation_codec.to_query(canonical)}"
            logger.info("Variant %s is %d bytes, redirecting to %s", derived_key, artifact.size, location)
            return VariantResult(
                status=302,
                headers={
                    "Location": location,
                    "Cache-Control": self.settings.redirect_cache_control,
                    "Server-Timing": timing.header(),
                },
                derived_key=derived_key,
                persisted=True,
            )
        return VariantResult(
            status=200,
            body=artifact.data,
            headers={
                "Content-Type": artifact.content_type,
                "Cache-Control": artifact.cache_control or self.settings.cache_control,
                "Server-Timing": timing.header(),
            },
            derived_key=derived_key,
            persisted=persisted,
        )

    def _error_result(self, request: AuthorizedRequest, exc: VariantError) -> VariantResult:
        if exc.status_code >= 500:
            logger.error("%s for %s %s: %s", exc.public_message, request.method, request.path, exc, exc_info=exc)
        else:
            logger.info("Rejected %s %s: %s", request.method, request.path, exc)
        return VariantResult(status=exc.status_code, detail=exc.public_message)
