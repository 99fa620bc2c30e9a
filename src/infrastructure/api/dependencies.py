from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from src.application.use_cases.precompute_variants import PrecomputeVariantsUseCase
from src.application.use_cases.resolve_variant import ResolveVariantUseCase, secret_matches
from src.domain.services.transform_executor import TransformExecutor
from src.infrastructure.config import Settings
from src.infrastructure.database.supabase_client import get_supabase_client
from src.infrastructure.storage.artifact_store import SupabaseArtifactStore


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(settings: Annotated[Settings, Depends(get_settings)]) -> SupabaseArtifactStore:
    return SupabaseArtifactStore(settings, get_supabase_client(settings))


def get_transform_executor() -> TransformExecutor:
    return TransformExecutor()


def get_resolver(
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[SupabaseArtifactStore, Depends(get_store)],
    executor: Annotated[TransformExecutor, Depends(get_transform_executor)],
) -> ResolveVariantUseCase:
    return ResolveVariantUseCase(store=store, executor=executor, settings=settings)


def get_precompute(
    settings: Annotated[Settings, Depends(get_settings)],
    resolver: Annotated[ResolveVariantUseCase, Depends(get_resolver)],
) -> PrecomputeVariantsUseCase:
    return PrecomputeVariantsUseCase(resolver=resolver, settings=settings)


def require_origin_secret(request: Request, settings: Annotated[Settings, Depends(get_settings)]) -> None:
    provided = request.headers.get(settings.secret_header_name)
    if not secret_matches(provided, settings.origin_secret):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Request unauthorized")
