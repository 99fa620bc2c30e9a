from __future__ import annotations

import json
import logging
import mimetypes
import os
import re
import tempfile
from io import BytesIO
from pathlib import Path

from PIL import Image, UnidentifiedImageError
from supabase import Client

from src.domain.entities.artifact import DerivedArtifact, StoredOriginal
from src.domain.errors import NotFoundError, StoreReadError, StoreWriteError
from src.infrastructure.config import Settings

logger = logging.getLogger(__name__)

METADATA_SUFFIX = ".meta.json"
_MAX_AGE_RE = re.compile(r"max-age=(\d+)")


def derive_key(original_key: str, canonical_operations: str, prefix: str = "") -> str:
    """Storage key of a variant: ``<prefix><original>/<canonical ops>``.

    Canonical operation strings never contain ``/``, so the last segment
    always identifies the operations and distinct specs cannot collide.
    """
    return f"{prefix}{original_key.strip('/')}/{canonical_operations}"


def is_not_found_error(exc: Exception) -> bool:
    payload = exc.args[0] if exc.args else None
    if isinstance(payload, dict):
        code = str(payload.get("statusCode", payload.get("status", "")))
        error = str(payload.get("error", "")).lower()
        message = str(payload.get("message", "")).lower()
        return code == "404" or "not_found" in error or "not found" in message
    return "not found" in str(exc).lower()


def sniff_content_type(data: bytes, key: str) -> str:
    try:
        with Image.open(BytesIO(data)) as img:
            mime = Image.MIME.get(img.format or "")
    except (UnidentifiedImageError, OSError):
        mime = None
    return mime or mimetypes.guess_type(key)[0] or "application/octet-stream"


def _max_age_seconds(cache_control: str | None) -> str | None:
    if not cache_control:
        return None
    match = _MAX_AGE_RE.search(cache_control)
    return match.group(1) if match else None


class SupabaseArtifactStore:
    """Reads originals and reads/writes derived variants.

    Backed by two Supabase Storage buckets, or by two directories under
    ``storage_local_dir`` when Supabase is disabled. Expiry of derived
    objects is a bucket lifecycle concern and is not handled here.
    """

    def __init__(self, settings: Settings, client: Client | None) -> None:
        self.client = client
        self.original_bucket = settings.original_bucket
        self.derived_bucket = settings.derived_bucket
        self.local_dir = Path(settings.storage_local_dir)
        self.default_cache_control = settings.cache_control
        self.disabled = client is None
        if self.disabled:
            self.local_dir.mkdir(parents=True, exist_ok=True)

    def _local_path(self, bucket: str, key: str) -> Path:
        root = (self.local_dir / bucket).resolve()
        path = (root / key.lstrip("/")).resolve()
        if path == root or root not in path.parents:
            raise NotFoundError(f"Key escapes storage root: {key!r}")
        return path

    def fetch_original(self, key: str) -> StoredOriginal:
        if self.disabled:
            path = self._local_path(self.original_bucket, key)
            try:
                data = path.read_bytes()
            except FileNotFoundError as exc:
                raise NotFoundError(f"Original not found: {key}") from exc
            except OSError as exc:
                raise StoreReadError(f"Cannot read original {key}: {exc}") from exc
            return StoredOriginal(data=data, content_type=mimetypes.guess_type(key)[0])
        try:  # pragma: no cover - network
            data = self.client.storage.from_(self.original_bucket).download(key)  # type: ignore[union-attr]
        except Exception as exc:  # pragma: no cover - network
            if is_not_found_error(exc):
                raise NotFoundError(f"Original not found: {key}") from exc
            raise StoreReadError(f"Cannot download original {key}: {exc}") from exc
        return StoredOriginal(data=data, content_type=sniff_content_type(data, key))  # pragma: no cover

    def put_derived(self, key: str, artifact: DerivedArtifact) -> None:
        cache_control = artifact.cache_control or self.default_cache_control
        if self.disabled:
            self._write_local(key, artifact, cache_control)
            logger.debug("Stored variant %s locally (%d bytes)", key, artifact.size)
            return
        options = {"content-type": artifact.content_type, "upsert": "true"}
        max_age = _max_age_seconds(cache_control)
        if max_age:
            options["cache-control"] = max_age
        try:  # pragma: no cover - network
            self.client.storage.from_(self.derived_bucket).upload(  # type: ignore[union-attr]
                path=key,
                file=artifact.data,
                file_options=options,
            )
        except Exception as exc:  # pragma: no cover - network
            raise StoreWriteError(f"Storage upload failed for {key}: {exc}") from exc

    def _write_local(self, key: str, artifact: DerivedArtifact, cache_control: str) -> None:
        try:
            path = self._local_path(self.derived_bucket, key)
            path.parent.mkdir(parents=True, exist_ok=True)
            meta = {"content_type": artifact.content_type, "cache_control": cache_control}
            _atomic_write(path.with_name(path.name + METADATA_SUFFIX), json.dumps(meta).encode("utf-8"))
            _atomic_write(path, artifact.data)
        except (NotFoundError, OSError) as exc:
            raise StoreWriteError(f"Local write failed for {key}: {exc}") from exc

    def get_derived(self, key: str) -> DerivedArtifact | None:
        if self.disabled:
            return self._read_local(key)
        try:  # pragma: no cover - network
            data = self.client.storage.from_(self.derived_bucket).download(key)  # type: ignore[union-attr]
        except Exception as exc:  # pragma: no cover - network
            if is_not_found_error(exc):
                return None
            raise StoreReadError(f"Cannot download variant {key}: {exc}") from exc
        return DerivedArtifact(  # pragma: no cover - network
            data=data,
            content_type=sniff_content_type(data, key),
            cache_control=self.default_cache_control,
        )

    def _read_local(self, key: str) -> DerivedArtifact | None:
        try:
            path = self._local_path(self.derived_bucket, key)
        except NotFoundError:
            return None
        meta_path = path.with_name(path.name + METADATA_SUFFIX)
        try:
            data = path.read_bytes()
            meta = json.loads(meta_path.read_text(encoding="utf-8")) if meta_path.exists() else {}
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            raise StoreReadError(f"Cannot read variant {key}: {exc}") from exc
        return DerivedArtifact(
            data=data,
            content_type=meta.get("content_type") or sniff_content_type(data, key),
            cache_control=meta.get("cache_control", self.default_cache_control),
        )


def _atomic_write(path: Path, data: bytes) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.replace(tmp_name, path)
    except OSError:
        Path(tmp_name).unlink(missing_ok=True)
        raise
