from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping


@dataclass(frozen=True)
class StoredOriginal:
    data: bytes
    content_type: str | None


@dataclass(frozen=True)
class DerivedArtifact:
    data: bytes
    content_type: str
    cache_control: str | None = None

    @property
    def size(self) -> int:
        return len(self.data)


class RequestOrigin(str, Enum):
    DIRECT = "direct"  # forwarded by the edge, must carry the origin secret
    INTERNAL = "internal"  # produced by an ingestion event


@dataclass(frozen=True)
class AuthorizedRequest:
    method: str
    path: str
    origin: RequestOrigin = RequestOrigin.DIRECT
    headers: Mapping[str, str] = field(default_factory=dict)

    def header(self, name: str) -> str | None:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


@dataclass
class VariantResult:
    status: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)
    derived_key: str | None = None
    persisted: bool = False
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in (200, 302)
