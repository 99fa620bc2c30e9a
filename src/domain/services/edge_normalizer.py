"""Rewrite viewer-facing query parameters into the canonical variant path.

``/sample/1.jpg?W=400&f=webp`` and ``/sample/1.jpg?f=webp&w=400`` both become
``/sample/1.jpg/f=webp,w=400`` with an empty query string, so the edge cache
sees one key per visual output. The normalizer is pure: no I/O, no clock, no
configuration lookups beyond what it was built with.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable
from urllib.parse import parse_qsl

from src.domain.entities.operation_spec import ImageFormat
from src.domain.services import operation_codec

DEFAULT_SUPPORTED_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".avif", ".gif")
AUTO_FORMAT = "auto"
# first advertised wins
AUTO_FORMAT_PREFERENCE = (ImageFormat.AVIF, ImageFormat.WEBP)
AUTO_FORMAT_FALLBACK = ImageFormat.JPEG


@dataclass(frozen=True)
class NormalizedRequest:
    uri: str
    query: str = ""


def accepted_media_types(accept: str | None) -> set[str]:
    if not accept:
        return set()
    return {part.split(";", 1)[0].strip().lower() for part in accept.split(",") if part.strip()}


def negotiate_format(accept: str | None) -> ImageFormat:
    media_types = accepted_media_types(accept)
    for fmt in AUTO_FORMAT_PREFERENCE:
        if fmt.content_type in media_types:
            return fmt
    return AUTO_FORMAT_FALLBACK


def parse_query_string(query: str) -> list[tuple[str, str]]:
    return parse_qsl(query or "", keep_blank_values=True)


class EdgeNormalizer:
    def __init__(self, supported_extensions: Iterable[str] = DEFAULT_SUPPORTED_EXTENSIONS) -> None:
        self.supported_extensions = tuple(ext.lower() for ext in supported_extensions)

    def is_transformable(self, uri: str) -> bool:
        return uri.lower().endswith(self.supported_extensions)

    def canonical_operations(self, query_pairs: Iterable[tuple[str, str]], accept: str | None) -> str:
        pairs: list[tuple[str, str | None]] = []
        for key, value in query_pairs:
            if key.strip().lower() == "f" and value and value.strip().lower() == AUTO_FORMAT:
                value = negotiate_format(accept).value
            pairs.append((key, value))
        # viewers cannot request "original" through the query; only known fields count
        spec = operation_codec.parse_fields(
            (key, value) for key, value in pairs if key.strip().lower() in operation_codec.FIELD_VALIDATORS
        )
        return operation_codec.canonicalize(spec)

    def normalize(self, uri: str, query: str = "", accept: str | None = None) -> NormalizedRequest:
        """Return the rewritten URI; untouched when the path is not an image."""
        if not self.is_transformable(uri):
            return NormalizedRequest(uri=uri, query=query)
        operations = self.canonical_operations(parse_query_string(query), accept)
        return NormalizedRequest(uri=f"{uri.rstrip('/')}/{operations}")
