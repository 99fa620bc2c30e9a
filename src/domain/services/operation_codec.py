"""Parse and render the compact operation string used in variant paths.

Grammar of the canonical form::

    op    = "original" / field *("," field)
    field = "f=" format / "q=" 1*3DIGIT / ("w" / "h" / "mw" / "mh") "=" 1*DIGIT

Parsing is lenient: unknown keys and invalid values are dropped, never
rejected. Rendering is strict: fields always come out in the order
``f, q, w, h, mw, mh`` so equal specs give byte-identical strings.
"""
from __future__ import annotations

from typing import Callable, Iterable

from src.domain.entities.operation_spec import ImageFormat, OperationSpec

FIELD_SEPARATOR = ","
VALUE_SEPARATOR = "="
ORIGINAL_TOKEN = "original"
ORIGINAL_ALIASES = frozenset({ORIGINAL_TOKEN, "org"})
CANONICAL_ORDER = ("f", "q", "w", "h", "mw", "mh")

QUALITY_MIN = 1
QUALITY_MAX = 100

_FORMAT_ALIASES = {"jpg": ImageFormat.JPEG}


def validate_format(value: str | None) -> ImageFormat | None:
    if not value:
        return None
    name = value.strip().lower()
    if name in _FORMAT_ALIASES:
        return _FORMAT_ALIASES[name]
    try:
        return ImageFormat(name)
    except ValueError:
        return None


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    text = value.strip()
    sign = -1 if text.startswith("-") else 1
    digits = text.lstrip("+-")
    if not digits.isdecimal():
        return None
    return sign * int(digits)


def validate_dimension(value: str | None) -> int | None:
    number = _parse_int(value)
    if number is None or number <= 0:
        return None
    return number


def validate_quality(value: str | None) -> int | None:
    number = _parse_int(value)
    if number is None:
        return None
    return max(QUALITY_MIN, min(QUALITY_MAX, number))


FIELD_VALIDATORS: dict[str, Callable[[str | None], object | None]] = {
    "f": validate_format,
    "q": validate_quality,
    "w": validate_dimension,
    "h": validate_dimension,
    "mw": validate_dimension,
    "mh": validate_dimension,
}


def parse_fields(pairs: Iterable[tuple[str, str | None]], *, is_original: bool = False) -> OperationSpec:
    """Build an OperationSpec from raw key/value pairs.

    Later duplicates override earlier ones. Mode precedence and the
    lossless-quality rule are applied here so that every spec obeys the
    invariants before it is ever rendered.
    """
    values: dict[str, object] = {}
    for raw_key, raw_value in pairs:
        key = raw_key.strip().lower()
        if key in ORIGINAL_ALIASES and not raw_value:
            is_original = True
            continue
        validator = FIELD_VALIDATORS.get(key)
        if validator is None:
            continue
        value = validator(raw_value)
        if value is not None:
            values[key] = value

    fmt = values.get("f")
    quality = values.get("q")
    if isinstance(fmt, ImageFormat) and fmt is not ImageFormat.ORIGINAL and not fmt.is_lossy:
        quality = None

    if is_original:
        return OperationSpec(format=fmt, quality=quality, is_original=True)  # type: ignore[arg-type]

    width, height = values.get("w"), values.get("h")
    max_width, max_height = values.get("mw"), values.get("mh")
    if width is not None or height is not None:
        max_width = max_height = None

    return OperationSpec(
        format=fmt,  # type: ignore[arg-type]
        quality=quality,  # type: ignore[arg-type]
        width=width,  # type: ignore[arg-type]
        height=height,  # type: ignore[arg-type]
        max_width=max_width,  # type: ignore[arg-type]
        max_height=max_height,  # type: ignore[arg-type]
    )


def split_operations(operation_string: str) -> list[tuple[str, str | None]]:
    pairs: list[tuple[str, str | None]] = []
    for token in operation_string.split(FIELD_SEPARATOR):
        token = token.strip()
        if not token:
            continue
        key, sep, value = token.partition(VALUE_SEPARATOR)
        pairs.append((key, value if sep else None))
    return pairs


def parse(operation_string: str) -> OperationSpec:
    """Parse an operation string such as ``f=webp,w=400``.

    An empty string, or one with no valid field, yields the original spec.
    """
    spec = parse_fields(split_operations(operation_string or ""))
    if spec == OperationSpec():
        return OperationSpec(is_original=True)
    return spec


def _ordered_fields(spec: OperationSpec) -> list[tuple[str, str]]:
    fields: list[tuple[str, str]] = []
    target = spec.target_format
    if target is not None:
        fields.append(("f", target.value))
    if spec.quality is not None and (target is None or target.is_lossy):
        fields.append(("q", str(spec.quality)))
    if spec.is_original:
        return fields
    if spec.has_exact_dimensions:
        dims = (("w", spec.width), ("h", spec.height))
    else:
        dims = (("mw", spec.max_width), ("mh", spec.max_height))
    fields.extend((key, str(value)) for key, value in dims if value is not None)
    return fields


def canonicalize(spec: OperationSpec) -> str:
    fields = _ordered_fields(spec)
    if not fields:
        return ORIGINAL_TOKEN
    return FIELD_SEPARATOR.join(f"{key}{VALUE_SEPARATOR}{value}" for key, value in fields)


def to_query(canonical: str) -> str:
    """Render a canonical operation string as a query string for redirects."""
    return canonical.replace(FIELD_SEPARATOR, "&")
