from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ImageFormat(str, Enum):
    ORIGINAL = "original"
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    AVIF = "avif"
    GIF = "gif"

    @property
    def content_type(self) -> str | None:
        if self is ImageFormat.ORIGINAL:
            return None
        return f"image/{self.value}"

    @property
    def is_lossy(self) -> bool:
        return self in (ImageFormat.JPEG, ImageFormat.WEBP, ImageFormat.AVIF)

    @property
    def pillow_name(self) -> str:
        return self.value.upper()

    @property
    def supports_animation(self) -> bool:
        return self in (ImageFormat.GIF, ImageFormat.WEBP, ImageFormat.PNG)


@dataclass(frozen=True)
class OperationSpec:
    """Validated transform directives for one variant.

    Instances come from ``operation_codec.parse`` / ``parse_fields`` only, so
    the mode invariants already hold: exact dimensions and max bounds are
    never both set, and an ``is_original`` spec has no dimensions.
    """

    format: ImageFormat | None = None
    quality: int | None = None
    width: int | None = None
    height: int | None = None
    max_width: int | None = None
    max_height: int | None = None
    is_original: bool = False

    @property
    def has_exact_dimensions(self) -> bool:
        return self.width is not None or self.height is not None

    @property
    def has_max_bounds(self) -> bool:
        return self.max_width is not None or self.max_height is not None

    @property
    def target_format(self) -> ImageFormat | None:
        # None means "keep the source format"
        if self.format is None or self.format is ImageFormat.ORIGINAL:
            return None
        return self.format
