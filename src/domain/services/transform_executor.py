from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO

from PIL import Image, ImageOps, ImageSequence, UnidentifiedImageError

from src.domain.entities.operation_spec import ImageFormat, OperationSpec
from src.domain.errors import DecodeError, EncodeError

EXIF_ORIENTATION_TAG = 0x0112

# EXIF orientation -> transpose that brings the image upright
_ORIENTATION_TRANSPOSE = {
    2: Image.Transpose.FLIP_LEFT_RIGHT,
    3: Image.Transpose.ROTATE_180,
    4: Image.Transpose.FLIP_TOP_BOTTOM,
    5: Image.Transpose.TRANSPOSE,
    6: Image.Transpose.ROTATE_270,
    7: Image.Transpose.TRANSVERSE,
    8: Image.Transpose.ROTATE_90,
}
_SWAPS_AXES = {5, 6, 7, 8}

_PILLOW_FORMATS = {
    "JPEG": ImageFormat.JPEG,
    "MPO": ImageFormat.JPEG,
    "PNG": ImageFormat.PNG,
    "WEBP": ImageFormat.WEBP,
    "AVIF": ImageFormat.AVIF,
    "GIF": ImageFormat.GIF,
}

# Pixel modes each encoder writes as-is; anything else is converted first
_ENCODER_MODES = {
    "JPEG": frozenset({"RGB", "L", "CMYK"}),
    "PNG": frozenset({"1", "L", "LA", "P", "RGB", "RGBA", "I", "I;16"}),
    "GIF": frozenset({"1", "L", "P", "RGB", "RGBA"}),
    "WEBP": frozenset({"RGB", "RGBA"}),
    "AVIF": frozenset({"RGB", "RGBA"}),
}

FIT_SCALE = "scale"  # one axis given, the other follows the aspect ratio
FIT_COVER = "cover"  # both axes given, crop to fill
FIT_INSIDE = "inside"  # bounding box, aspect preserved, no crop


@dataclass(frozen=True)
class ImageInfo:
    width: int
    height: int
    format: str | None
    orientation: int | None
    is_animated: bool
    frame_count: int

    @property
    def upright_size(self) -> tuple[int, int]:
        if self.orientation in _SWAPS_AXES:
            return self.height, self.width
        return self.width, self.height


@dataclass(frozen=True)
class ResizeTarget:
    width: int | None
    height: int | None
    fit: str

    def output_size(self, width: int, height: int) -> tuple[int, int]:
        if self.fit == FIT_COVER and self.width and self.height:
            return self.width, self.height
        if self.fit == FIT_SCALE:
            if self.width:
                return self.width, max(1, round(height * self.width / width))
            if self.height:
                return max(1, round(width * self.height / height)), self.height
            return width, height
        box_w = self.width or width
        box_h = self.height or height
        ratio = min(box_w / width, box_h / height, 1.0)
        return max(1, round(width * ratio)), max(1, round(height * ratio))


def resolve_target(spec: OperationSpec, width: int, height: int) -> ResizeTarget | None:
    """Concrete resize target for an image of the given upright size.

    Requested dimensions are clamped to the intrinsic ones, so a variant is
    never larger than its original.
    """
    if spec.is_original:
        return None
    if spec.has_exact_dimensions:
        target_w = min(spec.width, width) if spec.width else None
        target_h = min(spec.height, height) if spec.height else None
        fit = FIT_COVER if target_w and target_h else FIT_SCALE
        return ResizeTarget(width=target_w, height=target_h, fit=fit)
    if spec.has_max_bounds:
        target_w = min(spec.max_width, width) if spec.max_width else None
        target_h = min(spec.max_height, height) if spec.max_height else None
        return ResizeTarget(width=target_w, height=target_h, fit=FIT_INSIDE)
    return None


def _to_encodable(frame: Image.Image, modes: frozenset[str], pillow_name: str) -> Image.Image:
    """Convert a frame into a pixel mode the target encoder can write.

    CMYK and other print or high bit depth modes become RGB, or RGBA when
    the frame carries transparency. JPEG has no alpha channel, so it
    always gets RGB.
    """
    if frame.mode in modes:
        return frame
    has_alpha = "A" in frame.getbands() or "transparency" in frame.info
    if has_alpha and pillow_name != "JPEG":
        return frame.convert("RGBA")
    return frame.convert("RGB")


def _open(data: bytes) -> Image.Image:
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise DecodeError(f"Cannot decode original image: {exc}") from exc
    return image


def read_info(image: Image.Image) -> ImageInfo:
    orientation = image.getexif().get(EXIF_ORIENTATION_TAG)
    frame_count = getattr(image, "n_frames", 1)
    return ImageInfo(
        width=image.width,
        height=image.height,
        format=image.format,
        orientation=orientation,
        is_animated=bool(getattr(image, "is_animated", False)) and frame_count > 1,
        frame_count=frame_count,
    )


class TransformExecutor:
    """Applies an OperationSpec to original image bytes using Pillow.

    The executor holds no state and does no I/O, so calling it twice with the
    same input is safe and yields the same bytes.
    """

    resample = Image.Resampling.LANCZOS

    def execute(
        self,
        original: bytes,
        spec: OperationSpec,
        source_content_type: str | None = None,
    ) -> tuple[bytes, str]:
        image = _open(original)
        try:
            info = read_info(image)
            output_format = spec.target_format or _PILLOW_FORMATS.get(info.format or "")
            keep_frames = info.is_animated and (output_format is None or output_format.supports_animation)
            frames, durations = self._frames(image, keep_frames)

            transpose = _ORIENTATION_TRANSPOSE.get(info.orientation or 0)
            if info.orientation is not None and transpose is not None:
                frames = [frame.transpose(transpose) for frame in frames]

            width, height = info.upright_size
            target = resolve_target(spec, width, height)
            if target is not None:
                frames = [self._resize(frame, target, width, height) for frame in frames]
        except (OSError, ValueError, EOFError) as exc:
            # truncated later frames only fail once they are read
            raise DecodeError(f"Cannot decode original image: {exc}") from exc

        if output_format is not None:
            pillow_name = output_format.pillow_name
            content_type = output_format.content_type or "application/octet-stream"
            lossy = output_format.is_lossy
        else:
            # a source format we do not re-encode into, e.g. BMP or TIFF
            pillow_name = info.format or ""
            content_type = Image.MIME.get(pillow_name) or source_content_type or "application/octet-stream"
            lossy = False

        quality = spec.quality if lossy else None
        loop = image.info.get("loop", 0)
        return self._encode(frames, durations, loop, pillow_name, quality), content_type

    def _frames(self, image: Image.Image, keep_frames: bool) -> tuple[list[Image.Image], list[int]]:
        if not keep_frames:
            return [image.copy()], []
        frames: list[Image.Image] = []
        durations: list[int] = []
        default_duration = image.info.get("duration", 100)
        for frame in ImageSequence.Iterator(image):
            durations.append(frame.info.get("duration", default_duration))
            frames.append(frame.convert("RGBA"))
        return frames, durations

    def _resize(self, frame: Image.Image, target: ResizeTarget, width: int, height: int) -> Image.Image:
        size = target.output_size(width, height)
        if size == (width, height):
            return frame
        if frame.mode in ("P", "1"):
            frame = frame.convert("RGBA")
        if target.fit == FIT_COVER:
            return ImageOps.fit(frame, size, method=self.resample)
        return frame.resize(size, self.resample)

    def _encode(
        self,
        frames: list[Image.Image],
        durations: list[int],
        loop: int,
        pillow_name: str,
        quality: int | None,
    ) -> bytes:
        modes = _ENCODER_MODES.get(pillow_name)
        if modes is not None:
            frames = [_to_encodable(frame, modes, pillow_name) for frame in frames]
        params: dict = {}
        if quality is not None:
            params["quality"] = quality
        if len(frames) > 1:
            params.update(save_all=True, append_images=frames[1:], duration=durations, loop=loop)
        buf = BytesIO()
        try:
            frames[0].save(buf, format=pillow_name, **params)
        except (KeyError, OSError, ValueError) as exc:
            raise EncodeError(f"Cannot encode image as {pillow_name or 'unknown'}: {exc}") from exc
        return buf.getvalue()
