import io
import sys
from pathlib import Path

import numpy as np
import pytest
from fastapi.testclient import TestClient
from PIL import Image

# Ensure project root is on sys.path so 'src' is importable during tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

SECRET = "test-origin-secret"


def make_image_bytes(w=800, h=600, fmt="JPEG", orientation=None, mode="RGB") -> bytes:
    """Gradient image so resizing and re-encoding produce non-trivial output."""
    xs = np.linspace(0, 255, w, dtype=np.float32)
    ys = np.linspace(0, 255, h, dtype=np.float32)
    arr = np.zeros((h, w, 3), dtype=np.uint8)
    arr[..., 0] = xs[None, :].astype(np.uint8)
    arr[..., 1] = ys[:, None].astype(np.uint8)
    arr[..., 2] = 128
    img = Image.fromarray(arr)
    if mode != "RGB":
        img = img.convert(mode)
    params = {}
    if orientation is not None:
        exif = Image.Exif()
        exif[0x0112] = orientation
        params["exif"] = exif.tobytes()
    buf = io.BytesIO()
    img.save(buf, format=fmt, **params)
    return buf.getvalue()


def make_animated_gif(w=40, h=30, frames=3) -> bytes:
    images = [Image.new("RGB", (w, h), color=(i * 60, 0, 255 - i * 60)) for i in range(frames)]
    buf = io.BytesIO()
    images[0].save(buf, format="GIF", save_all=True, append_images=images[1:], duration=80, loop=0)
    return buf.getvalue()


@pytest.fixture()
def make_image():
    return make_image_bytes


@pytest.fixture()
def make_gif():
    return make_animated_gif


@pytest.fixture()
def settings(tmp_path):
    from src.infrastructure.config import Settings

    return Settings(
        _env_file=None,
        supabase_disabled=True,
        storage_local_dir=tmp_path / "storage",
        origin_secret=SECRET,
        log_json=False,
        fetch_timeout=None,
        transform_timeout=None,
        store_timeout=None,
    )


@pytest.fixture()
def put_original(settings):
    """Write an original into the local originals bucket."""

    def _put(key: str, data: bytes) -> Path:
        path = Path(settings.storage_local_dir) / settings.original_bucket / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path

    return _put


@pytest.fixture()
def client(settings) -> TestClient:
    # lazy import after settings are built
    from src.main import create_app

    app = create_app(settings)
    return TestClient(app)


@pytest.fixture()
def auth_header() -> dict[str, str]:
    return {"x-origin-secret-header": SECRET}
