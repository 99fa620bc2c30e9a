import io
from pathlib import Path

from fastapi.testclient import TestClient
from PIL import Image

from src.main import create_app


def _derived_path(settings, key: str) -> Path:
    return Path(settings.storage_local_dir) / settings.derived_bucket / key


def test_root_and_health(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json()["service"] == "image-variant-service"

    r2 = client.get("/health")
    assert r2.status_code == 200
    assert r2.json() == {"status": "healthy"}


def test_variant_is_served_and_stored(client, auth_header, settings, put_original, make_image):
    put_original("sample/1.jpg", make_image(800, 600))

    r = client.get("/sample/1.jpg/f=webp,w=400", headers=auth_header)
    assert r.status_code == 200, r.text
    assert r.headers["content-type"] == "image/webp"
    assert r.headers["cache-control"] == settings.cache_control
    assert "img-transform" in r.headers["server-timing"]
    assert Image.open(io.BytesIO(r.content)).size == (400, 300)

    stored = _derived_path(settings, "sample/1.jpg/f=webp,w=400")
    assert stored.read_bytes() == r.content


def test_original_operation(client, auth_header, put_original, make_image):
    data = make_image(64, 48, fmt="PNG")
    put_original("logo.png", data)
    r = client.get("/logo.png/original", headers=auth_header)
    assert r.status_code == 200
    assert r.headers["content-type"] == "image/png"
    assert Image.open(io.BytesIO(r.content)).size == (64, 48)


def test_missing_secret_is_403(client, settings, put_original, make_image):
    put_original("sample/1.jpg", make_image(80, 60))
    r = client.get("/sample/1.jpg/w=40")
    assert r.status_code == 403
    assert r.json() == {"detail": "Request unauthorized"}
    assert not _derived_path(settings, "sample/1.jpg/w=40").exists()


def test_wrong_secret_is_403(client):
    r = client.get("/sample/1.jpg/w=40", headers={"x-origin-secret-header": "nope"})
    assert r.status_code == 403


def test_post_is_400(client, auth_header):
    r = client.post("/sample/1.jpg/w=40", headers=auth_header)
    assert r.status_code == 400
    assert r.json() == {"detail": "Only GET method is supported"}


def test_missing_original_is_500(client, auth_header):
    r = client.get("/does/not/exist.jpg/w=40", headers=auth_header)
    assert r.status_code == 500
    assert r.json() == {"detail": "Error downloading original image"}


def test_corrupt_original_is_500(client, auth_header, put_original):
    put_original("broken.jpg", b"definitely not a jpeg")
    r = client.get("/broken.jpg/w=40", headers=auth_header)
    assert r.status_code == 500
    assert r.json() == {"detail": "Error transforming image"}


def test_oversize_variant_redirects(settings, auth_header, put_original, make_image):
    put_original("sample/1.jpg", make_image(200, 150))
    app = create_app(settings.model_copy(update={"max_image_size": 10}))
    client = TestClient(app)

    r = client.get("/sample/1.jpg/f=png,w=100", headers=auth_header, follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/sample/1.jpg?f=png&w=100"
    assert r.headers["cache-control"] == "private,no-store"
    assert _derived_path(settings, "sample/1.jpg/f=png,w=100").exists()


def test_ingestion_event_precomputes(settings, auth_header, put_original, make_image):
    put_original("sample/1.jpg", make_image(400, 300))
    app = create_app(
        settings.model_copy(update={"precompute_sizes": "original|w=100", "precompute_formats": "original|webp"})
    )
    client = TestClient(app)

    r = client.post(
        "/events/ingestion",
        headers=auth_header,
        json={"event_type": "ObjectCreated:Put", "key": "sample/1.jpg"},
    )
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["accepted"] is True
    assert data["succeeded"] == 4
    assert data["failed"] == 0
    for ops in ("original", "f=webp", "w=100", "f=webp,w=100"):
        assert _derived_path(settings, f"sample/1.jpg/{ops}").exists()


def test_ingestion_event_filtered(client, auth_header):
    r = client.post(
        "/events/ingestion",
        headers=auth_header,
        json={"event_type": "ObjectRemoved:Delete", "key": "sample/1.jpg"},
    )
    assert r.status_code == 200
    data = r.json()
    assert data["accepted"] is False
    assert data["results"] == []


def test_ingestion_requires_secret(client):
    r = client.post("/events/ingestion", json={"event_type": "ObjectCreated:Put", "key": "a.jpg"})
    assert r.status_code == 403


def test_edge_normalizer_middleware(settings, put_original, make_image):
    put_original("sample/1.jpg", make_image(800, 600))
    app = create_app(settings.model_copy(update={"edge_normalizer_enabled": True}))
    client = TestClient(app)

    # no secret header: the in-process edge adds it
    r = client.get("/sample/1.jpg?w=400&f=webp")
    assert r.status_code == 200, r.text
    assert r.headers["content-type"] == "image/webp"
    assert _derived_path(settings, "sample/1.jpg/f=webp,w=400").exists()

    r2 = client.get("/sample/1.jpg?f=auto&mw=100", headers={"accept": "image/webp,*/*"})
    assert r2.status_code == 200
    assert _derived_path(settings, "sample/1.jpg/f=webp,mw=100").exists()


def test_edge_normalizer_with_encoded_key(settings, put_original, make_image):
    put_original("my photos/1.jpg", make_image(80, 60))
    client = TestClient(create_app(settings.model_copy(update={"edge_normalizer_enabled": True})))

    r = client.get("/my%20photos/1.jpg?w=40")
    assert r.status_code == 200, r.text
    assert Image.open(io.BytesIO(r.content)).size == (40, 30)
    assert _derived_path(settings, "my photos/1.jpg/w=40").exists()
