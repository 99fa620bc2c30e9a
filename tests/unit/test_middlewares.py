from src.domain.services.edge_normalizer import NormalizedRequest
from src.infrastructure.api.middlewares import rewrite_scope

SECRET_HEADER = b"x-origin-secret-header"


def _scope(path="/x", headers=None):
    return {"path": path, "raw_path": path.encode(), "query_string": b"w=40", "headers": headers or []}


def test_raw_path_is_percent_encoded():
    scope = _scope("/my photos/café.jpg")
    rewrite_scope(scope, NormalizedRequest("/my photos/café.jpg/f=webp,w=40"), SECRET_HEADER, "s3cret")

    assert scope["path"] == "/my photos/café.jpg/f=webp,w=40"
    assert scope["raw_path"] == b"/my%20photos/caf%C3%A9.jpg/f=webp,w=40"
    assert scope["query_string"] == b""


def test_secret_header_replaces_client_value():
    scope = _scope(headers=[(SECRET_HEADER, b"forged"), (b"accept", b"*/*")])
    rewrite_scope(scope, NormalizedRequest("/a.jpg/original"), SECRET_HEADER, "s3cret")
    assert scope["headers"] == [(b"accept", b"*/*"), (SECRET_HEADER, b"s3cret")]


def test_no_secret_leaves_headers_alone():
    headers = [(b"accept", b"*/*")]
    scope = _scope(headers=headers)
    rewrite_scope(scope, NormalizedRequest("/a.jpg/original"), SECRET_HEADER, None)
    assert scope["headers"] == headers
