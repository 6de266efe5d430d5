"""Pytest configuration and shared fixtures for the Pinboard tests."""

import io
import itertools
import os
import tempfile
from urllib.parse import urlsplit

import pytest

# pinboard reads its environment and bootstraps a database at import time
_BOOT_DIR = tempfile.mkdtemp(prefix="pinboard-boot-")
os.environ.setdefault("PINBOARD_DATABASE", os.path.join(_BOOT_DIR, "boot.db"))
os.environ.setdefault("PINBOARD_UPLOAD_FOLDER", os.path.join(_BOOT_DIR, "uploads"))
os.environ.setdefault("PINBOARD_JWT_SECRET", "test-secret")

import pinboard  # noqa: E402


# Smallest byte strings that pass the magic-number sniffing
JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00" + b"\x00" * 64 + b"\xff\xd9"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + b"\x00" * 64


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# =============================================================================
# Application
# =============================================================================


@pytest.fixture
def app(tmp_path):
    """Flask app pointed at a fresh database and upload folder."""
    upload_dir = tmp_path / "uploads"
    upload_dir.mkdir()
    pinboard.app.config.update(
        TESTING=True,
        DATABASE=str(tmp_path / "pinboard.db"),
        UPLOAD_FOLDER=str(upload_dir),
        PUBLIC_UPLOAD_URL="/uploads",
        MAX_CONTENT_LENGTH=5 * 1024 * 1024,
    )
    with pinboard.app.app_context():
        pinboard.init_db()
    yield pinboard.app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    """Direct connection to the test database, for asserting on raw rows."""
    with app.app_context():
        yield pinboard.get_db()


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_user(client):
    counter = itertools.count(1)

    def _make(username=None, password="secret123", **extra):
        username = username or f"user{next(counter)}"
        payload = {
            "email": f"{username}@x.com",
            "password": password,
            "username": username,
            "firstName": "Test",
            "lastName": username.title(),
            **extra,
        }
        resp = client.post("/api/auth/signup", json=payload)
        assert resp.status_code == 201, resp.get_json()
        body = resp.get_json()
        return {
            "id": body["user"]["id"],
            "token": body["token"],
            "headers": auth_header(body["token"]),
            "user": body["user"],
            "password": password,
        }

    return _make


@pytest.fixture
def make_pin(client):
    def _make(owner, title="Pin", description="", category=None, link="", image=JPEG_BYTES):
        data = {
            "title": title,
            "description": description,
            "link": link,
            "image": (io.BytesIO(image), "pin.jpg", "image/jpeg"),
        }
        if category is not None:
            data["category"] = category
        resp = client.post("/api/pins", data=data, headers=owner["headers"], content_type="multipart/form-data")
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()["pin"]

    return _make


# =============================================================================
# requests.Session stand-in backed by the Flask test client
# =============================================================================


class FlaskResponse:
    def __init__(self, response):
        self.status_code = response.status_code
        self._response = response

    def json(self):
        body = self._response.get_json(silent=True)
        if body is None:
            raise ValueError("response has no JSON body")
        return body


class FlaskSession:
    """Routes PinboardClient calls into the Flask test client instead of the network."""

    def __init__(self, test_client):
        self.test_client = test_client
        self.calls = []

    def request(self, method, url, params=None, json=None, data=None, files=None, headers=None, timeout=None):
        path = urlsplit(url).path
        self.calls.append((method, path))
        kwargs = {"method": method, "query_string": params, "headers": headers or {}}
        if files:
            form = dict(data or {})
            for field, (filename, content, mimetype) in files.items():
                form[field] = (io.BytesIO(content), filename, mimetype)
            kwargs["data"] = form
            kwargs["content_type"] = "multipart/form-data"
        elif json is not None:
            kwargs["json"] = json
        elif data is not None:
            kwargs["data"] = data
        return FlaskResponse(self.test_client.open(path, **kwargs))


@pytest.fixture
def flask_session(client):
    return FlaskSession(client)
