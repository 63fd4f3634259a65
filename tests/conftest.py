import pytest
from fastapi.testclient import TestClient

from music_catalog import db
from music_catalog.cli import promote_user
from music_catalog.main import app


@pytest.fixture(autouse=True)
def catalog_db(tmp_path, monkeypatch):
    """Give every test its own SQLite database and a clean environment."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'catalog.db'}")
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    for var in (
        "CLOUDINARY_CLOUD_NAME",
        "CLOUDINARY_API_KEY",
        "CLOUDINARY_API_SECRET",
        "CLOUDINARY_UPLOAD_PRESET",
        "MAX_UPLOAD_BYTES",
    ):
        monkeypatch.delenv(var, raising=False)
    db.reset_engine()
    db.init_db()
    yield
    db.reset_engine()


@pytest.fixture
def client():
    return TestClient(app)


def _register(client, email, password="secret123", display_name="Listener"):
    resp = client.post(
        "/auth/register",
        json={"email": email, "password": password, "display_name": display_name},
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


@pytest.fixture
def user_headers(client):
    data = _register(client, "listener@example.com")
    return {"Authorization": f"Bearer {data['token']}"}


@pytest.fixture
def admin_headers(client):
    data = _register(client, "admin@example.com", display_name="Admin")
    assert promote_user("admin@example.com") == 1
    return {"Authorization": f"Bearer {data['token']}"}
