import logging

import pytest

from music_catalog import db
from music_catalog.gateway import GenreGateway
from music_catalog.models import Genre


def test_database_url_is_required(monkeypatch):
    monkeypatch.delenv("DATABASE_URL")
    db.reset_engine()
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        db.get_engine()


def test_postgres_scheme_is_rewritten(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", " postgres://u:p@db:5432/catalog ")
    assert db._database_url() == "postgresql://u:p@db:5432/catalog"

    monkeypatch.setenv("DATABASE_URL", "postgresql+psycopg2://u:p@db:5432/catalog")
    assert db._database_url() == "postgresql+psycopg2://u:p@db:5432/catalog"


def test_engine_log_masks_password(monkeypatch, caplog):
    monkeypatch.setenv("DATABASE_URL", "postgres://u:s3cret@db:5432/catalog")
    db.reset_engine()

    with caplog.at_level(logging.INFO, logger="music_catalog.db"):
        engine = db.get_engine()

    assert engine.url.drivername == "postgresql"
    assert "s3cret" not in caplog.text
    assert "u:***@db:5432/catalog" in caplog.text


def test_session_rolls_back_on_error():
    with pytest.raises(ValueError):
        with db.get_db_session() as session:
            session.add(Genre(name="Jazz", image_url="u"))
            session.flush()
            raise ValueError("boom")

    assert GenreGateway().get_all() == []
