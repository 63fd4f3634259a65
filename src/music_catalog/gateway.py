"""
Remote data gateway: typed CRUD over the genres, artists, songs and users collections.

Pure translation over the document store:
- lists are ordered by the collection's name field (name / title);
- missing created_at is read as "now";
- absent optional fields are never written;
- no existence checks on update/delete, no cascades, no retries.

Every store failure is logged here and re-raised as GatewayError(collection, operation).
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Generic, Iterator, List, Optional, Type, TypeVar

from pydantic import BaseModel
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from music_catalog.db import get_db_session
from music_catalog.errors import GatewayError
from music_catalog.models import Artist, Base, Genre, Song, User
from music_catalog.schemas import (
    ApplicationUser,
    ArtistRecord,
    GenreRecord,
    Role,
    SongRecord,
)

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "Unknown"

R = TypeVar("R", bound=BaseModel)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@contextmanager
def _store_call(collection: str, operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("gateway_error: collection=%s operation=%s exc=%s", collection, operation, exc)
        raise GatewayError(collection, operation, exc) from exc


class _CollectionGateway(Generic[R]):
    """Shared CRUD for one collection. Subclasses set model, record and order column."""

    collection: str
    model: Type[Base]
    record: Type[R]
    order_field: str

    def _to_record(self, row: Any) -> R:
        data = {c.key: getattr(row, c.key) for c in self.model.__table__.columns}
        if data.get("created_at") is None:
            data["created_at"] = _now()
        return self.record.model_validate(data)

    def _list(self, operation: str, **filters: Any) -> List[R]:
        stmt = select(self.model)
        for column, value in filters.items():
            stmt = stmt.where(getattr(self.model, column) == value)
        stmt = stmt.order_by(getattr(self.model, self.order_field))

        with _store_call(self.collection, operation):
            with get_db_session() as db:
                rows = db.execute(stmt).scalars().all()
                return [self._to_record(r) for r in rows]

    # PUBLIC_INTERFACE
    def get_all(self) -> List[R]:
        """All records, ascending by the collection's name field."""
        return self._list("get_all")

    # PUBLIC_INTERFACE
    def get_by_id(self, record_id: str) -> Optional[R]:
        """The record with this id, or None when there is none."""
        with _store_call(self.collection, "get_by_id"):
            with get_db_session() as db:
                row = db.get(self.model, record_id)
                return self._to_record(row) if row is not None else None

    # PUBLIC_INTERFACE
    def create(self, payload: BaseModel) -> str:
        """
        Insert a new record and return its store-assigned id.

        Absent optional fields are omitted from the write; created_at is assigned by the
        store's server default, not the client clock.
        """
        values: Dict[str, Any] = payload.model_dump(exclude_none=True)
        with _store_call(self.collection, "create"):
            with get_db_session() as db:
                row = self.model(**values)
                db.add(row)
                db.flush()
                logger.info("gateway_create: collection=%s id=%s", self.collection, row.id)
                return row.id

    # PUBLIC_INTERFACE
    def update(self, record_id: str, patch: BaseModel) -> None:
        """Write only the fields set on the patch. A missing id is a silent no-op."""
        values = patch.model_dump(exclude_unset=True)
        if not values:
            return
        stmt = update(self.model).where(self.model.id == record_id).values(**values)
        with _store_call(self.collection, "update"):
            with get_db_session() as db:
                db.execute(stmt)

    # PUBLIC_INTERFACE
    def delete(self, record_id: str) -> None:
        """Unconditional delete. Dependent records are left as they are."""
        with _store_call(self.collection, "delete"):
            with get_db_session() as db:
                db.execute(delete(self.model).where(self.model.id == record_id))


class GenreGateway(_CollectionGateway[GenreRecord]):
    collection = "genres"
    model = Genre
    record = GenreRecord
    order_field = "name"


class ArtistGateway(_CollectionGateway[ArtistRecord]):
    collection = "artists"
    model = Artist
    record = ArtistRecord
    order_field = "name"

    # PUBLIC_INTERFACE
    def get_by_genre(self, genre_id: str) -> List[ArtistRecord]:
        return self._list("get_by_genre", genre_id=genre_id)


class SongGateway(_CollectionGateway[SongRecord]):
    collection = "songs"
    model = Song
    record = SongRecord
    order_field = "title"

    # PUBLIC_INTERFACE
    def get_by_artist(self, artist_id: str) -> List[SongRecord]:
        return self._list("get_by_artist", artist_id=artist_id)


# PUBLIC_INTERFACE
def resolve_name(record: Optional[BaseModel]) -> str:
    """Display name for a possibly dangling reference ('Unknown' when unresolved)."""
    if record is None:
        return UNKNOWN_NAME
    return getattr(record, "name", None) or getattr(record, "title", None) or UNKNOWN_NAME


class UserGateway:
    """Access to the users collection for the session reconciler and admin tooling."""

    collection = "users"

    @staticmethod
    def _to_user(row: User) -> ApplicationUser:
        return ApplicationUser(
            id=row.id,
            email=row.email,
            display_name=row.display_name,
            role=row.role or "user",
            created_at=row.created_at or _now(),
        )

    # PUBLIC_INTERFACE
    def get(self, uid: str) -> Optional[ApplicationUser]:
        """Stored record for this identity, or None. Stored fields are returned as-is."""
        with _store_call(self.collection, "get"):
            with get_db_session() as db:
                row = db.get(User, uid)
                return self._to_user(row) if row is not None else None

    # PUBLIC_INTERFACE
    def create(self, user: ApplicationUser) -> None:
        with _store_call(self.collection, "create"):
            with get_db_session() as db:
                db.add(User(**user.model_dump()))
        logger.info("user_created: uid=%s role=%s", user.id, user.role)

    # PUBLIC_INTERFACE
    def get_or_create(self, user: ApplicationUser) -> ApplicationUser:
        """
        Return the stored record for user.id, creating it from `user` only if absent.

        An existing record is never overwritten (role and created_at are preserved).
        A concurrent insert for the same id resolves to the record that won.
        """
        existing = self.get(user.id)
        if existing is not None:
            return existing
        try:
            with get_db_session() as db:
                db.add(User(**user.model_dump()))
        except IntegrityError as exc:
            logger.info("user_get_or_create_race: uid=%s", user.id)
            winner = self.get(user.id)
            if winner is None:
                raise GatewayError(self.collection, "get_or_create", exc) from exc
            return winner
        except SQLAlchemyError as exc:
            logger.error("gateway_error: collection=%s operation=%s exc=%s", self.collection, "get_or_create", exc)
            raise GatewayError(self.collection, "get_or_create", exc) from exc
        logger.info("user_created: uid=%s role=%s", user.id, user.role)
        return user

    # PUBLIC_INTERFACE
    def set_role(self, email: str, role: Role) -> int:
        """Out-of-band role change by email. Returns the number of records updated."""
        stmt = update(User).where(User.email == email.lower().strip()).values(role=role)
        with _store_call(self.collection, "set_role"):
            with get_db_session() as db:
                return db.execute(stmt).rowcount
