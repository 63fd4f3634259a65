"""
Catalog endpoints. Reads need a signed-in user; writes need an administrator.

- /genres, /genres/{id}
- /artists (?genre_id=), /artists/{id}
- /songs (?artist_id=), /songs/detailed, /songs/{id}

Relations are checked here, before any write reaches the gateway. Deletes never
cascade; detail views show a deleted parent as "Unknown".
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from music_catalog.auth import get_current_user, require_admin
from music_catalog.gateway import ArtistGateway, GenreGateway, SongGateway, resolve_name
from music_catalog.schemas import (
    ApplicationUser,
    ArtistCreate,
    ArtistDetail,
    ArtistRecord,
    ArtistUpdate,
    CreatedResponse,
    GenreCreate,
    GenreDetail,
    GenreRecord,
    GenreUpdate,
    SongCreate,
    SongDetail,
    SongRecord,
    SongUpdate,
)

router = APIRouter(tags=["Catalog"])

_genres = GenreGateway()
_artists = ArtistGateway()
_songs = SongGateway()


def _not_found(what: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"error": "not_found", "message": f"{what} not found."},
    )


def _require_relation(found: bool, field: str) -> None:
    if not found:
        raise HTTPException(
            status_code=422,
            detail={"error": "invalid_relation", "message": f"{field} does not reference an existing record."},
        )


# Genres


@router.get("/genres", response_model=List[GenreRecord], summary="List genres", operation_id="list_genres")
def list_genres(_: ApplicationUser = Depends(get_current_user)) -> List[GenreRecord]:
    return _genres.get_all()


@router.get("/genres/{genre_id}", response_model=GenreDetail, summary="Genre with its artists", operation_id="get_genre")
def get_genre(genre_id: str, _: ApplicationUser = Depends(get_current_user)) -> GenreDetail:
    genre = _genres.get_by_id(genre_id)
    if genre is None:
        raise _not_found("Genre")
    return GenreDetail(genre=genre, artists=_artists.get_by_genre(genre_id))


@router.post(
    "/genres",
    response_model=CreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a genre",
    operation_id="create_genre",
)
def create_genre(payload: GenreCreate, _: ApplicationUser = Depends(require_admin)) -> CreatedResponse:
    return CreatedResponse(id=_genres.create(payload))


@router.patch(
    "/genres/{genre_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Update a genre",
    operation_id="update_genre",
)
def update_genre(genre_id: str, patch: GenreUpdate, _: ApplicationUser = Depends(require_admin)) -> Response:
    _genres.update(genre_id, patch)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete(
    "/genres/{genre_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a genre (artists are kept)",
    operation_id="delete_genre",
)
def delete_genre(genre_id: str, _: ApplicationUser = Depends(require_admin)) -> Response:
    _genres.delete(genre_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Artists


@router.get("/artists", response_model=List[ArtistRecord], summary="List artists", operation_id="list_artists")
def list_artists(
    genre_id: Optional[str] = Query(None, description="Only artists in this genre."),
    _: ApplicationUser = Depends(get_current_user),
) -> List[ArtistRecord]:
    if genre_id:
        return _artists.get_by_genre(genre_id)
    return _artists.get_all()


@router.get(
    "/artists/{artist_id}",
    response_model=ArtistDetail,
    summary="Artist with genre name and songs",
    operation_id="get_artist",
)
def get_artist(artist_id: str, _: ApplicationUser = Depends(get_current_user)) -> ArtistDetail:
    artist = _artists.get_by_id(artist_id)
    if artist is None:
        raise _not_found("Artist")
    genre = _genres.get_by_id(artist.genre_id)
    return ArtistDetail(artist=artist, genre_name=resolve_name(genre), songs=_songs.get_by_artist(artist_id))


@router.post(
    "/artists",
    response_model=CreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an artist",
    operation_id="create_artist",
)
def create_artist(payload: ArtistCreate, _: ApplicationUser = Depends(require_admin)) -> CreatedResponse:
    _require_relation(_genres.get_by_id(payload.genre_id) is not None, "genre_id")
    return CreatedResponse(id=_artists.create(payload))


@router.patch(
    "/artists/{artist_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Update an artist",
    operation_id="update_artist",
)
def update_artist(artist_id: str, patch: ArtistUpdate, _: ApplicationUser = Depends(require_admin)) -> Response:
    if patch.genre_id is not None:
        _require_relation(_genres.get_by_id(patch.genre_id) is not None, "genre_id")
    _artists.update(artist_id, patch)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete(
    "/artists/{artist_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an artist (songs are kept)",
    operation_id="delete_artist",
)
def delete_artist(artist_id: str, _: ApplicationUser = Depends(require_admin)) -> Response:
    _artists.delete(artist_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Songs


@router.get("/songs", response_model=List[SongRecord], summary="List songs", operation_id="list_songs")
def list_songs(
    artist_id: Optional[str] = Query(None, description="Only songs by this artist."),
    _: ApplicationUser = Depends(get_current_user),
) -> List[SongRecord]:
    if artist_id:
        return _songs.get_by_artist(artist_id)
    return _songs.get_all()


@router.get(
    "/songs/detailed",
    response_model=List[SongDetail],
    summary="Songs with artist and genre names (admin)",
    operation_id="list_song_details",
)
def list_song_details(_: ApplicationUser = Depends(require_admin)) -> List[SongDetail]:
    artists = {a.id: a for a in _artists.get_all()}
    genres = {g.id: g for g in _genres.get_all()}
    details = []
    for song in _songs.get_all():
        artist = artists.get(song.artist_id)
        genre = genres.get(artist.genre_id) if artist is not None else None
        details.append(SongDetail(song=song, artist_name=resolve_name(artist), genre_name=resolve_name(genre)))
    return details


@router.get("/songs/{song_id}", response_model=SongRecord, summary="Get a song", operation_id="get_song")
def get_song(song_id: str, _: ApplicationUser = Depends(get_current_user)) -> SongRecord:
    song = _songs.get_by_id(song_id)
    if song is None:
        raise _not_found("Song")
    return song


@router.post(
    "/songs",
    response_model=CreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a song",
    operation_id="create_song",
)
def create_song(payload: SongCreate, _: ApplicationUser = Depends(require_admin)) -> CreatedResponse:
    _require_relation(_artists.get_by_id(payload.artist_id) is not None, "artist_id")
    return CreatedResponse(id=_songs.create(payload))


@router.patch(
    "/songs/{song_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Update a song",
    operation_id="update_song",
)
def update_song(song_id: str, patch: SongUpdate, _: ApplicationUser = Depends(require_admin)) -> Response:
    if patch.artist_id is not None:
        _require_relation(_artists.get_by_id(patch.artist_id) is not None, "artist_id")
    _songs.update(song_id, patch)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete(
    "/songs/{song_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a song",
    operation_id="delete_song",
)
def delete_song(song_id: str, _: ApplicationUser = Depends(require_admin)) -> Response:
    _songs.delete(song_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
