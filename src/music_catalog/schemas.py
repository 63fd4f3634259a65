"""
Pydantic models: catalog records, write payloads, session and upload shapes.

Optional fields (description, duration) are absent (None) rather than empty. Create
payloads are written with exclude_none and update patches with exclude_unset, so an
omitted field is never sent to the store.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

Role = Literal["user", "admin"]


class ApplicationUser(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Provider-issued identity id.")
    email: str = Field(..., description="Email at creation time.")
    display_name: Optional[str] = Field(None, description="Display name, if any.")
    role: Role = Field("user", description="Application role.")
    created_at: datetime = Field(..., description="Set once at first creation.")


# Genres


class GenreCreate(BaseModel):
    name: str = Field(..., min_length=1, description="Genre name.")
    image_url: str = Field(..., min_length=1, description="Cover image URL.")
    description: Optional[str] = Field(None, description="Optional description.")


class GenreUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    image_url: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None

    @field_validator("name", "image_url")
    @classmethod
    def required_not_null(cls, value: Optional[str]) -> str:
        # An explicit null would clear a required column.
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class GenreRecord(GenreCreate):
    model_config = ConfigDict(from_attributes=True)

    id: str
    created_at: datetime


# Artists


class ArtistCreate(BaseModel):
    name: str = Field(..., min_length=1, description="Artist name.")
    image_url: str = Field(..., min_length=1, description="Artist image URL.")
    genre_id: str = Field(..., min_length=1, description="Genre this artist belongs to.")
    description: Optional[str] = Field(None, description="Optional description.")


class ArtistUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    image_url: Optional[str] = Field(None, min_length=1)
    genre_id: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None

    @field_validator("name", "image_url", "genre_id")
    @classmethod
    def required_not_null(cls, value: Optional[str]) -> str:
        # An explicit null would clear a required column.
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class ArtistRecord(ArtistCreate):
    model_config = ConfigDict(from_attributes=True)

    id: str
    created_at: datetime


# Songs


class SongCreate(BaseModel):
    title: str = Field(..., min_length=1, description="Song title.")
    audio_url: str = Field(..., min_length=1, description="Playable audio URL.")
    artist_id: str = Field(..., min_length=1, description="Performing artist.")
    duration: Optional[float] = Field(None, ge=0, description="Duration in seconds.")


class SongUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    audio_url: Optional[str] = Field(None, min_length=1)
    artist_id: Optional[str] = Field(None, min_length=1)
    duration: Optional[float] = Field(None, ge=0)

    @field_validator("title", "audio_url", "artist_id")
    @classmethod
    def required_not_null(cls, value: Optional[str]) -> str:
        # An explicit null would clear a required column.
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class SongRecord(SongCreate):
    model_config = ConfigDict(from_attributes=True)

    id: str
    created_at: datetime


class GenreDetail(BaseModel):
    genre: GenreRecord
    artists: List[ArtistRecord]


class ArtistDetail(BaseModel):
    artist: ArtistRecord
    genre_name: str = Field(..., description="Genre name, or 'Unknown' if the genre was deleted.")
    songs: List[SongRecord]


class SongDetail(BaseModel):
    song: SongRecord
    artist_name: str = Field(..., description="Artist name, or 'Unknown' if the artist was deleted.")
    genre_name: str = Field(..., description="Genre of the artist, or 'Unknown'.")


class CreatedResponse(BaseModel):
    id: str = Field(..., description="Store-assigned id.")


# Auth


class AuthRegisterRequest(BaseModel):
    email: EmailStr = Field(..., description="User email address (unique).")
    password: str = Field(..., min_length=6, description="User password (min 6 chars).")
    display_name: str = Field(..., min_length=1, description="Display name.")


class AuthLoginRequest(BaseModel):
    email: EmailStr = Field(..., description="User email address.")
    password: str = Field(..., description="User password.")


class FederatedSignInRequest(BaseModel):
    access_token: str = Field(..., min_length=1, description="Access token from the provider's consent flow.")


class AuthSessionResponse(BaseModel):
    token: str = Field(..., description="JWT access token.")
    token_type: str = Field("bearer", description="Token type for Authorization header.")
    user: ApplicationUser
    notice: Optional[str] = Field(None, description="Non-blocking informational notice, if any.")


# Uploads


class UploadResult(BaseModel):
    public_id: str
    secure_url: str
    resource_type: Optional[str] = None
    format: Optional[str] = None


class AssetDeleteResponse(BaseModel):
    public_id: str
    result: str = Field(..., description="Host result, e.g. 'ok' or 'not found'.")
