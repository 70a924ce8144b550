"""Pydantic models describing API payloads."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .ratings import ContentRating, ProfileKind

AiringStatus = Literal["airing", "finished", "announced", "on_hiatus"]
WatchStatus = Literal["plan_to_watch", "watching", "completed", "dropped"]

WATCH_STATUSES: tuple[str, ...] = ("plan_to_watch", "watching", "completed", "dropped")
AIRING_STATUSES: tuple[str, ...] = ("airing", "finished", "announced", "on_hiatus")


class Pagination(BaseModel):
    """Paging metadata attached to list responses."""

    model_config = ConfigDict(populate_by_name=True)

    total: int
    page: int
    page_size: int = Field(serialization_alias="pageSize")
    total_pages: int = Field(serialization_alias="totalPages")

    @classmethod
    def build(cls, *, total: int, page: int, page_size: int) -> "Pagination":
        return cls(
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size) if page_size else 0,
        )


# -- accounts ---------------------------------------------------------------


def normalize_email(value: str) -> str:
    """Lower-case an address and reject obviously malformed values."""

    cleaned = value.strip().lower()
    local, _, domain = cleaned.partition("@")
    if not local or not domain or " " in cleaned:
        raise ValueError("A valid email address is required")
    return cleaned


class RegisterRequest(BaseModel):
    username: str = Field(min_length=1, max_length=120)
    email: str = Field(max_length=255)
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator("username")
    @classmethod
    def _strip_username(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("Username must not be blank")
        return cleaned


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return value.strip().lower()


class RefreshRequest(BaseModel):
    token: str = Field(validation_alias=AliasChoices("token", "refreshToken"))


class UserUpdate(BaseModel):
    username: str | None = Field(default=None, min_length=1, max_length=120)
    email: str | None = Field(default=None, max_length=255)
    password: str | None = Field(default=None, min_length=1)
    profile_pic: str | None = Field(
        default=None, validation_alias=AliasChoices("profile_pic", "profilePic")
    )
    is_admin: bool | None = Field(
        default=None, validation_alias=AliasChoices("is_admin", "isAdmin")
    )


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    email: str
    profile_pic: str = ""
    is_admin: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class MonthlySignups(BaseModel):
    month: int
    total: int


# -- profiles ---------------------------------------------------------------


class ProfileCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    avatar: str | None = None
    kind: ProfileKind = Field(
        default="adult", validation_alias=AliasChoices("kind", "type")
    )
    max_content_rating: ContentRating | None = Field(
        default=None,
        validation_alias=AliasChoices("max_content_rating", "maxContentRating"),
    )
    is_active: bool = Field(
        default=True, validation_alias=AliasChoices("is_active", "isActive")
    )

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("Profile name must not be blank")
        return cleaned


class ProfileUpdate(BaseModel):
    """Partial profile changes; unknown keys such as the owner are ignored."""

    name: str | None = Field(default=None, min_length=1, max_length=120)
    avatar: str | None = None
    kind: str | None = Field(
        default=None, validation_alias=AliasChoices("kind", "type")
    )
    max_content_rating: str | None = Field(
        default=None,
        validation_alias=AliasChoices("max_content_rating", "maxContentRating"),
    )
    is_active: bool | None = Field(
        default=None, validation_alias=AliasChoices("is_active", "isActive")
    )


class ProfileTypeChange(BaseModel):
    type: str = Field(validation_alias=AliasChoices("type", "kind"))


class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    name: str
    avatar: str
    kind: str
    max_content_rating: str
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


class AuthResponse(BaseModel):
    user: UserOut
    token: str
    default_profile: ProfileOut | None = None
    profiles: list[ProfileOut] = Field(default_factory=list)


# -- catalog ----------------------------------------------------------------


def clean_genres(values: list[str]) -> list[str]:
    """Strip genre names, dropping blanks and repeats while keeping order."""

    cleaned: list[str] = []
    for genre in values:
        name = genre.strip()
        if name and name not in cleaned:
            cleaned.append(name)
    return cleaned


class ContentItemCreate(BaseModel):
    """Fields accepted when adding a catalog entry."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1, max_length=255)
    image_url: str = Field(validation_alias=AliasChoices("image_url", "imageUrl"))
    synopsis: str
    genres: list[str] = Field(default_factory=list)
    rating: float = Field(default=0.0, ge=0, le=10)
    season_count: int = Field(
        default=1, ge=1, validation_alias=AliasChoices("season_count", "seasonCount")
    )
    episode_count: int = Field(
        default=1, ge=1, validation_alias=AliasChoices("episode_count", "episodeCount")
    )
    status: AiringStatus = "airing"
    release_year: int = Field(
        validation_alias=AliasChoices("release_year", "releaseYear")
    )
    studio: str = Field(min_length=1)
    content_rating: ContentRating = Field(
        default="PG-13",
        validation_alias=AliasChoices("content_rating", "contentRating"),
    )
    external_id: str | None = Field(
        default=None, validation_alias=AliasChoices("external_id", "externalId")
    )

    @field_validator("genres")
    @classmethod
    def _clean_genres(cls, value: list[str]) -> list[str]:
        return clean_genres(value)


class ContentItemUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    image_url: str | None = Field(
        default=None, validation_alias=AliasChoices("image_url", "imageUrl")
    )
    synopsis: str | None = None
    genres: list[str] | None = None
    rating: float | None = Field(default=None, ge=0, le=10)
    season_count: int | None = Field(
        default=None, ge=1, validation_alias=AliasChoices("season_count", "seasonCount")
    )
    episode_count: int | None = Field(
        default=None,
        ge=1,
        validation_alias=AliasChoices("episode_count", "episodeCount"),
    )
    status: str | None = None
    release_year: int | None = Field(
        default=None, validation_alias=AliasChoices("release_year", "releaseYear")
    )
    studio: str | None = Field(default=None, min_length=1)
    content_rating: str | None = Field(
        default=None,
        validation_alias=AliasChoices("content_rating", "contentRating"),
    )

    @field_validator("genres")
    @classmethod
    def _clean_genres(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        return clean_genres(value)


class ContentItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    image_url: str
    synopsis: str
    genres: list[str]
    rating: float
    season_count: int
    episode_count: int
    status: str
    release_year: int
    studio: str
    content_rating: str
    external_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ContentPage(BaseModel):
    data: list[ContentItemOut]
    pagination: Pagination


# -- watchlist --------------------------------------------------------------


class WatchlistAddRequest(BaseModel):
    profile_id: str = Field(validation_alias=AliasChoices("profile_id", "profileId"))
    content_id: str = Field(
        validation_alias=AliasChoices("content_id", "contentId", "animeId")
    )
    status: WatchStatus | None = None
    notes: str | None = None


class WatchlistEntryUpdate(BaseModel):
    profile_id: str = Field(validation_alias=AliasChoices("profile_id", "profileId"))
    status: WatchStatus | None = None
    notes: str | None = None
    is_favorite: bool | None = Field(
        default=None, validation_alias=AliasChoices("is_favorite", "isFavorite")
    )
    last_watched: datetime | None = Field(
        default=None, validation_alias=AliasChoices("last_watched", "lastWatched")
    )


class FavoriteToggle(BaseModel):
    profile_id: str = Field(validation_alias=AliasChoices("profile_id", "profileId"))
    is_favorite: bool = Field(
        validation_alias=AliasChoices("is_favorite", "isFavorite")
    )


class WatchlistEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    profile_id: str
    content_id: str
    status: str
    is_favorite: bool
    notes: str | None = None
    last_watched: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    content: ContentItemOut | None = None


class WatchlistPage(BaseModel):
    data: list[WatchlistEntryOut]
    pagination: Pagination


class WatchlistStats(BaseModel):
    plan_to_watch: int = 0
    watching: int = 0
    completed: int = 0
    dropped: int = 0
    total: int = 0
    favorites: int = 0
