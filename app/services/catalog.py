"""Content catalog: admin CRUD, browsing, random picks and external import."""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Mapping

from sqlalchemy import String, cast, delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import ContentItem, WatchlistEntry
from ..errors import (
    AccessDeniedError,
    DuplicateError,
    ExternalCatalogError,
    NotFoundError,
    ValidationFailedError,
)
from ..models import (
    AIRING_STATUSES,
    ContentItemCreate,
    ContentItemOut,
    ContentPage,
    Pagination,
    clean_genres,
)
from ..ratings import (
    AGE_RESTRICTION_MESSAGE,
    RatedProfile,
    allowed_ratings,
    can_access,
    normalize_rating,
)
from ..utils import LIKE_ESCAPE, escape_like, page_window, pick_fields
from .jikan import JikanClient

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "rating": ContentItem.rating,
    "title": ContentItem.title,
    "release_year": ContentItem.release_year,
    "releaseYear": ContentItem.release_year,
    "episode_count": ContentItem.episode_count,
    "created_at": ContentItem.created_at,
    "createdAt": ContentItem.created_at,
    "updated_at": ContentItem.updated_at,
}
UPDATABLE_FIELDS = (
    "title",
    "image_url",
    "synopsis",
    "genres",
    "rating",
    "season_count",
    "episode_count",
    "status",
    "release_year",
    "studio",
    "content_rating",
)


class CatalogService:
    """Store and query the anime catalog."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        jikan: JikanClient | None = None,
    ):
        self._session_factory = session_factory
        self._jikan = jikan

    async def create(self, data: ContentItemCreate) -> ContentItemOut:
        """Add a catalog entry, rejecting duplicate titles or external ids."""

        values = data.model_dump()
        values["content_rating"] = normalize_rating(values["content_rating"])
        async with self._session_factory() as session:
            await self._ensure_unique(
                session, title=data.title, external_id=data.external_id
            )
            item = ContentItem(**values)
            session.add(item)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateError(
                    f"An anime titled {data.title!r} already exists"
                ) from exc
            await session.refresh(item)
            logger.info("Added %s (%s) to the catalog", item.title, item.id)
            return ContentItemOut.model_validate(item)

    async def list(
        self,
        *,
        genre: str | None = None,
        status: str | None = None,
        content_rating: str | Iterable[str] | None = None,
        search: str | None = None,
        sort: str = "rating",
        order: str = "desc",
        page: int | None = None,
        limit: int | None = None,
    ) -> ContentPage:
        """Return a filtered, sorted page of the catalog."""

        column = SORT_COLUMNS.get(sort)
        if column is None:
            raise ValidationFailedError(f"Unsupported sort field: {sort}")
        conditions = self._filters(
            genre=genre, status=status, content_rating=content_rating, search=search
        )
        page_number, page_size, offset = page_window(page, limit)
        ordering = column.asc() if order == "asc" else column.desc()

        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(ContentItem).where(*conditions)
            )
            result = await session.execute(
                select(ContentItem)
                .where(*conditions)
                .order_by(ordering, ContentItem.id)
                .offset(offset)
                .limit(page_size)
            )
            data = [ContentItemOut.model_validate(row) for row in result.scalars()]

        return ContentPage(
            data=data,
            pagination=Pagination.build(
                total=int(total or 0), page=page_number, page_size=page_size
            ),
        )

    async def get(
        self, content_id: str, profile: RatedProfile | None = None
    ) -> ContentItemOut:
        """Return one entry; with a profile, enforce its rating ceiling."""

        async with self._session_factory() as session:
            item = await session.get(ContentItem, content_id)
            if item is None:
                raise NotFoundError("Anime", content_id)
            if profile is not None and not can_access(profile, item):
                raise AccessDeniedError(AGE_RESTRICTION_MESSAGE)
            return ContentItemOut.model_validate(item)

    async def update(self, content_id: str, patch: Mapping[str, Any]) -> ContentItemOut:
        """Apply the recognised, non-null fields of ``patch`` to an entry."""

        changes = pick_fields(
            {key: value for key, value in patch.items() if value is not None},
            UPDATABLE_FIELDS,
        )
        if "title" in changes:
            changes["title"] = str(changes["title"]).strip()
            if not changes["title"]:
                raise ValidationFailedError("Anime title must not be blank")
        if "genres" in changes:
            changes["genres"] = clean_genres(changes["genres"])
        if "content_rating" in changes:
            changes["content_rating"] = normalize_rating(changes["content_rating"])
        if "status" in changes and changes["status"] not in AIRING_STATUSES:
            raise ValidationFailedError(f"Invalid status: {changes['status']}")

        async with self._session_factory() as session:
            item = await session.get(ContentItem, content_id)
            if item is None:
                raise NotFoundError("Anime", content_id)
            if "title" in changes and changes["title"] != item.title:
                await self._ensure_unique(session, title=changes["title"])
            for key, value in changes.items():
                setattr(item, key, value)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateError("An anime with this title already exists") from exc
            await session.refresh(item)
            return ContentItemOut.model_validate(item)

    async def delete(self, content_id: str) -> None:
        """Remove an entry together with the watchlist rows pointing at it."""

        async with self._session_factory() as session:
            item = await session.get(ContentItem, content_id)
            if item is None:
                raise NotFoundError("Anime", content_id)
            await session.execute(
                delete(WatchlistEntry).where(WatchlistEntry.content_id == content_id)
            )
            await session.delete(item)
            await session.commit()
        logger.info("Removed anime %s from the catalog", content_id)

    async def search(
        self, term: str, *, page: int | None = None, limit: int | None = None
    ) -> ContentPage:
        if not term or not term.strip():
            raise ValidationFailedError("Search query is required")
        return await self.list(search=term.strip(), page=page, limit=limit)

    async def by_genre(
        self, genre: str, *, page: int | None = None, limit: int | None = None
    ) -> ContentPage:
        return await self.list(genre=genre, page=page, limit=limit)

    async def by_content_rating(
        self, content_rating: str, *, page: int | None = None, limit: int | None = None
    ) -> ContentPage:
        rating = normalize_rating(content_rating)
        return await self.list(content_rating=rating, page=page, limit=limit)

    async def random(
        self,
        count: int = 5,
        *,
        genre: str | None = None,
        content_rating: str | None = None,
        profile: RatedProfile | None = None,
    ) -> list[ContentItemOut]:
        """Return a random sample, narrowed to the profile's ceiling if given."""

        if count < 1:
            return []
        ratings: list[str] | None = None
        if content_rating:
            ratings = [normalize_rating(content_rating)]
        if profile is not None:
            permitted = allowed_ratings(profile.max_content_rating)
            if ratings is None:
                ratings = permitted
            else:
                ratings = [rating for rating in ratings if rating in permitted]
            if not ratings:
                return []

        conditions = self._filters(genre=genre, content_rating=ratings)
        async with self._session_factory() as session:
            result = await session.execute(
                select(ContentItem)
                .where(*conditions)
                .order_by(func.random())
                .limit(count)
            )
            return [ContentItemOut.model_validate(row) for row in result.scalars()]

    async def genres(self) -> list[str]:
        """Return every genre used in the catalog, sorted."""

        async with self._session_factory() as session:
            result = await session.execute(select(ContentItem.genres))
            names: set[str] = set()
            for genres in result.scalars():
                names.update(genre for genre in genres or [] if genre)
        return sorted(names)

    async def search_external(self, title: str) -> list[ContentItemCreate]:
        if not title or not title.strip():
            raise ValidationFailedError("Anime title is required")
        return await self._require_jikan().search(title.strip())

    async def import_external(self, external_id: str) -> tuple[ContentItemOut, bool]:
        """Import an anime by external id.

        Returns the stored item and whether it was newly created; repeated
        imports of the same id return the existing row.
        """

        external_id = str(external_id).strip()
        if not external_id:
            raise ValidationFailedError("External ID is required")

        existing = await self._find_by_external_id(external_id)
        if existing is not None:
            return existing, False

        candidate = await self._require_jikan().fetch(external_id)
        if candidate is None:
            raise NotFoundError("Anime in external API", external_id)
        created = await self.create(candidate)
        return created, True

    async def _find_by_external_id(self, external_id: str) -> ContentItemOut | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ContentItem).where(ContentItem.external_id == external_id)
            )
            item = result.scalar_one_or_none()
            if item is None:
                return None
            return ContentItemOut.model_validate(item)

    def _require_jikan(self) -> JikanClient:
        if self._jikan is None:
            raise ExternalCatalogError("External catalog is not configured")
        return self._jikan

    @staticmethod
    def _filters(
        *,
        genre: str | None = None,
        status: str | None = None,
        content_rating: str | Iterable[str] | None = None,
        search: str | None = None,
    ) -> list[Any]:
        conditions: list[Any] = []
        if genre:
            # Genres are stored as a JSON array; match the serialised element.
            token = json.dumps(genre.strip(), ensure_ascii=False)
            conditions.append(
                cast(ContentItem.genres, String).like(
                    f"%{escape_like(token)}%", escape=LIKE_ESCAPE
                )
            )
        if status:
            conditions.append(ContentItem.status == status)
        if isinstance(content_rating, str):
            conditions.append(ContentItem.content_rating == content_rating)
        elif content_rating is not None:
            conditions.append(ContentItem.content_rating.in_(list(content_rating)))
        if search:
            pattern = f"%{escape_like(search)}%"
            conditions.append(
                or_(
                    ContentItem.title.ilike(pattern, escape=LIKE_ESCAPE),
                    ContentItem.synopsis.ilike(pattern, escape=LIKE_ESCAPE),
                )
            )
        return conditions

    @staticmethod
    async def _ensure_unique(
        session: AsyncSession,
        *,
        title: str | None = None,
        external_id: str | None = None,
    ) -> None:
        if title is not None:
            clash = await session.scalar(
                select(ContentItem.id).where(ContentItem.title == title)
            )
            if clash is not None:
                raise DuplicateError(f"An anime titled {title!r} already exists")
        if external_id:
            clash = await session.scalar(
                select(ContentItem.id).where(ContentItem.external_id == external_id)
            )
            if clash is not None:
                raise DuplicateError(
                    f"An anime with external id {external_id} already exists"
                )
