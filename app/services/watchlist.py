"""Per-profile watchlist membership gated by the rating policy."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import ContentItem, Profile, WatchlistEntry
from ..errors import (
    AccessDeniedError,
    DuplicateError,
    ForbiddenError,
    NotFoundError,
    ValidationFailedError,
)
from ..models import (
    WATCH_STATUSES,
    ContentItemOut,
    Pagination,
    WatchlistEntryOut,
    WatchlistPage,
    WatchlistStats,
)
from ..ratings import AGE_RESTRICTION_MESSAGE, can_access
from ..utils import page_window, pick_fields

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("status", "notes", "is_favorite", "last_watched")
SORT_COLUMNS = {
    "updated_at": WatchlistEntry.updated_at,
    "created_at": WatchlistEntry.created_at,
    "status": WatchlistEntry.status,
    "last_watched": WatchlistEntry.last_watched,
}


class WatchlistService:
    """Track what each profile plans to watch, is watching or has finished."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def add(
        self,
        profile_id: str,
        content_id: str,
        *,
        status: str | None = None,
        notes: str | None = None,
    ) -> WatchlistEntryOut:
        """Insert a watchlist entry if the profile's ceiling allows the item."""

        if status is not None and status not in WATCH_STATUSES:
            raise ValidationFailedError(f"Invalid watch status: {status}")

        async with self._session_factory() as session:
            profile = await session.get(Profile, profile_id)
            if profile is None:
                raise NotFoundError("Profile", profile_id)
            content = await session.get(ContentItem, content_id)
            if content is None:
                raise NotFoundError("Anime", content_id)

            if not can_access(profile, content):
                raise AccessDeniedError(AGE_RESTRICTION_MESSAGE)

            existing = await self._find_entry(session, profile_id, content_id)
            if existing is not None:
                raise DuplicateError("Anime already in watchlist")

            entry = WatchlistEntry(
                profile_id=profile_id,
                content_id=content_id,
                status=status or "plan_to_watch",
                notes=notes,
            )
            session.add(entry)
            try:
                await session.commit()
            except IntegrityError as exc:
                # A concurrent insert won the unique (profile, content) slot.
                await session.rollback()
                raise DuplicateError("Anime already in watchlist") from exc
            await session.refresh(entry)
            return self._entry_out(entry, content)

    async def list(
        self,
        profile_id: str,
        *,
        status: str | None = None,
        favorites_only: bool = False,
        sort: str = "updated_at",
        order: str = "desc",
        page: int | None = None,
        limit: int | None = None,
    ) -> WatchlistPage:
        """Return a page of the profile's entries with their catalog items."""

        column = SORT_COLUMNS.get(sort)
        if column is None:
            raise ValidationFailedError(f"Unsupported sort field: {sort}")
        page_number, page_size, offset = page_window(page, limit)

        async with self._session_factory() as session:
            if await session.get(Profile, profile_id) is None:
                raise NotFoundError("Profile", profile_id)

            conditions = [WatchlistEntry.profile_id == profile_id]
            if status:
                conditions.append(WatchlistEntry.status == status)
            if favorites_only:
                conditions.append(WatchlistEntry.is_favorite.is_(True))

            total = await session.scalar(
                select(func.count()).select_from(WatchlistEntry).where(*conditions)
            )
            ordering = column.asc() if order == "asc" else column.desc()
            result = await session.execute(
                select(WatchlistEntry, ContentItem)
                .outerjoin(ContentItem, ContentItem.id == WatchlistEntry.content_id)
                .where(*conditions)
                .order_by(ordering, WatchlistEntry.id)
                .offset(offset)
                .limit(page_size)
            )
            data = [self._entry_out(entry, content) for entry, content in result.all()]

        return WatchlistPage(
            data=data,
            pagination=Pagination.build(
                total=int(total or 0), page=page_number, page_size=page_size
            ),
        )

    async def favorites(
        self, profile_id: str, *, page: int | None = None, limit: int | None = None
    ) -> WatchlistPage:
        return await self.list(
            profile_id, favorites_only=True, page=page, limit=limit
        )

    async def find(
        self, profile_id: str, content_id: str
    ) -> WatchlistEntryOut | None:
        """Return the entry pairing ``profile_id`` and ``content_id`` if any."""

        async with self._session_factory() as session:
            entry = await self._find_entry(session, profile_id, content_id)
            if entry is None:
                return None
            content = await session.get(ContentItem, content_id)
            return self._entry_out(entry, content)

    async def update(
        self, entry_id: str, profile_id: str, patch: Mapping[str, Any]
    ) -> WatchlistEntryOut:
        """Apply the recognised fields of ``patch`` to an owned entry.

        Statuses may move freely between any of the four values.
        """

        changes = pick_fields(patch, UPDATABLE_FIELDS)
        if "status" in changes and changes["status"] not in WATCH_STATUSES:
            raise ValidationFailedError(f"Invalid watch status: {changes['status']}")
        if "is_favorite" in changes:
            changes["is_favorite"] = bool(changes["is_favorite"])

        async with self._session_factory() as session:
            entry = await self._load_owned(
                session,
                entry_id,
                profile_id,
                message="You can only update your own watchlist entries",
            )
            for key, value in changes.items():
                setattr(entry, key, value)
            await session.commit()
            await session.refresh(entry)
            content = await session.get(ContentItem, entry.content_id)
            return self._entry_out(entry, content)

    async def toggle_favorite(
        self, entry_id: str, profile_id: str, is_favorite: bool
    ) -> WatchlistEntryOut:
        return await self.update(entry_id, profile_id, {"is_favorite": is_favorite})

    async def remove(self, entry_id: str, profile_id: str) -> bool:
        async with self._session_factory() as session:
            entry = await self._load_owned(
                session,
                entry_id,
                profile_id,
                message="You can only remove entries from your own watchlist",
            )
            await session.delete(entry)
            await session.commit()
        return True

    async def remove_by_profile_and_item(self, profile_id: str, content_id: str) -> bool:
        """Delete the pair if present; ``False`` signals it was not there."""

        async with self._session_factory() as session:
            result = await session.execute(
                delete(WatchlistEntry).where(
                    WatchlistEntry.profile_id == profile_id,
                    WatchlistEntry.content_id == content_id,
                )
            )
            await session.commit()
            return bool(result.rowcount)

    async def stats(self, profile_id: str) -> WatchlistStats:
        """Count entries per status, in total and as favorites."""

        counts: dict[str, int] = {status: 0 for status in WATCH_STATUSES}
        total = 0
        favorites = 0
        async with self._session_factory() as session:
            result = await session.execute(
                select(WatchlistEntry.status, WatchlistEntry.is_favorite).where(
                    WatchlistEntry.profile_id == profile_id
                )
            )
            for status, is_favorite in result.all():
                total += 1
                if status in counts:
                    counts[status] += 1
                if is_favorite:
                    favorites += 1
        return WatchlistStats(**counts, total=total, favorites=favorites)

    async def delete_for_profile(self, profile_id: str) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(WatchlistEntry).where(WatchlistEntry.profile_id == profile_id)
            )
            await session.commit()
            return int(result.rowcount or 0)

    async def _load_owned(
        self,
        session: AsyncSession,
        entry_id: str,
        profile_id: str,
        *,
        message: str,
    ) -> WatchlistEntry:
        entry = await session.get(WatchlistEntry, entry_id)
        if entry is None:
            raise NotFoundError("Watchlist entry", entry_id)
        if entry.profile_id != profile_id:
            raise ForbiddenError(message)
        return entry

    @staticmethod
    async def _find_entry(
        session: AsyncSession, profile_id: str, content_id: str
    ) -> WatchlistEntry | None:
        result = await session.execute(
            select(WatchlistEntry).where(
                WatchlistEntry.profile_id == profile_id,
                WatchlistEntry.content_id == content_id,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _entry_out(
        entry: WatchlistEntry, content: ContentItem | None
    ) -> WatchlistEntryOut:
        payload = WatchlistEntryOut.model_validate(entry)
        if content is None:
            return payload
        return payload.model_copy(
            update={"content": ContentItemOut.model_validate(content)}
        )
