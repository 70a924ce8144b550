"""Viewing profile lifecycle: creation caps, ownership checks and cascades."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..db_models import Profile, User
from ..errors import (
    DuplicateError,
    ForbiddenError,
    InvalidTypeError,
    LastProfileError,
    LimitExceededError,
    NotFoundError,
    ValidationFailedError,
)
from ..models import ProfileCreate, ProfileOut
from ..ratings import PROFILE_KINDS, ceiling_for_kind, normalize_rating
from ..utils import build_avatar_url, pick_fields
from .watchlist import WatchlistService

logger = logging.getLogger(__name__)

OWNER_FIELDS = ("user_id", "user")
MUTABLE_FIELDS = ("name", "avatar", "kind", "max_content_rating", "is_active")


class ProfileService:
    """Manage the profiles owned by a user."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        watchlist: WatchlistService,
    ):
        self._settings = settings
        self._session_factory = session_factory
        self._watchlist = watchlist

    @property
    def max_profiles(self) -> int:
        return self._settings.max_profiles_per_user

    async def create(self, user_id: str, data: ProfileCreate) -> ProfileOut:
        """Create a profile for ``user_id`` unless the cap has been reached."""

        async with self._session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise NotFoundError("User", user_id)

            existing = await self._count_profiles(session, user_id)
            if existing >= self.max_profiles:
                raise LimitExceededError(
                    f"Maximum number of profiles reached ({self.max_profiles})"
                )

            profile = Profile(
                user_id=user_id,
                name=data.name,
                avatar=data.avatar
                or build_avatar_url(self._settings.avatar_base_url, data.name),
                kind=data.kind,
                max_content_rating=data.max_content_rating
                or ceiling_for_kind(data.kind),
                is_active=data.is_active,
            )
            session.add(profile)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateError(
                    f"A profile named {data.name!r} already exists"
                ) from exc
            await session.refresh(profile)
            logger.info("Created profile %s for user %s", profile.id, user_id)
            return ProfileOut.model_validate(profile)

    async def list_for_user(self, user_id: str) -> list[ProfileOut]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Profile)
                .where(Profile.user_id == user_id)
                .order_by(Profile.created_at, Profile.id)
            )
            return [ProfileOut.model_validate(row) for row in result.scalars()]

    async def get(self, profile_id: str, requesting_user_id: str) -> ProfileOut:
        """Return the profile if it exists and belongs to the requester."""

        async with self._session_factory() as session:
            profile = await self._load_owned(session, profile_id, requesting_user_id)
            return ProfileOut.model_validate(profile)

    async def update(
        self,
        profile_id: str,
        requesting_user_id: str,
        patch: Mapping[str, Any],
    ) -> ProfileOut:
        """Apply ``patch`` to an owned profile.

        Owner changes are dropped without complaint. ``kind`` and
        ``max_content_rating`` are applied as given, so a caller may pin a
        ceiling that differs from the kind's default.
        """

        # Every mutable column is NOT NULL, so an explicit null means "unchanged".
        changes = pick_fields(
            {
                key: value
                for key, value in patch.items()
                if key not in OWNER_FIELDS and value is not None
            },
            MUTABLE_FIELDS,
        )
        if "kind" in changes and changes["kind"] not in PROFILE_KINDS:
            raise InvalidTypeError("Invalid profile type")
        if "max_content_rating" in changes:
            changes["max_content_rating"] = normalize_rating(
                changes["max_content_rating"]
            )
        if "name" in changes:
            changes["name"] = str(changes["name"]).strip()
            if not changes["name"]:
                raise ValidationFailedError("Profile name must not be blank")

        async with self._session_factory() as session:
            profile = await self._load_owned(session, profile_id, requesting_user_id)
            for key, value in changes.items():
                setattr(profile, key, value)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateError(
                    f"A profile named {changes.get('name')!r} already exists"
                ) from exc
            await session.refresh(profile)
            return ProfileOut.model_validate(profile)

    async def delete(self, profile_id: str, requesting_user_id: str) -> None:
        """Delete an owned profile, then drop its watchlist entries."""

        async with self._session_factory() as session:
            await self._load_owned(session, profile_id, requesting_user_id)
            remaining = await self._count_profiles(session, requesting_user_id)
            if remaining <= 1:
                raise LastProfileError()
            await session.execute(delete(Profile).where(Profile.id == profile_id))
            await session.commit()
        logger.info("Deleted profile %s for user %s", profile_id, requesting_user_id)

        await self._cascade_watchlist(profile_id)

    async def change_type(
        self, profile_id: str, requesting_user_id: str, new_type: str
    ) -> ProfileOut:
        """Switch the profile kind and reset its ceiling to match."""

        if new_type not in PROFILE_KINDS:
            raise InvalidTypeError("Invalid profile type")
        return await self.update(
            profile_id,
            requesting_user_id,
            {"kind": new_type, "max_content_rating": ceiling_for_kind(new_type)},
        )

    async def delete_all_for_user(self, user_id: str) -> int:
        """Remove every profile of ``user_id`` along with their watchlists."""

        async with self._session_factory() as session:
            result = await session.execute(
                select(Profile.id).where(Profile.user_id == user_id)
            )
            profile_ids = list(result.scalars())
            if profile_ids:
                await session.execute(
                    delete(Profile).where(Profile.id.in_(profile_ids))
                )
                await session.commit()
        for profile_id in profile_ids:
            await self._cascade_watchlist(profile_id)
        return len(profile_ids)

    async def _cascade_watchlist(self, profile_id: str) -> None:
        try:
            removed = await self._watchlist.delete_for_profile(profile_id)
        except Exception:
            logger.exception(
                "Failed to remove watchlist entries for profile %s", profile_id
            )
            return
        if removed:
            logger.info(
                "Removed %s watchlist entries for profile %s", removed, profile_id
            )

    async def _load_owned(
        self, session: AsyncSession, profile_id: str, requesting_user_id: str
    ) -> Profile:
        profile = await session.get(Profile, profile_id)
        if profile is None:
            raise NotFoundError("Profile", profile_id)
        if profile.user_id != str(requesting_user_id):
            raise ForbiddenError("You can only access your own profiles")
        return profile

    @staticmethod
    async def _count_profiles(session: AsyncSession, user_id: str) -> int:
        total = await session.scalar(
            select(func.count()).select_from(Profile).where(Profile.user_id == user_id)
        )
        return int(total or 0)
