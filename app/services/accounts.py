"""User accounts: registration, login, token refresh and administration."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..db_models import User
from ..errors import (
    DuplicateError,
    ForbiddenError,
    InvalidCredentialsError,
    NotFoundError,
    TokenInvalidError,
    ValidationFailedError,
)
from ..models import (
    AuthResponse,
    LoginRequest,
    MonthlySignups,
    ProfileCreate,
    RegisterRequest,
    UserOut,
    normalize_email,
)
from ..security import (
    PASSWORD_ITERATIONS,
    TokenService,
    hash_password,
    verify_password,
)
from ..utils import build_avatar_url, pick_fields
from .profiles import ProfileService

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_NAME = "Principal"
SELF_EDITABLE_FIELDS = ("username", "email", "password", "profile_pic")


class AccountService:
    """Own users and the session tokens that identify them."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        profiles: ProfileService,
        tokens: TokenService,
        *,
        password_iterations: int = PASSWORD_ITERATIONS,
    ):
        self._settings = settings
        self._session_factory = session_factory
        self._profiles = profiles
        self._tokens = tokens
        self._password_iterations = password_iterations

    async def register(self, request: RegisterRequest) -> AuthResponse:
        """Create a user with a default adult profile and sign them in."""

        async with self._session_factory() as session:
            if await self._find_by_email(session, request.email) is not None:
                raise DuplicateError("Email already in use")
            clash = await session.scalar(
                select(User.id).where(User.username == request.username)
            )
            if clash is not None:
                raise DuplicateError("Username already in use")

            user = User(
                username=request.username,
                email=request.email,
                password_hash=hash_password(
                    request.password, iterations=self._password_iterations
                ),
            )
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateError("Email or username already in use") from exc
            await session.refresh(user)
            user_out = UserOut.model_validate(user)

        default_profile = await self._profiles.create(
            user_out.id,
            ProfileCreate(
                name=DEFAULT_PROFILE_NAME,
                kind="adult",
                max_content_rating="NC-17",
                avatar=build_avatar_url(
                    self._settings.avatar_base_url, user_out.username
                ),
            ),
        )
        logger.info("Registered user %s", user_out.id)
        return AuthResponse(
            user=user_out,
            token=self._tokens.issue(user_out.id, is_admin=user_out.is_admin),
            default_profile=default_profile,
            profiles=[default_profile],
        )

    async def login(self, request: LoginRequest) -> AuthResponse:
        async with self._session_factory() as session:
            user = await self._find_by_email(session, request.email)
            if user is None:
                raise InvalidCredentialsError("User not found")
            if not verify_password(request.password, user.password_hash):
                raise InvalidCredentialsError("Incorrect password")
            user_out = UserOut.model_validate(user)

        profiles = await self._profiles.list_for_user(user_out.id)
        return AuthResponse(
            user=user_out,
            token=self._tokens.issue(user_out.id, is_admin=user_out.is_admin),
            profiles=profiles,
        )

    async def refresh_token(self, token: str) -> str:
        """Exchange a still-valid token for a fresh one."""

        payload = self._tokens.verify(token)
        async with self._session_factory() as session:
            user = await session.get(User, payload.user_id)
            if user is None:
                raise NotFoundError("User", payload.user_id)
            return self._tokens.issue(user.id, is_admin=user.is_admin)

    async def authenticate(self, token: str) -> UserOut:
        """Resolve a bearer token to the user it was issued for."""

        payload = self._tokens.verify(token)
        async with self._session_factory() as session:
            user = await session.get(User, payload.user_id)
            if user is None:
                raise TokenInvalidError("Invalid token or user not found")
            return UserOut.model_validate(user)

    async def get_user(self, user_id: str) -> UserOut:
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise NotFoundError("User", user_id)
            return UserOut.model_validate(user)

    async def list_users(self) -> list[UserOut]:
        async with self._session_factory() as session:
            result = await session.execute(select(User).order_by(User.created_at))
            return [UserOut.model_validate(row) for row in result.scalars()]

    async def update_user(
        self, user_id: str, actor: UserOut, patch: Mapping[str, Any]
    ) -> UserOut:
        """Update an account; only its owner or an admin may do so.

        The admin flag is only honoured when the actor is an admin.
        """

        if user_id != actor.id and not actor.is_admin:
            raise ForbiddenError("You can only update your own account")
        allowed = SELF_EDITABLE_FIELDS + (("is_admin",) if actor.is_admin else ())
        changes = pick_fields(
            {key: value for key, value in patch.items() if value is not None},
            allowed,
        )
        if "email" in changes:
            try:
                changes["email"] = normalize_email(str(changes["email"]))
            except ValueError as exc:
                raise ValidationFailedError(str(exc)) from exc
        password = changes.pop("password", None)

        async with self._session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise NotFoundError("User", user_id)
            for key, value in changes.items():
                setattr(user, key, value)
            if password:
                user.password_hash = hash_password(
                    password, iterations=self._password_iterations
                )
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateError("Email or username already in use") from exc
            await session.refresh(user)
            return UserOut.model_validate(user)

    async def delete_user(self, user_id: str, actor: UserOut) -> None:
        """Delete an account, then remove its profiles best-effort."""

        if user_id != actor.id and not actor.is_admin:
            raise ForbiddenError("You can only delete your own account")
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise NotFoundError("User", user_id)
            await session.delete(user)
            await session.commit()
        logger.info("Deleted user %s", user_id)

        try:
            await self._profiles.delete_all_for_user(user_id)
        except Exception:
            logger.exception("Failed to remove profiles for deleted user %s", user_id)

    async def user_stats(self, *, now: datetime | None = None) -> list[MonthlySignups]:
        """Count sign-ups over the last year, grouped by calendar month."""

        now = now or datetime.utcnow()
        since = now - timedelta(days=365)
        async with self._session_factory() as session:
            result = await session.execute(
                select(User.created_at).where(User.created_at >= since)
            )
            months = Counter(created.month for created in result.scalars())
        return [
            MonthlySignups(month=month, total=total)
            for month, total in sorted(months.items())
        ]

    @staticmethod
    async def _find_by_email(session: AsyncSession, email: str) -> User | None:
        result = await session.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()
