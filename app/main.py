"""Entry point for the FastAPI-powered AnimeShelf API."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, TypeVar

import httpx
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .config import Settings, settings
from .database import Database
from .errors import (
    AdminRequiredError,
    AuthenticationError,
    NotFoundError,
    ValidationFailedError,
    register_exception_handlers,
)
from .models import (
    AuthResponse,
    ContentItemCreate,
    ContentItemOut,
    ContentItemUpdate,
    ContentPage,
    FavoriteToggle,
    LoginRequest,
    MonthlySignups,
    ProfileCreate,
    ProfileOut,
    ProfileTypeChange,
    ProfileUpdate,
    RefreshRequest,
    RegisterRequest,
    UserOut,
    UserUpdate,
    WatchlistAddRequest,
    WatchlistEntryOut,
    WatchlistEntryUpdate,
    WatchlistPage,
    WatchlistStats,
)
from .security import TokenService
from .services.accounts import AccountService
from .services.catalog import CatalogService
from .services.jikan import JikanClient
from .services.profiles import ProfileService
from .services.watchlist import WatchlistService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ServiceT = TypeVar("ServiceT")

app: FastAPI


class ExternalImportRequest(BaseModel):
    externalId: str


def install_services(
    fastapi_app: FastAPI,
    config: Settings,
    database: Database,
    jikan_http_client: httpx.AsyncClient | None,
    *,
    password_iterations: int | None = None,
) -> None:
    """Build the service graph and attach it to ``fastapi_app.state``."""

    session_factory = database.session_factory
    watchlist = WatchlistService(session_factory)
    profiles = ProfileService(config, session_factory, watchlist)
    jikan = (
        JikanClient(config, jikan_http_client)
        if jikan_http_client is not None
        else None
    )
    catalog = CatalogService(session_factory, jikan)
    tokens = TokenService(config.secret_key, config.token_ttl_seconds)
    account_kwargs: dict[str, Any] = {}
    if password_iterations is not None:
        account_kwargs["password_iterations"] = password_iterations
    accounts = AccountService(
        config, session_factory, profiles, tokens, **account_kwargs
    )

    fastapi_app.state.database = database
    fastapi_app.state.watchlist_service = watchlist
    fastapi_app.state.profile_service = profiles
    fastapi_app.state.catalog_service = catalog
    fastapi_app.state.account_service = accounts


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    jikan_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.jikan_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()
    install_services(fastapi_app, settings, database, jikan_client)

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Anime catalog with age-restricted viewing profiles",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def _service(request: Request, name: str, expected: type[ServiceT]) -> ServiceT:
    service = getattr(request.app.state, name, None)
    if not isinstance(service, expected):
        raise RuntimeError(f"{expected.__name__} not initialised")
    return service


def get_account_service(request: Request) -> AccountService:
    return _service(request, "account_service", AccountService)


def get_profile_service(request: Request) -> ProfileService:
    return _service(request, "profile_service", ProfileService)


def get_catalog_service(request: Request) -> CatalogService:
    return _service(request, "catalog_service", CatalogService)


def get_watchlist_service(request: Request) -> WatchlistService:
    return _service(request, "watchlist_service", WatchlistService)


def _extract_token(authorization: str | None, token_header: str | None) -> str:
    raw = authorization or token_header
    if not raw:
        raise AuthenticationError("Authentication token required")
    raw = raw.strip()
    if raw.lower().startswith("bearer "):
        return raw.split(" ", 1)[1].strip()
    return raw


async def current_user(
    authorization: str | None = Header(default=None),
    token: str | None = Header(default=None),
    accounts: AccountService = Depends(get_account_service),
) -> UserOut:
    return await accounts.authenticate(_extract_token(authorization, token))


async def current_admin(user: UserOut = Depends(current_user)) -> UserOut:
    if not user.is_admin:
        raise AdminRequiredError()
    return user


async def acting_profile(
    profileid: str | None = Header(default=None),
    user: UserOut = Depends(current_user),
    profiles: ProfileService = Depends(get_profile_service),
) -> ProfileOut | None:
    """Resolve the optional ``profileid`` header to an owned profile."""

    if not profileid:
        return None
    return await profiles.get(profileid, user.id)


def register_routes(fastapi_app: FastAPI) -> None:
    register_exception_handlers(fastapi_app)

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    # -- auth -------------------------------------------------------------

    @fastapi_app.post("/api/auth/register", status_code=201, response_model=AuthResponse)
    async def register(
        payload: RegisterRequest,
        accounts: AccountService = Depends(get_account_service),
    ) -> AuthResponse:
        return await accounts.register(payload)

    @fastapi_app.post("/api/auth/login", response_model=AuthResponse)
    async def login(
        payload: LoginRequest,
        accounts: AccountService = Depends(get_account_service),
    ) -> AuthResponse:
        return await accounts.login(payload)

    @fastapi_app.post("/api/auth/refresh")
    async def refresh(
        payload: RefreshRequest,
        accounts: AccountService = Depends(get_account_service),
    ) -> dict[str, str]:
        return {"token": await accounts.refresh_token(payload.token)}

    # -- users ------------------------------------------------------------

    @fastapi_app.get("/api/users/me", response_model=UserOut)
    async def get_me(user: UserOut = Depends(current_user)) -> UserOut:
        return user

    @fastapi_app.get("/api/users", response_model=list[UserOut])
    async def list_users(
        _: UserOut = Depends(current_admin),
        accounts: AccountService = Depends(get_account_service),
    ) -> list[UserOut]:
        return await accounts.list_users()

    @fastapi_app.get("/api/users/stats", response_model=list[MonthlySignups])
    async def user_stats(
        _: UserOut = Depends(current_admin),
        accounts: AccountService = Depends(get_account_service),
    ) -> list[MonthlySignups]:
        return await accounts.user_stats()

    @fastapi_app.put("/api/users/{user_id}", response_model=UserOut)
    async def update_user(
        user_id: str,
        payload: UserUpdate,
        user: UserOut = Depends(current_user),
        accounts: AccountService = Depends(get_account_service),
    ) -> UserOut:
        return await accounts.update_user(
            user_id, user, payload.model_dump(exclude_unset=True)
        )

    @fastapi_app.delete("/api/users/{user_id}")
    async def delete_user(
        user_id: str,
        user: UserOut = Depends(current_user),
        accounts: AccountService = Depends(get_account_service),
    ) -> dict[str, str]:
        await accounts.delete_user(user_id, user)
        return {"status": "success", "message": "User deleted successfully"}

    # -- profiles ---------------------------------------------------------

    @fastapi_app.get("/api/profiles", response_model=list[ProfileOut])
    async def list_profiles(
        user: UserOut = Depends(current_user),
        profiles: ProfileService = Depends(get_profile_service),
    ) -> list[ProfileOut]:
        return await profiles.list_for_user(user.id)

    @fastapi_app.post("/api/profiles", status_code=201, response_model=ProfileOut)
    async def create_profile(
        payload: ProfileCreate,
        user: UserOut = Depends(current_user),
        profiles: ProfileService = Depends(get_profile_service),
    ) -> ProfileOut:
        return await profiles.create(user.id, payload)

    @fastapi_app.get("/api/profiles/{profile_id}", response_model=ProfileOut)
    async def get_profile(
        profile_id: str,
        user: UserOut = Depends(current_user),
        profiles: ProfileService = Depends(get_profile_service),
    ) -> ProfileOut:
        return await profiles.get(profile_id, user.id)

    @fastapi_app.put("/api/profiles/{profile_id}", response_model=ProfileOut)
    async def update_profile(
        profile_id: str,
        payload: ProfileUpdate,
        user: UserOut = Depends(current_user),
        profiles: ProfileService = Depends(get_profile_service),
    ) -> ProfileOut:
        return await profiles.update(
            profile_id, user.id, payload.model_dump(exclude_unset=True)
        )

    @fastapi_app.delete("/api/profiles/{profile_id}")
    async def delete_profile(
        profile_id: str,
        user: UserOut = Depends(current_user),
        profiles: ProfileService = Depends(get_profile_service),
    ) -> dict[str, str]:
        await profiles.delete(profile_id, user.id)
        return {"status": "success", "message": "Profile deleted successfully"}

    @fastapi_app.patch("/api/profiles/{profile_id}/type", response_model=ProfileOut)
    async def change_profile_type(
        profile_id: str,
        payload: ProfileTypeChange,
        user: UserOut = Depends(current_user),
        profiles: ProfileService = Depends(get_profile_service),
    ) -> ProfileOut:
        return await profiles.change_type(profile_id, user.id, payload.type)

    # -- catalog ----------------------------------------------------------

    @fastapi_app.get("/api/animes", response_model=ContentPage)
    async def list_animes(
        genre: str | None = None,
        status: str | None = None,
        content_rating: str | None = Query(default=None, alias="contentRating"),
        search: str | None = None,
        sort: str = "rating",
        order: str = "desc",
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=20, ge=1, le=100),
        catalog: CatalogService = Depends(get_catalog_service),
    ) -> ContentPage:
        return await catalog.list(
            genre=genre,
            status=status,
            content_rating=content_rating,
            search=search,
            sort=sort,
            order=order,
            page=page,
            limit=limit,
        )

    @fastapi_app.get("/api/animes/search", response_model=ContentPage)
    async def search_animes(
        q: str | None = None,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=20, ge=1, le=100),
        _: UserOut = Depends(current_user),
        catalog: CatalogService = Depends(get_catalog_service),
    ) -> ContentPage:
        return await catalog.search(q or "", page=page, limit=limit)

    @fastapi_app.get("/api/animes/genres", response_model=list[str])
    async def list_genres(
        _: UserOut = Depends(current_user),
        catalog: CatalogService = Depends(get_catalog_service),
    ) -> list[str]:
        return await catalog.genres()

    @fastapi_app.get("/api/animes/random", response_model=list[ContentItemOut])
    async def random_animes(
        genre: str | None = None,
        content_rating: str | None = Query(default=None, alias="contentRating"),
        count: int = Query(default=5, ge=1, le=50),
        profile: ProfileOut | None = Depends(acting_profile),
        catalog: CatalogService = Depends(get_catalog_service),
    ) -> list[ContentItemOut]:
        return await catalog.random(
            count, genre=genre, content_rating=content_rating, profile=profile
        )

    @fastapi_app.get("/api/animes/external/search")
    async def search_external(
        title: str | None = None,
        _: UserOut = Depends(current_user),
        catalog: CatalogService = Depends(get_catalog_service),
    ) -> list[dict[str, Any]]:
        candidates = await catalog.search_external(title or "")
        return [candidate.model_dump() for candidate in candidates]

    @fastapi_app.post("/api/animes/external/import", response_model=ContentItemOut)
    async def import_external(
        payload: ExternalImportRequest,
        _: UserOut = Depends(current_admin),
        catalog: CatalogService = Depends(get_catalog_service),
    ):
        item, created = await catalog.import_external(payload.externalId)
        if created:
            logger.info("Imported external anime %s", payload.externalId)
        return item

    @fastapi_app.get("/api/animes/{content_id}", response_model=ContentItemOut)
    async def get_anime(
        content_id: str,
        profile: ProfileOut | None = Depends(acting_profile),
        catalog: CatalogService = Depends(get_catalog_service),
    ) -> ContentItemOut:
        return await catalog.get(content_id, profile)

    @fastapi_app.post("/api/animes", status_code=201, response_model=ContentItemOut)
    async def create_anime(
        payload: ContentItemCreate,
        _: UserOut = Depends(current_admin),
        catalog: CatalogService = Depends(get_catalog_service),
    ) -> ContentItemOut:
        return await catalog.create(payload)

    @fastapi_app.put("/api/animes/{content_id}", response_model=ContentItemOut)
    async def update_anime(
        content_id: str,
        payload: ContentItemUpdate,
        _: UserOut = Depends(current_admin),
        catalog: CatalogService = Depends(get_catalog_service),
    ) -> ContentItemOut:
        return await catalog.update(content_id, payload.model_dump(exclude_unset=True))

    @fastapi_app.delete("/api/animes/{content_id}")
    async def delete_anime(
        content_id: str,
        _: UserOut = Depends(current_admin),
        catalog: CatalogService = Depends(get_catalog_service),
    ) -> dict[str, str]:
        await catalog.delete(content_id)
        return {"status": "success", "message": "Anime deleted successfully"}

    # -- watchlists -------------------------------------------------------

    async def _owned_profile(request: Request, profile_id: str, user: UserOut) -> ProfileOut:
        return await get_profile_service(request).get(profile_id, user.id)

    @fastapi_app.post(
        "/api/watchlists", status_code=201, response_model=WatchlistEntryOut
    )
    async def add_to_watchlist(
        payload: WatchlistAddRequest,
        request: Request,
        user: UserOut = Depends(current_user),
        watchlist: WatchlistService = Depends(get_watchlist_service),
    ) -> WatchlistEntryOut:
        await _owned_profile(request, payload.profile_id, user)
        return await watchlist.add(
            payload.profile_id,
            payload.content_id,
            status=payload.status,
            notes=payload.notes,
        )

    @fastapi_app.get("/api/watchlists/{profile_id}", response_model=WatchlistPage)
    async def get_watchlist(
        profile_id: str,
        request: Request,
        status: str | None = None,
        sort: str = "updated_at",
        order: str = "desc",
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=20, ge=1, le=100),
        user: UserOut = Depends(current_user),
        watchlist: WatchlistService = Depends(get_watchlist_service),
    ) -> WatchlistPage:
        await _owned_profile(request, profile_id, user)
        return await watchlist.list(
            profile_id, status=status, sort=sort, order=order, page=page, limit=limit
        )

    @fastapi_app.get("/api/watchlists/{profile_id}/stats", response_model=WatchlistStats)
    async def get_watchlist_stats(
        profile_id: str,
        request: Request,
        user: UserOut = Depends(current_user),
        watchlist: WatchlistService = Depends(get_watchlist_service),
    ) -> WatchlistStats:
        await _owned_profile(request, profile_id, user)
        return await watchlist.stats(profile_id)

    @fastapi_app.get(
        "/api/watchlists/{profile_id}/favorites", response_model=WatchlistPage
    )
    async def get_favorites(
        profile_id: str,
        request: Request,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=20, ge=1, le=100),
        user: UserOut = Depends(current_user),
        watchlist: WatchlistService = Depends(get_watchlist_service),
    ) -> WatchlistPage:
        await _owned_profile(request, profile_id, user)
        return await watchlist.favorites(profile_id, page=page, limit=limit)

    @fastapi_app.get(
        "/api/watchlists/{profile_id}/anime/{content_id}",
        response_model=WatchlistEntryOut,
    )
    async def get_watchlist_membership(
        profile_id: str,
        content_id: str,
        request: Request,
        user: UserOut = Depends(current_user),
        watchlist: WatchlistService = Depends(get_watchlist_service),
    ) -> WatchlistEntryOut:
        await _owned_profile(request, profile_id, user)
        entry = await watchlist.find(profile_id, content_id)
        if entry is None:
            raise NotFoundError("Anime in this profile's watchlist", content_id)
        return entry

    @fastapi_app.delete("/api/watchlists/{profile_id}/anime/{content_id}")
    async def remove_anime_from_watchlist(
        profile_id: str,
        content_id: str,
        request: Request,
        user: UserOut = Depends(current_user),
        watchlist: WatchlistService = Depends(get_watchlist_service),
    ) -> dict[str, str]:
        await _owned_profile(request, profile_id, user)
        if not await watchlist.remove_by_profile_and_item(profile_id, content_id):
            raise NotFoundError("Anime in this profile's watchlist", content_id)
        return {"status": "success", "message": "Anime removed from watchlist"}

    @fastapi_app.put("/api/watchlists/{entry_id}", response_model=WatchlistEntryOut)
    async def update_watchlist_entry(
        entry_id: str,
        payload: WatchlistEntryUpdate,
        request: Request,
        user: UserOut = Depends(current_user),
        watchlist: WatchlistService = Depends(get_watchlist_service),
    ) -> WatchlistEntryOut:
        await _owned_profile(request, payload.profile_id, user)
        changes = payload.model_dump(exclude_unset=True, exclude={"profile_id"})
        if not changes:
            raise ValidationFailedError("No valid fields to update")
        return await watchlist.update(entry_id, payload.profile_id, changes)

    @fastapi_app.delete("/api/watchlists/{entry_id}")
    async def remove_watchlist_entry(
        entry_id: str,
        request: Request,
        profile_id: str = Query(alias="profileId"),
        user: UserOut = Depends(current_user),
        watchlist: WatchlistService = Depends(get_watchlist_service),
    ) -> dict[str, str]:
        await _owned_profile(request, profile_id, user)
        await watchlist.remove(entry_id, profile_id)
        return {"status": "success", "message": "Entry removed from watchlist"}

    @fastapi_app.patch(
        "/api/watchlists/{entry_id}/favorite", response_model=WatchlistEntryOut
    )
    async def toggle_favorite(
        entry_id: str,
        payload: FavoriteToggle,
        request: Request,
        user: UserOut = Depends(current_user),
        watchlist: WatchlistService = Depends(get_watchlist_service),
    ) -> WatchlistEntryOut:
        await _owned_profile(request, payload.profile_id, user)
        return await watchlist.toggle_favorite(
            entry_id, payload.profile_id, payload.is_favorite
        )


app = create_app()
