"""End-to-end tests for the HTTP routes."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import update

from app.config import Settings
from app.database import Database
from app.db_models import User
from app.main import install_services, register_routes
from app.models import RegisterRequest

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-pw"


def build_settings(**overrides: Any) -> Settings:
    base: dict[str, Any] = {"SECRET_KEY": "api-secret"}
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


@pytest.fixture
def client(tmp_path):
    config = build_settings()

    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI):
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
        await database.create_all()
        install_services(fastapi_app, config, database, None, password_iterations=1_000)
        admin = await fastapi_app.state.account_service.register(
            RegisterRequest(username="admin", email=ADMIN_EMAIL, password=ADMIN_PASSWORD)
        )
        async with database.session() as session:
            await session.execute(
                update(User).where(User.id == admin.user.id).values(is_admin=True)
            )
            await session.commit()
        try:
            yield
        finally:
            await database.dispose()

    fastapi_app = FastAPI(lifespan=lifespan)
    register_routes(fastapi_app)
    with TestClient(fastapi_app) as test_client:
        yield test_client


def _auth(token: str, profile_id: str | None = None) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {token}"}
    if profile_id:
        headers["profileid"] = profile_id
    return headers


def _register(client: TestClient, name: str = "alice") -> dict[str, Any]:
    response = client.post(
        "/api/auth/register",
        json={"username": name, "email": f"{name}@example.com", "password": "pw"},
    )
    assert response.status_code == 201, response.text
    return response.json()


def _admin_token(client: TestClient) -> str:
    response = client.post(
        "/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD}
    )
    assert response.status_code == 200, response.text
    return response.json()["token"]


def _create_anime(client: TestClient, title: str, rating: str) -> dict[str, Any]:
    response = client.post(
        "/api/animes",
        json={
            "title": title,
            "imageUrl": f"https://img.example.com/{title}.jpg",
            "synopsis": f"{title} synopsis",
            "genres": ["Action"],
            "rating": 8.2,
            "releaseYear": 2016,
            "studio": "MAPPA",
            "contentRating": rating,
        },
        headers=_auth(_admin_token(client)),
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_healthcheck(client: TestClient) -> None:
    assert client.get("/healthz").json() == {"status": "ok"}


def test_register_login_and_me(client: TestClient) -> None:
    registered = _register(client)

    assert registered["default_profile"]["name"] == "Principal"
    assert registered["default_profile"]["max_content_rating"] == "NC-17"

    me = client.get("/api/users/me", headers=_auth(registered["token"]))
    assert me.status_code == 200
    assert me.json()["username"] == "alice"

    raw_header = client.get("/api/users/me", headers={"token": registered["token"]})
    assert raw_header.status_code == 200

    duplicate = client.post(
        "/api/auth/register",
        json={"username": "alice", "email": "alice@example.com", "password": "pw"},
    )
    assert duplicate.status_code == 409
    assert duplicate.json() == {"status": "error", "message": "Email already in use"}

    refreshed = client.post("/api/auth/refresh", json={"refreshToken": registered["token"]})
    assert refreshed.status_code == 200
    assert refreshed.json()["token"]


def test_missing_or_bad_token_is_unauthorised(client: TestClient) -> None:
    missing = client.get("/api/users/me")
    assert missing.status_code == 401
    assert missing.headers["www-authenticate"] == "Bearer"

    bad = client.get("/api/users/me", headers=_auth("not.a.token"))
    assert bad.status_code == 401
    assert bad.json()["message"] == "Invalid token"


def test_admin_routes_reject_regular_users(client: TestClient) -> None:
    token = _register(client)["token"]

    assert client.get("/api/users", headers=_auth(token)).status_code == 403
    assert client.get("/api/users/stats", headers=_auth(token)).status_code == 403
    created = client.post(
        "/api/animes",
        json={"title": "x", "imageUrl": "i", "synopsis": "s", "releaseYear": 1, "studio": "s"},
        headers=_auth(token),
    )
    assert created.status_code == 403

    admin_users = client.get("/api/users", headers=_auth(_admin_token(client)))
    assert admin_users.status_code == 200
    assert {user["username"] for user in admin_users.json()} == {"admin", "alice"}


def test_catalog_listing_is_public_and_paginated(client: TestClient) -> None:
    _create_anime(client, "Chainsaw Man", "R")
    _create_anime(client, "Yotsuba", "G")

    response = client.get("/api/animes", params={"sort": "title", "order": "asc", "limit": 1})

    assert response.status_code == 200
    body = response.json()
    assert [item["title"] for item in body["data"]] == ["Chainsaw Man"]
    assert body["pagination"] == {"total": 2, "page": 1, "pageSize": 1, "totalPages": 2}

    filtered = client.get("/api/animes", params={"contentRating": "G"})
    assert [item["title"] for item in filtered.json()["data"]] == ["Yotsuba"]


def test_kid_profile_is_blocked_from_mature_content(client: TestClient) -> None:
    mature = _create_anime(client, "Chainsaw Man", "R")
    alice = _register(client)
    token = alice["token"]

    kid = client.post(
        "/api/profiles", json={"name": "Kiddo", "type": "kid"}, headers=_auth(token)
    )
    assert kid.status_code == 201
    kid_id = kid.json()["id"]
    assert kid.json()["max_content_rating"] == "PG"

    denied = client.get(f"/api/animes/{mature['id']}", headers=_auth(token, kid_id))
    assert denied.status_code == 403
    assert "age restrictions" in denied.json()["message"]

    adult_view = client.get(
        f"/api/animes/{mature['id']}",
        headers=_auth(token, alice["default_profile"]["id"]),
    )
    assert adult_view.status_code == 200

    add = client.post(
        "/api/watchlists",
        json={"profileId": kid_id, "animeId": mature["id"]},
        headers=_auth(token),
    )
    assert add.status_code == 403

    random_picks = client.get(
        "/api/animes/random", params={"count": 5}, headers=_auth(token, kid_id)
    )
    assert random_picks.status_code == 200
    assert random_picks.json() == []


def test_watchlist_flow(client: TestClient) -> None:
    anime = _create_anime(client, "Frieren", "PG")
    alice = _register(client)
    token = alice["token"]
    profile_id = alice["default_profile"]["id"]

    added = client.post(
        "/api/watchlists",
        json={"profileId": profile_id, "animeId": anime["id"]},
        headers=_auth(token),
    )
    assert added.status_code == 201
    entry = added.json()
    assert entry["status"] == "plan_to_watch"

    duplicate = client.post(
        "/api/watchlists",
        json={"profileId": profile_id, "animeId": anime["id"]},
        headers=_auth(token),
    )
    assert duplicate.status_code == 409

    updated = client.put(
        f"/api/watchlists/{entry['id']}",
        json={"profileId": profile_id, "status": "watching"},
        headers=_auth(token),
    )
    assert updated.json()["status"] == "watching"

    favorite = client.patch(
        f"/api/watchlists/{entry['id']}/favorite",
        json={"profileId": profile_id, "isFavorite": True},
        headers=_auth(token),
    )
    assert favorite.json()["is_favorite"] is True

    stats = client.get(f"/api/watchlists/{profile_id}/stats", headers=_auth(token))
    assert stats.json() == {
        "plan_to_watch": 0,
        "watching": 1,
        "completed": 0,
        "dropped": 0,
        "total": 1,
        "favorites": 1,
    }

    listing = client.get(f"/api/watchlists/{profile_id}", headers=_auth(token))
    assert [row["content"]["title"] for row in listing.json()["data"]] == ["Frieren"]

    membership = client.get(
        f"/api/watchlists/{profile_id}/anime/{anime['id']}", headers=_auth(token)
    )
    assert membership.status_code == 200

    removed = client.delete(
        f"/api/watchlists/{profile_id}/anime/{anime['id']}", headers=_auth(token)
    )
    assert removed.status_code == 200
    gone = client.get(
        f"/api/watchlists/{profile_id}/anime/{anime['id']}", headers=_auth(token)
    )
    assert gone.status_code == 404


def test_watchlist_of_another_user_is_forbidden(client: TestClient) -> None:
    alice = _register(client)
    bob = _register(client, "bob")

    response = client.get(
        f"/api/watchlists/{alice['default_profile']['id']}",
        headers=_auth(bob["token"]),
    )

    assert response.status_code == 403


def test_profile_lifecycle(client: TestClient) -> None:
    alice = _register(client)
    token = alice["token"]
    principal_id = alice["default_profile"]["id"]

    last = client.delete(f"/api/profiles/{principal_id}", headers=_auth(token))
    assert last.status_code == 400
    assert last.json()["message"] == "Cannot delete the last profile"

    second = client.post("/api/profiles", json={"name": "Second"}, headers=_auth(token))
    second_id = second.json()["id"]

    retyped = client.patch(
        f"/api/profiles/{second_id}/type", json={"type": "teen"}, headers=_auth(token)
    )
    assert retyped.json()["max_content_rating"] == "PG-13"

    invalid = client.patch(
        f"/api/profiles/{second_id}/type", json={"type": "pet"}, headers=_auth(token)
    )
    assert invalid.status_code == 400

    renamed = client.put(
        f"/api/profiles/{second_id}", json={"name": "Renamed"}, headers=_auth(token)
    )
    assert renamed.json()["name"] == "Renamed"

    deleted = client.delete(f"/api/profiles/{second_id}", headers=_auth(token))
    assert deleted.status_code == 200
    remaining = client.get("/api/profiles", headers=_auth(token)).json()
    assert [profile["id"] for profile in remaining] == [principal_id]


def test_null_fields_leave_records_unchanged(client: TestClient) -> None:
    alice = _register(client)
    token = alice["token"]
    profile_id = alice["default_profile"]["id"]

    profile = client.put(
        f"/api/profiles/{profile_id}",
        json={"name": None, "avatar": None},
        headers=_auth(token),
    )
    assert profile.status_code == 200, profile.text
    assert profile.json()["name"] == "Principal"
    assert profile.json()["avatar"] == alice["default_profile"]["avatar"]

    blank = client.put(
        f"/api/profiles/{profile_id}", json={"name": "  "}, headers=_auth(token)
    )
    assert blank.status_code == 400
    assert blank.json()["message"] == "Profile name must not be blank"

    anime = _create_anime(client, "Frieren", "PG")
    edited = client.put(
        f"/api/animes/{anime['id']}",
        json={"synopsis": None, "genres": ["Fantasy ", "Fantasy"]},
        headers=_auth(_admin_token(client)),
    )
    assert edited.status_code == 200, edited.text
    assert edited.json()["synopsis"] == "Frieren synopsis"
    assert edited.json()["genres"] == ["Fantasy"]
