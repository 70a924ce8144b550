"""Tests for the content rating hierarchy and access policy."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from app.errors import ValidationFailedError
from app.ratings import (
    RATING_HIERARCHY,
    allowed_ratings,
    can_access,
    ceiling_for_kind,
    is_rating_allowed,
    normalize_rating,
    rating_rank,
)


def test_hierarchy_is_ordered_least_restrictive_first() -> None:
    assert RATING_HIERARCHY == ("G", "PG", "PG-13", "R", "NC-17")
    assert [rating_rank(rating) for rating in RATING_HIERARCHY] == [0, 1, 2, 3, 4]


@pytest.mark.parametrize("content", RATING_HIERARCHY)
@pytest.mark.parametrize("ceiling", RATING_HIERARCHY)
def test_access_follows_rank_comparison(content: str, ceiling: str) -> None:
    expected = RATING_HIERARCHY.index(content) <= RATING_HIERARCHY.index(ceiling)

    assert is_rating_allowed(content, ceiling) is expected


def test_pg13_content_against_r_and_pg_ceilings() -> None:
    item = SimpleNamespace(content_rating="PG-13")

    assert can_access(SimpleNamespace(max_content_rating="R"), item)
    assert not can_access(SimpleNamespace(max_content_rating="PG"), item)


@pytest.mark.parametrize(
    ("content", "ceiling"),
    [("TV-MA", "NC-17"), ("PG", "X"), (None, "R"), ("G", None), ("", "")],
)
def test_unknown_ratings_are_denied(content, ceiling) -> None:
    """Unrecognised values never grant access, even against the top ceiling."""

    assert rating_rank(content) == -1 or rating_rank(ceiling) == -1
    assert is_rating_allowed(content, ceiling) is False


def test_allowed_ratings_is_hierarchy_prefix() -> None:
    assert allowed_ratings("G") == ["G"]
    assert allowed_ratings("PG-13") == ["G", "PG", "PG-13"]
    assert allowed_ratings("NC-17") == list(RATING_HIERARCHY)
    assert allowed_ratings("unrated") == []


def test_normalize_rating_accepts_loose_casing() -> None:
    assert normalize_rating(" pg-13 ") == "PG-13"
    assert normalize_rating("nc-17") == "NC-17"


@pytest.mark.parametrize("value", ["X", "", None, 13])
def test_normalize_rating_rejects_unknown_values(value) -> None:
    with pytest.raises(ValidationFailedError, match="Invalid content rating"):
        normalize_rating(value)


def test_kind_ceilings() -> None:
    assert ceiling_for_kind("adult") == "NC-17"
    assert ceiling_for_kind("teen") == "PG-13"
    assert ceiling_for_kind("kid") == "PG"
