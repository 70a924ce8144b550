"""Utility helpers for the AnimeShelf service."""

from __future__ import annotations

from typing import Any, Iterable, Mapping
from urllib.parse import quote

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def build_avatar_url(base_url: str, seed: str) -> str:
    """Return a generated avatar URL for ``seed``."""

    return f"{base_url.rstrip('/')}?seed={quote(seed, safe='')}"


def page_window(page: int | None, limit: int | None) -> tuple[int, int, int]:
    """Return ``(page, limit, offset)`` clamped to sane bounds."""

    size = limit if limit and limit > 0 else DEFAULT_PAGE_SIZE
    size = min(size, MAX_PAGE_SIZE)
    number = page if page and page > 0 else 1
    return number, size, (number - 1) * size


def pick_fields(patch: Mapping[str, Any], allowed: Iterable[str]) -> dict[str, Any]:
    """Return the entries of ``patch`` whose keys are in ``allowed``."""

    allowed_keys = set(allowed)
    return {key: value for key, value in patch.items() if key in allowed_keys}


LIKE_ESCAPE = "\\"


def escape_like(value: str) -> str:
    """Escape ``value`` so ``%`` and ``_`` match literally in a LIKE pattern."""

    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", f"{LIKE_ESCAPE}%")
        .replace("_", f"{LIKE_ESCAPE}_")
    )
