"""Content rating hierarchy and the profile access policy."""

from __future__ import annotations

from typing import Literal, Protocol

from .errors import ValidationFailedError

ContentRating = Literal["G", "PG", "PG-13", "R", "NC-17"]
ProfileKind = Literal["adult", "teen", "kid"]

# Least restrictive first.
RATING_HIERARCHY: tuple[str, ...] = ("G", "PG", "PG-13", "R", "NC-17")

PROFILE_KINDS: tuple[str, ...] = ("adult", "teen", "kid")

PROFILE_KIND_CEILINGS: dict[str, str] = {
    "adult": "NC-17",
    "teen": "PG-13",
    "kid": "PG",
}

AGE_RESTRICTION_MESSAGE = (
    "This content is not available for this profile due to age restrictions"
)


class RatedProfile(Protocol):
    max_content_rating: str


class RatedContent(Protocol):
    content_rating: str


def rating_rank(rating: str | None) -> int:
    """Return the position of ``rating`` in the hierarchy, or ``-1``."""

    if rating is None:
        return -1
    try:
        return RATING_HIERARCHY.index(rating)
    except ValueError:
        return -1


def is_rating_allowed(rating: str | None, ceiling: str | None) -> bool:
    """Return whether ``rating`` is at or below ``ceiling``.

    Unrecognised values on either side are denied rather than compared, since
    ``-1`` would otherwise sort below every real tier.
    """

    content_rank = rating_rank(rating)
    ceiling_rank = rating_rank(ceiling)
    if content_rank < 0 or ceiling_rank < 0:
        return False
    return content_rank <= ceiling_rank


def allowed_ratings(ceiling: str | None) -> list[str]:
    """Return every rating permitted under ``ceiling``."""

    ceiling_rank = rating_rank(ceiling)
    if ceiling_rank < 0:
        return []
    return list(RATING_HIERARCHY[: ceiling_rank + 1])


def can_access(profile: RatedProfile, item: RatedContent) -> bool:
    """Return whether ``profile`` may view or list ``item``."""

    return is_rating_allowed(item.content_rating, profile.max_content_rating)


def normalize_rating(value: object) -> str:
    """Validate a rating value supplied at a write boundary."""

    if not isinstance(value, str):
        raise ValidationFailedError(f"Invalid content rating: {value!r}")
    cleaned = value.strip().upper()
    if cleaned not in RATING_HIERARCHY:
        raise ValidationFailedError(f"Invalid content rating: {value}")
    return cleaned


def ceiling_for_kind(kind: str) -> str:
    """Return the default rating ceiling for a profile kind."""

    return PROFILE_KIND_CEILINGS[kind]
