"""Domain exceptions and their translation to HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class AnimeShelfError(Exception):
    """Base class for failures surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationFailedError(AnimeShelfError):
    """Input failed a domain validation rule."""

    status_code = 400


class NotFoundError(AnimeShelfError):
    """Requested resource does not exist."""

    status_code = 404

    def __init__(self, resource: str, resource_id: str | None = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{message}: {resource_id}"
        self.resource = resource
        super().__init__(message)


class ForbiddenError(AnimeShelfError):
    """Resource belongs to someone else."""

    status_code = 403


class AccessDeniedError(AnimeShelfError):
    """Content exceeds the profile's rating ceiling."""

    status_code = 403


class DuplicateError(AnimeShelfError):
    """A uniqueness rule would be violated."""

    status_code = 409


class LimitExceededError(AnimeShelfError):
    status_code = 400


class LastProfileError(AnimeShelfError):
    status_code = 400

    def __init__(self, message: str = "Cannot delete the last profile"):
        super().__init__(message)


class InvalidTypeError(AnimeShelfError):
    status_code = 400


class AuthenticationError(AnimeShelfError):
    """Caller identity could not be established."""

    status_code = 401


class TokenExpiredError(AuthenticationError):
    def __init__(self, message: str = "Token expired"):
        super().__init__(message)


class TokenInvalidError(AuthenticationError):
    def __init__(self, message: str = "Invalid token"):
        super().__init__(message)


class InvalidCredentialsError(AuthenticationError):
    pass


class AdminRequiredError(AnimeShelfError):
    status_code = 403

    def __init__(self, message: str = "Administrator privileges required"):
        super().__init__(message)


class ExternalCatalogError(AnimeShelfError):
    """The remote catalog could not be reached or returned garbage."""

    status_code = 502


async def animeshelf_exception_handler(
    request: Request, exc: AnimeShelfError
) -> JSONResponse:
    """Render a domain error as a JSON payload."""

    headers = None
    if isinstance(exc, AuthenticationError):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "error", "message": exc.message},
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register the domain error handler with the FastAPI app."""

    app.add_exception_handler(AnimeShelfError, animeshelf_exception_handler)  # type: ignore[arg-type]
