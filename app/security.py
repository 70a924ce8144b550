"""Session tokens and password hashing."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable

from .errors import TokenExpiredError, TokenInvalidError

PASSWORD_ALGORITHM = "pbkdf2_sha256"
PASSWORD_ITERATIONS = 260_000

_TOKEN_HEADER = {"alg": "HS256", "typ": "JWT"}


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64url_decode(value: str) -> bytes:
    value += "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value.encode("ascii"))


def _json_segment(payload: dict[str, Any]) -> str:
    return _b64url_encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))


@dataclass(slots=True)
class TokenPayload:
    """Identity claims carried by a session token."""

    user_id: str
    is_admin: bool
    issued_at: int
    expires_at: int


class TokenService:
    """Issue and verify HS256 session tokens."""

    def __init__(
        self,
        secret_key: str,
        ttl_seconds: int,
        *,
        clock: Callable[[], float] = time.time,
    ):
        if not secret_key:
            raise ValueError("A secret key is required to sign tokens")
        self._secret = secret_key.encode("utf-8")
        self._ttl = ttl_seconds
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    def issue(self, user_id: str, *, is_admin: bool = False) -> str:
        """Return a signed token for ``user_id``."""

        now = int(self._clock())
        body = {
            "id": user_id,
            "isAdmin": bool(is_admin),
            "iat": now,
            "exp": now + self._ttl,
        }
        signing_input = f"{_json_segment(_TOKEN_HEADER)}.{_json_segment(body)}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def verify(self, token: str) -> TokenPayload:
        """Return the payload of ``token`` or raise an authentication error."""

        if not token or token.count(".") != 2:
            raise TokenInvalidError()
        header_b64, body_b64, signature = token.split(".")
        try:
            header = json.loads(_b64url_decode(header_b64))
        except (ValueError, binascii.Error) as exc:
            raise TokenInvalidError() from exc
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            raise TokenInvalidError()

        expected = self._sign(f"{header_b64}.{body_b64}")
        if not hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8")):
            raise TokenInvalidError()

        try:
            body = json.loads(_b64url_decode(body_b64))
        except (ValueError, binascii.Error) as exc:
            raise TokenInvalidError() from exc
        if not isinstance(body, dict):
            raise TokenInvalidError()

        user_id = body.get("id")
        expires_at = body.get("exp")
        if not isinstance(user_id, str) or not user_id:
            raise TokenInvalidError()
        if not isinstance(expires_at, int):
            raise TokenInvalidError()
        if int(self._clock()) >= expires_at:
            raise TokenExpiredError()

        return TokenPayload(
            user_id=user_id,
            is_admin=bool(body.get("isAdmin", False)),
            issued_at=int(body.get("iat") or 0),
            expires_at=expires_at,
        )

    def _sign(self, signing_input: str) -> str:
        digest = hmac.new(
            self._secret, signing_input.encode("utf-8"), hashlib.sha256
        ).digest()
        return _b64url_encode(digest)


def hash_password(password: str, *, iterations: int = PASSWORD_ITERATIONS) -> str:
    """Return a salted PBKDF2 hash suitable for storage."""

    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("ascii"), iterations
    )
    return f"{PASSWORD_ALGORITHM}${iterations}${salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    """Return whether ``password`` matches the ``stored`` hash."""

    try:
        algorithm, iterations_raw, salt, expected = stored.split("$", 3)
        iterations = int(iterations_raw)
    except ValueError:
        return False
    if algorithm != PASSWORD_ALGORITHM:
        return False
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("ascii"), iterations
    )
    return hmac.compare_digest(digest.hex(), expected)
