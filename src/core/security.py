"""
Identity, authorization and security tokens for the HTTP surface.

Identity is supplied by the host (reverse proxy / CMS session bridge) through
the ``X-User-Id`` and ``X-User-Roles`` headers. Per-action tokens are
short-lived signed JWTs bound to a user and an action; download tokens are
additionally bound to one export job and carry a unique id that the job
stores, which makes them single-use.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from fastapi import Header, HTTPException, Security
from fastapi.security import APIKeyHeader
from jose import JWTError, jwt

from src.core.config import settings
from src.core.errors import UnauthorizedError

logger = logging.getLogger(__name__)

ACTION_EXPORT = "csv_export"
ACTION_MIGRATE = "run_migration"
ACTION_DOWNLOAD = "csv_download"


@dataclass(frozen=True)
class Identity:
    """The caller of one request."""

    user_id: int
    roles: frozenset[str] = field(default_factory=frozenset)


def authorize(identity: Identity, action: str, manager_roles: list[str] | None = None) -> bool:
    """Every engine action requires one of the manager roles."""
    allowed = set(manager_roles if manager_roles is not None else settings.MANAGER_ROLES)
    permitted = bool(identity.roles & allowed)
    if not permitted:
        logger.info("User %s denied action %s", identity.user_id, action)
    return permitted


def require_authorized(identity: Identity, action: str, *, phase: str, key: str | None = None) -> None:
    if not authorize(identity, action):
        raise UnauthorizedError("Permission denied.", phase=phase, key=key)


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(
    api_key: str | None = Security(api_key_header),
):
    """Require X-API-Key header when API_KEY is configured."""
    if not settings.API_KEY:
        return  # auth disabled
    if api_key != settings.API_KEY:
        raise HTTPException(status_code=403, detail="Invalid or missing API key")


async def get_current_identity(
    x_user_id: int | None = Header(default=None),
    x_user_roles: str = Header(default=""),
) -> Identity:
    if x_user_id is None or x_user_id <= 0:
        raise UnauthorizedError("Missing caller identity.", phase="identity")
    roles = frozenset(r.strip() for r in x_user_roles.split(",") if r.strip())
    return Identity(user_id=x_user_id, roles=roles)


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


class SecurityTokenValidator:
    """Issues and checks signed, short-lived tokens."""

    def __init__(
        self,
        secret_key: str | None = None,
        algorithm: str | None = None,
        ttl_seconds: int | None = None,
    ) -> None:
        self.secret_key = secret_key or settings.SECRET_KEY
        self.algorithm = algorithm or settings.TOKEN_ALGORITHM
        self.ttl_seconds = ttl_seconds or settings.ACTION_TOKEN_TTL_SECONDS

    def issue(
        self,
        identity: Identity,
        action: str,
        *,
        job_id: str | None = None,
        token_id: str | None = None,
        ttl_seconds: int | None = None,
    ) -> str:
        expire = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds or self.ttl_seconds)
        claims = {
            "sub": str(identity.user_id),
            "act": action,
            "exp": expire,
            "jti": token_id or secrets.token_urlsafe(16),
        }
        if job_id is not None:
            claims["job"] = job_id
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def verify(
        self,
        token: str | None,
        identity: Identity,
        action: str,
        *,
        job_id: str | None = None,
        phase: str,
    ) -> dict:
        """
        Validate a token for this caller and action.

        Returns:
            The decoded claims

        Raises:
            UnauthorizedError: If the token is missing, expired, forged or
                bound to another user, action or job
        """
        if not token:
            raise UnauthorizedError("Security check failed.", phase=phase, key=job_id)
        try:
            claims = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            logger.info("Rejected %s token: %s", action, e)
            raise UnauthorizedError("Security check failed.", phase=phase, key=job_id) from e

        if claims.get("sub") != str(identity.user_id) or claims.get("act") != action:
            raise UnauthorizedError("Security check failed.", phase=phase, key=job_id)
        if job_id is not None and claims.get("job") != job_id:
            raise UnauthorizedError("Security check failed.", phase=phase, key=job_id)
        return claims


def get_token_validator() -> SecurityTokenValidator:
    """FastAPI dependency; overridden in tests."""
    return SecurityTokenValidator()
