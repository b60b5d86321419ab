from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Any

import jwt

from kinwatch.core.config import Settings, get_settings
from kinwatch.core.errors import PermissionDeniedError, UnauthenticatedError
from kinwatch.persistence import paths
from kinwatch.persistence.store import KeyedStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallerContext:
    # Identity of whoever invoked an RPC; uid is None for anonymous callers.
    uid: str | None
    email: str | None = None
    claims: dict[str, Any] | None = None


def decode_bearer_token(token: str, settings: Settings | None = None) -> CallerContext:
    # Verify signature and expiry; the subject claim is the account uid.
    resolved = settings or get_settings()
    options = {"require": ["sub", "exp"]}
    try:
        claims = jwt.decode(
            token,
            resolved.auth_jwt_secret,
            algorithms=[resolved.auth_jwt_algorithm],
            audience=resolved.auth_jwt_audience,
            options={**options, "verify_aud": resolved.auth_jwt_audience is not None},
        )
    except jwt.PyJWTError as exc:
        logger.info("bearer_token_rejected error=%s", exc.__class__.__name__)
        raise UnauthenticatedError("Missing or invalid bearer token") from exc
    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject:
        raise UnauthenticatedError("Missing or invalid bearer token")
    return CallerContext(uid=subject, email=claims.get("email"), claims=claims)


def issue_token(
    uid: str,
    *,
    email: str | None = None,
    ttl: timedelta = timedelta(hours=1),
    settings: Settings | None = None,
) -> str:
    # Mint a token the API accepts; used by local tooling and tests.
    resolved = settings or get_settings()
    now = datetime.now(timezone.utc)
    claims: dict[str, Any] = {"sub": uid, "iat": now, "exp": now + ttl}
    if email:
        claims["email"] = email
    if resolved.auth_jwt_audience:
        claims["aud"] = resolved.auth_jwt_audience
    return jwt.encode(claims, resolved.auth_jwt_secret, algorithm=resolved.auth_jwt_algorithm)


def require_caller(caller: CallerContext | None) -> str:
    if caller is None or not caller.uid:
        raise UnauthenticatedError("User must be authenticated.")
    return caller.uid


async def is_admin(store: KeyedStore, uid: str) -> bool:
    return (await store.get(paths.admin_flag(uid))) is True


async def verify_admin(store: KeyedStore, caller: CallerContext | None) -> str:
    # Authenticate first, then confirm the admin flag; returns the admin uid.
    uid = require_caller(caller)
    if not await is_admin(store, uid):
        logger.info("admin_check_denied uid=%s", uid)
        raise PermissionDeniedError("User must be an admin to perform this action.")
    return uid
