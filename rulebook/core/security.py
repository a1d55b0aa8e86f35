"""Security utilities: Keycloak OIDC token validation and user provisioning."""

import time

import httpx
import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rulebook.config import settings
from rulebook.core.database import get_db
from rulebook.models.user import User

logger = structlog.get_logger()

# ── JWKS cache ────────────────────────────────────
_jwks_cache: dict | None = None
_jwks_cache_time: float = 0
JWKS_CACHE_TTL = 300  # 5 minutes


async def _fetch_jwks(force: bool = False) -> dict:
    """Fetch the JSON Web Key Set from Keycloak (cached)."""
    global _jwks_cache, _jwks_cache_time

    now = time.time()
    if not force and _jwks_cache and (now - _jwks_cache_time) < JWKS_CACHE_TTL:
        return _jwks_cache

    async with httpx.AsyncClient() as client:
        response = await client.get(settings.keycloak_jwks_url, timeout=10)
        response.raise_for_status()
        _jwks_cache = response.json()
        _jwks_cache_time = now
        logger.info("jwks_fetched", url=settings.keycloak_jwks_url)
        return _jwks_cache


def _find_signing_key(jwks: dict, kid: str) -> dict | None:
    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return key
    return None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


async def decode_access_token(token: str) -> dict:
    """Decode and validate a Keycloak access token (RS256)."""
    try:
        kid = jwt.get_unverified_header(token).get("kid")
    except JWTError as e:
        raise _unauthorized("Invalid token header") from e
    if not kid:
        raise _unauthorized("Token missing key ID")

    signing_key = _find_signing_key(await _fetch_jwks(), kid)
    if not signing_key:
        # Key may have rotated
        signing_key = _find_signing_key(await _fetch_jwks(force=True), kid)
    if not signing_key:
        raise _unauthorized("Unable to find matching signing key")

    try:
        return jwt.decode(
            token,
            signing_key,
            algorithms=["RS256"],
            audience=settings.keycloak_audience,
            issuer=settings.keycloak_issuer_url,
            options={"verify_at_hash": False},
        )
    except JWTError as e:
        raise _unauthorized("Invalid or expired token") from e


security_scheme = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """FastAPI dependency: validate the Keycloak JWT and return (or provision) the local user."""
    payload = await decode_access_token(credentials.credentials)

    keycloak_id = payload.get("sub")
    if not keycloak_id:
        raise _unauthorized("Token missing subject")

    result = await db.execute(select(User).where(User.keycloak_id == keycloak_id))
    user = result.scalar_one_or_none()
    if user is not None and not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User is disabled")

    email = payload.get("email", "")
    full_name = payload.get("name", "") or _build_name(payload) or email
    if user is None:
        realm_roles = payload.get("realm_access", {}).get("roles", [])
        user = User(
            keycloak_id=keycloak_id,
            email=email,
            full_name=full_name,
            is_active=True,
            is_admin="admin" in realm_roles,
        )
        db.add(user)
        await db.flush()
        await db.refresh(user)
        logger.info("user_provisioned", keycloak_id=keycloak_id, email=email)
    elif (email and user.email != email) or (full_name and user.full_name != full_name):
        user.email = email or user.email
        user.full_name = full_name or user.full_name
        await db.flush()

    return user


def _build_name(payload: dict) -> str:
    """Build full name from given_name + family_name claims."""
    parts = [payload.get("given_name", ""), payload.get("family_name", "")]
    return " ".join(p for p in parts if p).strip()
