"""Bearer-token authentication for the scan API.

Tokens are issued by Supabase Auth. Projects on the legacy shared secret sign
with HS256; projects on asymmetric keys sign with ES256 and publish a JWKS.
Both are accepted, tried in the order the token header suggests.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional

import jwt
from fastapi import Header, HTTPException
from jwt import PyJWKClient

from docscan.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

Claims = dict[str, Any]
Verifier = Callable[[str, Settings], Optional[Claims]]


@dataclass
class CurrentUser:
    id: str
    email: Optional[str] = None
    org_id: Optional[str] = None


@lru_cache(maxsize=4)
def _jwks_client(jwks_url: str) -> PyJWKClient:
    return PyJWKClient(jwks_url, cache_keys=True, lifespan=3600)


def _decode(token: str, key: Any, algorithm: str, settings: Settings) -> Claims:
    audience = (settings.supabase_jwt_audience or "").strip()
    return jwt.decode(
        token,
        key,
        algorithms=[algorithm],
        audience=audience or None,
        options={"verify_aud": bool(audience)},
    )


def _verify_shared_secret(token: str, settings: Settings) -> Optional[Claims]:
    if not settings.supabase_jwt_secret:
        return None
    try:
        return _decode(token, settings.supabase_jwt_secret, "HS256", settings)
    except jwt.InvalidTokenError:
        return None


def _verify_jwks(token: str, settings: Settings) -> Optional[Claims]:
    base_url = (settings.supabase_url or "").rstrip("/")
    if not base_url:
        return None
    try:
        signing_key = _jwks_client(f"{base_url}/auth/v1/.well-known/jwks.json").get_signing_key_from_jwt(token)
        return _decode(token, signing_key.key, "ES256", settings)
    except (jwt.InvalidTokenError, jwt.PyJWKClientError) as exc:
        logger.debug("JWKS verification failed: %s", exc)
        return None


def _verifiers_for(algorithm: Optional[str]) -> tuple[Verifier, ...]:
    if algorithm == "ES256":
        return (_verify_jwks, _verify_shared_secret)
    return (_verify_shared_secret, _verify_jwks)


def verify_token(token: str, settings: Settings) -> Optional[Claims]:
    """Verified claims for *token*, or ``None`` when no key accepts it."""
    try:
        header = jwt.get_unverified_header(token)
    except jwt.DecodeError:
        return None

    for verifier in _verifiers_for(header.get("alg")):
        claims = verifier(token, settings)
        if claims is not None:
            return claims
    return None


def _user_from_claims(claims: Claims) -> CurrentUser:
    # org membership is server-managed; user_metadata is client-writable
    org_id = (claims.get("app_metadata") or {}).get("org_id")
    return CurrentUser(
        id=str(claims["sub"]),
        email=claims.get("email"),
        org_id=str(org_id) if org_id else None,
    )


def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> CurrentUser:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme != "Bearer" or not token.strip():
        raise HTTPException(401, "Must be authenticated")

    settings = get_settings()
    if not settings.supabase_jwt_secret and not settings.supabase_url:
        raise HTTPException(500, "SUPABASE_JWT_SECRET is not configured")

    claims = verify_token(token.strip(), settings)
    if not claims or not claims.get("sub"):
        raise HTTPException(401, "Invalid token")
    return _user_from_claims(claims)
