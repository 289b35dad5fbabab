"""
Access token verification for Supabase-issued JWTs.

Why: The OAuth callback trusts the identity in a token only after verifying
it. Keeping this outside the web adapter lets it be unit tested on its own.

Two modes:
- `SUPABASE_JWT_SECRET` set: HS256 with the project's shared secret.
- otherwise: asymmetric keys from `{url}/auth/v1/.well-known/jwks.json`,
  cached in memory.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional
import time

import requests
from jose import jwt
from jose.exceptions import JOSEError

from .gotrue import GoTrueConfig

AUDIENCE = "authenticated"
MAX_CLOCK_SKEW_SECONDS = 5


class TokenVerificationError(Exception):
    """Raised when an access token fails verification."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


@dataclass
class _CacheEntry:
    jwks: Dict[str, object]
    expires_at: float


class JWKSCache:
    """Very small in-memory cache for JWKS responses."""

    def __init__(self, ttl_seconds: int = 300):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[str, _CacheEntry] = {}

    def get(self, cfg: GoTrueConfig) -> Dict[str, object]:
        key = cfg.base_url
        now = time.time()
        entry = self._entries.get(key)
        if entry and entry.expires_at > now:
            return entry.jwks
        jwks = self._fetch(cfg)
        self._entries[key] = _CacheEntry(jwks=jwks, expires_at=now + self.ttl_seconds)
        return jwks

    def _fetch(self, cfg: GoTrueConfig) -> Dict[str, object]:
        url = f"{cfg.issuer}/.well-known/jwks.json"
        try:
            resp = requests.get(url, headers={"apikey": cfg.anon_key}, timeout=5)
        except requests.RequestException as exc:
            raise TokenVerificationError("jwks_fetch_failed") from exc
        if resp.status_code != 200:
            raise TokenVerificationError("jwks_fetch_failed")
        try:
            jwks = resp.json()
        except ValueError as exc:
            raise TokenVerificationError("jwks_invalid") from exc
        if not isinstance(jwks, dict) or "keys" not in jwks:
            raise TokenVerificationError("jwks_invalid")
        return jwks


JWKS_CACHE = JWKSCache()


def verify_access_token(
    *,
    access_token: str,
    cfg: GoTrueConfig,
    jwt_secret: Optional[str] = None,
    cache: JWKSCache | None = None,
) -> Dict[str, object]:
    """Validate a GoTrue access token and return its claims.

    Raises
    ------
    TokenVerificationError:
        When signature, issuer, audience, `sub` or the temporal claims are invalid.
    """
    try:
        header = jwt.get_unverified_header(access_token)
    except JOSEError as exc:
        raise TokenVerificationError("invalid_token") from exc

    if jwt_secret:
        key: object = jwt_secret
        algorithms = ["HS256"]
    else:
        kid = header.get("kid")
        if not kid:
            raise TokenVerificationError("missing_kid")
        key_dict = _find_key((cache or JWKS_CACHE).get(cfg), kid)
        if not key_dict:
            raise TokenVerificationError("unknown_kid")
        key = key_dict
        algorithms = [key_dict.get("alg") or header.get("alg") or "ES256"]

    try:
        claims = jwt.decode(
            access_token,
            key,
            algorithms=algorithms,
            audience=AUDIENCE,
            issuer=cfg.issuer,
            options={
                "verify_signature": True,
                "verify_aud": True,
                "verify_exp": False,
                "verify_iat": False,
                "verify_nbf": False,
            },
        )
    except JOSEError as exc:
        raise TokenVerificationError("invalid_token") from exc

    _validate_temporal_claims(claims)
    if not isinstance(claims.get("sub"), str) or not claims["sub"]:
        raise TokenVerificationError("missing_sub")
    return claims


def _find_key(jwks: Dict[str, object], kid: str) -> Dict[str, object] | None:
    keys = jwks.get("keys")
    if not isinstance(keys, list):
        return None
    for key in keys:
        if isinstance(key, dict) and key.get("kid") == kid:
            return key
    return None


def _validate_temporal_claims(claims: Dict[str, object]) -> None:
    now = time.time()
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        raise TokenVerificationError("invalid_token")
    if exp + MAX_CLOCK_SKEW_SECONDS < now:
        raise TokenVerificationError("token_expired")

    iat = claims.get("iat")
    if isinstance(iat, (int, float)) and iat - MAX_CLOCK_SKEW_SECONDS > now:
        raise TokenVerificationError("invalid_token")
