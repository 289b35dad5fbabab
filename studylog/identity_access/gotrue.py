"""
Minimal Supabase Auth (GoTrue) client for the server-side PKCE flow.

Why: Keep the handful of HTTP calls the web adapter needs (authorize URL,
code exchange, token refresh, logout) outside FastAPI so they can be unit
tested with a monkeypatched `http_post`.

Security: Uses PKCE (S256). The caller stores `state` and `code_verifier`
server-side. GoTrue does not round-trip an OAuth `state` of its own clients,
so the state travels inside the `redirect_to` query string.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional
import base64
import hashlib
import os
import time
from urllib.parse import urlencode

# Small indirection to ease monkeypatching in tests
import requests as http

DEFAULT_TIMEOUT_SECONDS = 10


def http_post(url: str, json: Optional[Dict[str, Any]], headers: Dict[str, str]):
    return http.post(url, json=json, headers=headers, timeout=DEFAULT_TIMEOUT_SECONDS)


class GoTrueError(Exception):
    """Raised when GoTrue rejects a request; `code` is a short reason."""

    def __init__(self, code: str, status: int | None = None):
        super().__init__(code)
        self.code = code
        self.status = status


@dataclass(frozen=True)
class GoTrueConfig:
    base_url: str  # server-to-server Supabase URL, e.g. http://supabase_kong:8000
    anon_key: str
    redirect_uri: str  # e.g. https://app.localhost/auth/callback
    provider: str = "google"
    public_base_url: str | None = None  # browser-facing Supabase URL

    @property
    def authorize_endpoint(self) -> str:
        base = (self.public_base_url or self.base_url).rstrip("/")
        return f"{base}/auth/v1/authorize"

    @property
    def token_endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}/auth/v1/token"

    @property
    def logout_endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}/auth/v1/logout"

    @property
    def issuer(self) -> str:
        return f"{self.base_url.rstrip('/')}/auth/v1"


@dataclass(frozen=True)
class TokenSet:
    """Tokens and identity returned by a successful exchange or refresh."""

    access_token: str
    refresh_token: str
    expires_at: int
    user_id: str
    email: str

    @classmethod
    def from_response(cls, body: Dict[str, Any]) -> "TokenSet":
        access = body.get("access_token")
        refresh = body.get("refresh_token")
        user = body.get("user") or {}
        if not isinstance(access, str) or not isinstance(refresh, str) or not isinstance(user, dict):
            raise GoTrueError("invalid_token_response")
        user_id = user.get("id")
        if not isinstance(user_id, str) or not user_id:
            raise GoTrueError("invalid_token_response")
        expires_at = body.get("expires_at")
        if not isinstance(expires_at, (int, float)):
            expires_in = body.get("expires_in")
            expires_in = int(expires_in) if isinstance(expires_in, (int, float)) else 3600
            expires_at = int(time.time()) + expires_in
        return cls(
            access_token=access,
            refresh_token=refresh,
            expires_at=int(expires_at),
            user_id=user_id,
            email=str(user.get("email") or ""),
        )


class GoTrueClient:
    def __init__(self, config: GoTrueConfig):
        self.cfg = config

    @staticmethod
    def generate_code_verifier(length: int = 64) -> str:
        """Generate a high-entropy URL-safe code_verifier (43-128 chars)."""
        return base64.urlsafe_b64encode(os.urandom(length)).decode("ascii").rstrip("=")

    @staticmethod
    def code_challenge_s256(code_verifier: str) -> str:
        digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
        return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")

    def _headers(self, access_token: str | None = None) -> Dict[str, str]:
        headers = {"apikey": self.cfg.anon_key, "Content-Type": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    def build_authorization_url(self, *, state: str, code_challenge: str) -> str:
        redirect_to = f"{self.cfg.redirect_uri}?{urlencode({'state': state})}"
        params = {
            "provider": self.cfg.provider,
            "redirect_to": redirect_to,
            "code_challenge": code_challenge,
            "code_challenge_method": "s256",
        }
        return f"{self.cfg.authorize_endpoint}?{urlencode(params)}"

    def exchange_code_for_session(self, *, code: str, code_verifier: str) -> TokenSet:
        """Exchange the PKCE auth code. Raises GoTrueError on failure."""
        return self._token_request("pkce", {"auth_code": code, "code_verifier": code_verifier})

    def refresh_session(self, *, refresh_token: str) -> TokenSet:
        """Trade a refresh token for a new token pair. Raises GoTrueError."""
        return self._token_request("refresh_token", {"refresh_token": refresh_token})

    def sign_out(self, *, access_token: str) -> None:
        resp = http_post(self.cfg.logout_endpoint, json=None, headers=self._headers(access_token))
        if resp.status_code not in (200, 204):
            raise GoTrueError("logout_failed", resp.status_code)

    def _token_request(self, grant_type: str, payload: Dict[str, str]) -> TokenSet:
        url = f"{self.cfg.token_endpoint}?{urlencode({'grant_type': grant_type})}"
        try:
            resp = http_post(url, json=payload, headers=self._headers())
        except http.RequestException as exc:
            raise GoTrueError("gotrue_unreachable") from exc
        if resp.status_code != 200:
            # 400/401 mean the grant itself is no longer valid.
            code = "invalid_grant" if resp.status_code in (400, 401) else "token_request_failed"
            raise GoTrueError(code, resp.status_code)
        try:
            body = resp.json()
        except ValueError as exc:
            raise GoTrueError("invalid_token_response") from exc
        if not isinstance(body, dict):
            raise GoTrueError("invalid_token_response")
        return TokenSet.from_response(body)
