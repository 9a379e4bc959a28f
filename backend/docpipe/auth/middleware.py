"""
JWT Auth Middleware  —  Standalone Dependency Units
════════════════════════════════════════════════════

  Layer 1 │ _JWKSCache    — Async JWKS fetcher with TTL + rotation handling
  Layer 2 │ JWTDecoder    — RS256 decode, claim extraction, TokenPayload build
  Layer 3 │ RoleChecker   — admin-role enforcement as a FastAPI dependency class

All three are injected via FastAPI's Depends(). The JWKS cache is the only
module-level singleton; it must persist across requests to avoid re-fetching
keys on every call.

Usage in routes
───────────────
  @router.get("/processing/jobs")
  async def list_jobs(user: TokenPayload = Depends(require_admin)): ...

  @router.post("/documents/{document_id}/chat")
  async def chat(user: TokenPayload = Depends(get_current_user)): ...

Rules
─────
  • Expiry, audience and issuer are verified on every request.
  • JWKS key rotation is handled by one forced refresh on an unknown kid.
  • A missing Authorization header is 401, a valid non-admin token is 403.
"""

from __future__ import annotations

import logging
import time
from typing import Iterable

import httpx
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwk, jwt

from docpipe.auth.token import TokenPayload, extract_role
from docpipe.core.config import settings

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


# ─────────────────────────────────────────────────────────────────────────────
# Layer 1: JWKS Cache
# ─────────────────────────────────────────────────────────────────────────────

class _JWKSCache:
    """
    In-memory JWKS cache (safe within one event loop).

    Behaviour:
      • Fetches the provider's /.well-known/jwks.json once and caches for TTL.
      • On cache miss for a specific kid: force-refreshes once (handles rotation).
      • On second miss: raises 401.
      • JWKS endpoint failures become 401; the client cannot fix them but the
        request is still unauthenticated.
    """

    _TTL: int = 3600   # 1 hour

    def __init__(self) -> None:
        self._store: dict[str, tuple[dict, float]] = {}   # issuer → (jwks, fetched_at)

    async def get_signing_key(self, token: str, issuer: str | None = None) -> object:
        """Resolve the RSA public key for the token's kid."""
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise unauthorized("Malformed token header") from exc

        kid    = header.get("kid")
        issuer = issuer or settings.auth_issuer

        for attempt in range(2):
            if attempt == 1:
                self._store.pop(issuer, None)   # force refresh on second attempt

            jwks = await self._fetch(issuer)
            for key_data in jwks.get("keys", []):
                if key_data.get("kid") == kid:
                    return jwk.construct(key_data).public_key()

        raise unauthorized(f"No signing key found for kid={kid!r}.")

    async def _fetch(self, issuer: str) -> dict:
        """Fetch JWKS from the well-known endpoint with TTL-based caching."""
        now    = time.monotonic()
        cached = self._store.get(issuer)

        if cached and (now - cached[1]) < self._TTL:
            return cached[0]

        uri = f"{issuer.rstrip('/')}/.well-known/jwks.json"
        try:
            async with httpx.AsyncClient(timeout=10.0) as http:
                resp = await http.get(uri)
                resp.raise_for_status()
                jwks = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.error("JWKS fetch failed | issuer=%s status=%d", issuer, exc.response.status_code)
            raise unauthorized("Unable to retrieve token signing keys.") from exc
        except httpx.RequestError as exc:
            logger.error("JWKS fetch network error | issuer=%s error=%s", issuer, exc)
            raise unauthorized("Unable to retrieve token signing keys (network error).") from exc

        self._store[issuer] = (jwks, now)
        logger.debug("JWKS refreshed | issuer=%s keys=%d", issuer, len(jwks.get("keys", [])))
        return jwks

    def clear(self) -> None:
        self._store.clear()


jwks_cache = _JWKSCache()


# ─────────────────────────────────────────────────────────────────────────────
# Layer 2: JWT Decoder
# ─────────────────────────────────────────────────────────────────────────────

class JWTDecoder:
    """
    Class-based FastAPI dependency for JWT decoding.

    Instantiate with explicit issuer/audience/cache for test isolation:
        decoder = JWTDecoder(issuer="https://test.auth0.com/", audience="test-api")
    """

    def __init__(
        self,
        issuer:   str | None        = None,
        audience: str | None        = None,
        cache:    _JWKSCache | None = None,
    ) -> None:
        self._issuer   = issuer   or settings.auth_issuer
        self._audience = audience or settings.auth_audience
        self._cache    = cache    or jwks_cache

    async def __call__(
        self,
        request:     Request,
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    ) -> TokenPayload:
        if credentials is None:
            raise unauthorized("Authentication required. Provide a valid Bearer token.")
        return await self.decode(credentials.credentials, request.headers.get("X-Request-ID", "-"))

    async def decode(self, token: str, request_id: str = "-") -> TokenPayload:
        signing_key = await self._cache.get_signing_key(token, issuer=self._issuer)

        try:
            claims = jwt.decode(
                token,
                signing_key,
                algorithms=["RS256"],
                audience=self._audience,
                issuer=self._issuer,
                options={"verify_exp": True},
            )
        except ExpiredSignatureError:
            logger.info("Expired token | request_id=%s", request_id)
            raise unauthorized("Token has expired. Please re-authenticate.")
        except JWTError as exc:
            logger.warning("JWT decode error | request_id=%s error=%s", request_id, exc)
            raise unauthorized(f"Invalid token: {exc}")

        return TokenPayload(
            sub=claims["sub"],
            email=claims.get("email", ""),
            role=extract_role(claims),
            exp=claims["exp"],
            iss=claims["iss"],
        )


default_decoder = JWTDecoder()


async def get_current_user(
    request:     Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> TokenPayload:
    """Any authenticated reader or admin."""
    return await default_decoder(request, credentials)


# ─────────────────────────────────────────────────────────────────────────────
# Layer 3: Role Checker
# ─────────────────────────────────────────────────────────────────────────────

class RoleChecker:
    """
    Class-based FastAPI dependency: verified JWT whose role is in `allowed`.

    Raises 401 without a valid token, 403 with a valid token of another role.
    """

    def __init__(
        self,
        allowed: Iterable[str],
        decoder: JWTDecoder | None = None,
    ) -> None:
        self._allowed = frozenset(r.lower() for r in allowed)
        if not self._allowed:
            raise ValueError("RoleChecker needs at least one allowed role")
        self._decoder = decoder or default_decoder

    async def __call__(
        self,
        request:     Request,
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    ) -> TokenPayload:
        user = await self._decoder(request, credentials)
        self.check(user)
        return user

    def check(self, user: TokenPayload) -> None:
        if user.role not in self._allowed:
            logger.info("RBAC denied | user=%s role=%s allowed=%s", user.sub, user.role, sorted(self._allowed))
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. One of {sorted(self._allowed)} is required.",
            )


require_admin = RoleChecker(settings.admin_roles)
