"""
Verified token payload and claim extraction.

Admin and reader sessions arrive as RS256 JWTs from the OIDC provider
(Cognito or Auth0). The role claim name differs per provider:

  Cognito   custom:role, or the first entry of cognito:groups
  Auth0     role, or the first entry of roles
"""

from __future__ import annotations

import logging

from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_ROLE = "user"


class TokenPayload(BaseModel):
    """Parsed, validated JWT claims passed to route handlers."""
    sub:   str          # provider user ID
    email: str
    role:  str          # admin | super_admin | user
    exp:   int
    iss:   str


def extract_role(claims: dict) -> str:
    """Role from provider-specific claims, lower-cased. Missing → DEFAULT_ROLE."""
    role = claims.get("custom:role") or claims.get("role")
    if not role:
        for list_claim in ("cognito:groups", "roles"):
            values = claims.get(list_claim)
            if values:
                role = values[0]
                break

    if not role or not isinstance(role, str):
        logger.debug("Token carries no role claim, defaulting to %s | sub=%s", DEFAULT_ROLE, claims.get("sub"))
        return DEFAULT_ROLE
    return role.lower()
