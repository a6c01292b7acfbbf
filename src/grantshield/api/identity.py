"""
Identity - Resolves bearer tokens to caller identities.

The identity provider itself is external; the pipeline only consumes
who the caller is and which role they hold.
"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Protocol

ROLE_ADMIN = "admin"
# Trusted backend callers such as the identity provider
ROLE_SERVICE = "service"


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: str = "grantee"

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


class IdentityProvider(Protocol):
    def resolve(self, token: str) -> Optional[Identity]: ...


class StaticTokenIdentityProvider:
    """Token map from Settings.api_tokens: token -> {"user_id", "role"}."""

    def __init__(self, tokens: Optional[Mapping[str, Mapping[str, str]]] = None):
        self._tokens: Dict[str, Identity] = {
            token: Identity(user_id=claims["user_id"], role=claims.get("role", "grantee"))
            for token, claims in (tokens or {}).items()
        }

    def resolve(self, token: str) -> Optional[Identity]:
        return self._tokens.get(token)


def bearer_token(header: Optional[str]) -> Optional[str]:
    """Extract the token from an `Authorization: Bearer <token>` header."""
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
