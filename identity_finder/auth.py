"""
Bearer token authentication for API requests.

Supports:
- Authorization header parsing (Bearer scheme)
- Token decoding through TokenDecoder, verified or structural
- A uniform Unauthenticated result; decoder failure kinds are logged only
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from .constants import BEARER_PREFIX
from .tokens import TokenDecoder, TokenError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticatedIdentity:
    id: str
    email: str


@dataclass(frozen=True)
class Unauthenticated:
    """Authentication failed. `reason` is for server-side logs, never clients."""
    reason: str


AuthResult = Union[AuthenticatedIdentity, Unauthenticated]


class Authenticator:
    """Turns an Authorization header into an identity.

    Never raises: every failure path resolves to `Unauthenticated`.
    """

    def __init__(self, decoder: TokenDecoder):
        self.decoder = decoder

    def authenticate(self, authorization: Optional[str]) -> AuthResult:
        if not authorization or not authorization.startswith(BEARER_PREFIX):
            logger.debug("No valid Authorization header found")
            return Unauthenticated("missing_bearer")

        token = authorization[len(BEARER_PREFIX):].strip()
        if not token:
            logger.debug("Empty bearer token")
            return Unauthenticated("missing_bearer")

        try:
            claims = self.decoder.decode(token)
        except TokenError as e:
            logger.info("Bearer token rejected: %s (%s)", e.kind, e)
            return Unauthenticated(e.kind)
        except Exception:
            logger.exception("Unexpected error decoding bearer token")
            return Unauthenticated("internal_error")

        logger.debug("Authenticated user %s", claims.identity)
        return AuthenticatedIdentity(id=claims.identity, email=claims.email)

    def authenticate_request(self, request) -> AuthResult:
        """Authenticate a Starlette/FastAPI request by its Authorization header."""
        return self.authenticate(request.headers.get("Authorization"))
