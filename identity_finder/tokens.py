"""
Bearer token decoding.

Two modes:
- verified: signature, expiry and (optionally) audience checked with python-jose
  against a configured secret
- structural: the payload segment is decoded and its claims checked without
  any signature verification; used only when no secret is configured
"""

import base64
import binascii
import json
import math
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from .constants import EMAIL_CLAIM, EXPIRY_CLAIM, IDENTITY_CLAIMS


class TokenError(Exception):
    """Base class for bearer token failures."""
    kind = "token_error"


class MalformedToken(TokenError):
    kind = "malformed"


class MissingClaims(TokenError):
    kind = "missing_claims"


class TokenExpired(TokenError):
    kind = "expired"


class InvalidSignature(TokenError):
    kind = "invalid_signature"


@dataclass(frozen=True)
class TokenClaims:
    identity: str
    email: str


def _b64url_decode(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def decode_payload(token: str) -> Dict[str, Any]:
    """Decode the claims segment of a three-part token without verifying it."""
    parts = token.split(".")
    if len(parts) != 3:
        raise MalformedToken(f"expected 3 segments, got {len(parts)}")
    try:
        payload = json.loads(_b64url_decode(parts[1]).decode("utf-8"))
    except (binascii.Error, ValueError) as exc:
        raise MalformedToken(f"undecodable payload: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedToken("payload is not a JSON object")
    return payload


def extract_identity(claims: Dict[str, Any]) -> TokenClaims:
    identity = None
    for name in IDENTITY_CLAIMS:
        if claims.get(name):
            identity = str(claims[name])
            break
    email = claims.get(EMAIL_CLAIM)
    if not identity or not email:
        missing = [n for n, v in (("identity", identity), ("email", email)) if not v]
        raise MissingClaims(f"missing claims: {missing}")
    return TokenClaims(identity=identity, email=str(email))


def expiry_of(claims: Dict[str, Any]) -> Optional[float]:
    """The exp claim as a finite number, or None when absent."""
    if claims.get(EXPIRY_CLAIM) is None:
        return None
    exp = claims[EXPIRY_CLAIM]
    try:
        exp = float(exp)
    except (TypeError, ValueError) as exc:
        raise MalformedToken("exp claim is not numeric") from exc
    # json.loads accepts NaN and Infinity
    if not math.isfinite(exp):
        raise MalformedToken("exp claim is not finite")
    return exp


def check_expiry(claims: Dict[str, Any], now: Optional[float] = None, leeway: int = 0) -> None:
    exp = expiry_of(claims)
    if exp is None:
        return
    current = time.time() if now is None else now
    if exp + leeway < current:
        raise TokenExpired(f"token expired at {exp}")


def decode_claims(token: str, now: Optional[float] = None, leeway: int = 0) -> TokenClaims:
    """Structural decode: segment count, payload JSON, identity/email, expiry."""
    claims = decode_payload(token)
    identity = extract_identity(claims)
    check_expiry(claims, now=now, leeway=leeway)
    return identity


class TokenDecoder:
    """Decodes bearer tokens, verifying signatures when a secret is configured."""

    def __init__(self, secret: Optional[str] = None, algorithms: Iterable[str] = ("HS256",),
                 audience: Optional[str] = None, leeway: int = 0):
        self.secret = secret
        self.algorithms = list(algorithms)
        self.audience = audience
        self.leeway = leeway

    @classmethod
    def from_settings(cls, settings) -> "TokenDecoder":
        return cls(
            secret=settings.jwt_secret,
            algorithms=settings.jwt_algorithm_list,
            audience=settings.jwt_audience,
            leeway=settings.jwt_leeway_seconds,
        )

    @property
    def verifies_signature(self) -> bool:
        return bool(self.secret)

    def decode(self, token: str, now: Optional[float] = None) -> TokenClaims:
        if not self.verifies_signature:
            return decode_claims(token, now=now, leeway=self.leeway)

        # Structure first, so a bad signature is never reported as malformed
        expiry_of(decode_payload(token))
        try:
            jwt.get_unverified_header(token)
        except JWTError as exc:
            raise MalformedToken(f"undecodable header: {exc}") from exc

        options = {
            'verify_aud': self.audience is not None,
            'leeway': self.leeway,
        }
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=self.algorithms,
                audience=self.audience,
                options=options,
            )
        except ExpiredSignatureError as exc:
            raise TokenExpired(str(exc)) from exc
        except JWTClaimsError as exc:
            raise InvalidSignature(f"claims rejected: {exc}") from exc
        except JWTError as exc:
            raise InvalidSignature(str(exc)) from exc
        return extract_identity(claims)
