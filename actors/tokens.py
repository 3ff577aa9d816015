"""
Durable Actors — Intervention Tokens

HS256 JWT-format tokens that authorize a human decision on one paused
actor. Claims: sub (actor id), typ (actor type), purpose, iat, exp.

Verification checks, in order: structure, signature, purpose, actor
binding, expiry. Any failure raises TokenInvalid with the reason.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from typing import Any, Callable

from actors.types import INTERVENTION_PURPOSE, ActorRef, InterventionClaims
from runtime.errors import TokenInvalid

DEFAULT_TTL_SECONDS = 3600


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


class InterventionTokenSigner:
    """Mints and verifies intervention tokens with a shared secret."""

    algorithm = "HS256"

    def __init__(
        self,
        secret: str,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ValueError("Intervention token secret must be non-empty")
        self._secret = secret.encode("utf-8")
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _sign(self, message: bytes) -> str:
        return _b64url(hmac.new(self._secret, message, hashlib.sha256).digest())

    def mint(self, actor: ActorRef, purpose: str = INTERVENTION_PURPOSE) -> str:
        now = int(self._clock())
        header = {"alg": self.algorithm, "typ": "JWT"}
        payload = {
            "sub": actor.actor_id,
            "typ": actor.actor_type,
            "purpose": purpose,
            "iat": now,
            "exp": now + self.ttl_seconds,
        }
        header_part = _b64url(json.dumps(header, separators=(",", ":")).encode("utf-8"))
        payload_part = _b64url(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
        signature = self._sign(f"{header_part}.{payload_part}".encode("utf-8"))
        return f"{header_part}.{payload_part}.{signature}"

    def decode(self, token: str, actor_id: str = "") -> dict[str, Any]:
        """Check structure and signature only. Returns raw claims."""
        if not isinstance(token, str) or not token.isascii():
            raise TokenInvalid(actor_id, reason="malformed")
        try:
            header_raw, payload_raw, signature_raw = token.split(".")
        except ValueError:
            raise TokenInvalid(actor_id, reason="malformed")
        expected = self._sign(f"{header_raw}.{payload_raw}".encode("utf-8"))
        if not hmac.compare_digest(expected, signature_raw):
            raise TokenInvalid(actor_id, reason="bad_signature")
        try:
            header = json.loads(_b64url_decode(header_raw))
            claims = json.loads(_b64url_decode(payload_raw))
        except (ValueError, UnicodeDecodeError):
            raise TokenInvalid(actor_id, reason="malformed")
        if header.get("alg") != self.algorithm or not isinstance(claims, dict):
            raise TokenInvalid(actor_id, reason="malformed")
        return claims

    def verify(self, token: str, actor: ActorRef) -> InterventionClaims:
        """Full verification for a decision on `actor`."""
        claims = self.decode(token, actor.actor_id)
        if claims.get("purpose") != INTERVENTION_PURPOSE:
            raise TokenInvalid(actor.actor_id, reason="wrong_purpose")
        if claims.get("sub") != actor.actor_id or claims.get("typ") != actor.actor_type:
            raise TokenInvalid(actor.actor_id, reason="actor_mismatch")
        exp = claims.get("exp")
        if not isinstance(exp, (int, float)) or exp <= self._clock():
            raise TokenInvalid(actor.actor_id, reason="expired")
        return InterventionClaims(
            actor_id=claims["sub"],
            actor_type=claims["typ"],
            purpose=claims["purpose"],
            issued_at=int(claims.get("iat", 0)),
            expires_at=int(exp),
        )
