"""Compact HS256 JWT signing and verification.

Tokens are ``header.payload.signature`` with unpadded base64url segments.
Only HS256 is accepted on verification to rule out algorithm confusion.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from typing import Any, Callable, Optional

from umiauth.logging import get_logger
from umiauth.service.errors import InvalidTokenError, TokenExpiredError

logger = get_logger(__name__)

ALGORITHM = "HS256"
_HEADER = {"alg": ALGORITHM, "typ": "JWT"}


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _signature(secret: str, signing_input: str) -> str:
    digest = hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()
    return _encode_segment(digest)


class TokenSigner:
    """Signs claims into JWTs and verifies them back.

    ``clock`` returns the current UNIX time in seconds and exists so tests
    can move time forward without sleeping.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self.clock = clock or time.time

    def sign(self, claims: dict[str, Any], secret: str, ttl_seconds: int) -> str:
        now = int(self.clock())
        payload = dict(claims)
        payload["iat"] = now
        payload["exp"] = now + int(ttl_seconds)
        header_enc = _encode_segment(json.dumps(_HEADER, separators=(",", ":")).encode())
        payload_enc = _encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{_signature(secret, signing_input)}"

    def verify(self, token: str, secret: str) -> dict[str, Any]:
        """Return the claims of a correctly signed, unexpired token.

        Raises ``TokenExpiredError`` when only the expiry check fails and
        ``InvalidTokenError`` for everything else.
        """
        if not isinstance(token, str):
            raise InvalidTokenError("Token must be a string")
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            raise InvalidTokenError("Malformed token") from None

        try:
            header = json.loads(_decode_segment(header_b64))
        except (ValueError, TypeError):
            logger.warning("jwt_header_decode_failed")
            raise InvalidTokenError("Malformed token header") from None
        if not isinstance(header, dict) or header.get("alg") != ALGORITHM:
            alg = header.get("alg") if isinstance(header, dict) else None
            logger.warning("jwt_invalid_algorithm", alg=alg)
            raise InvalidTokenError("Unsupported token algorithm")

        expected_sig = _signature(secret, f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig, sig_b64):
            raise InvalidTokenError("Invalid token signature")

        try:
            payload = json.loads(_decode_segment(payload_b64))
        except (ValueError, TypeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            raise InvalidTokenError("Malformed token payload") from None
        if not isinstance(payload, dict):
            raise InvalidTokenError("Malformed token payload")

        exp = payload.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise InvalidTokenError("Token has no expiry")
        if exp <= self.clock():
            raise TokenExpiredError("Token expired", detail={"exp": exp})
        return payload
