"""Refresh-token rotation with token families.

Every login opens a *token family*. Each refresh token is single use: it is
exchanged for a new pair carrying the same family id, and its store record
is consumed in the same step. Presenting a refresh token whose record is
gone means it was already rotated away (or never existed), so the whole
family is revoked.

Store layout (all keys share ``Settings.key_namespace``)::

    refresh_token:<token>   JSON RefreshTokenRecord, TTL = refresh lifetime
    token_family:<family>   current refresh token of the family, same TTL
    family_owner:<family>   user id owning the family, same TTL
    user_sessions:<user>    set of the user's family ids, no TTL
    blacklist:<token>       "1", TTL = remaining access-token lifetime
    revoked_family:<family> "1", TTL = refresh lifetime, written before the
                            family is torn down
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from typing import Any, Dict, List, Optional, Protocol, Set, Tuple

from umiauth.config import Settings
from umiauth.logging import get_logger
from umiauth.service.errors import (
    AuthenticationError,
    InvalidTokenError,
    NotFoundError,
    SecurityBreachError,
    TokenExpiredError,
    TokenRevokedError,
    ValidationError,
)
from umiauth.service.signer import TokenSigner
from umiauth.storage.models import (
    ClientFingerprint,
    RefreshTokenRecord,
    Role,
    SessionInfo,
    TokenPair,
    User,
)

logger = get_logger(__name__)

REFRESH_TOKEN_TYPE = "refresh"
_IDENTITY_CLAIMS = ("id", "email", "role", "tokenFamily")


class SessionStore(Protocol):
    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def take(self, key: str) -> Optional[str]: ...

    async def delete(self, *keys: str) -> int: ...

    async def exists(self, key: str) -> bool: ...

    async def sadd(self, key: str, *members: str) -> int: ...

    async def srem(self, key: str, *members: str) -> int: ...

    async def smembers(self, key: str) -> Set[str]: ...

    async def scan_prefix(self, prefix: str) -> List[str]: ...

    async def close(self) -> None: ...


class TokenService:
    """Issues, rotates, revokes and enumerates bearer credentials."""

    REFRESH_TOKEN_PREFIX = "refresh_token:"
    TOKEN_FAMILY_PREFIX = "token_family:"
    FAMILY_OWNER_PREFIX = "family_owner:"
    USER_SESSIONS_PREFIX = "user_sessions:"
    BLACKLIST_PREFIX = "blacklist:"
    REVOKED_FAMILY_PREFIX = "revoked_family:"

    def __init__(
        self,
        store: SessionStore,
        settings: Settings,
        *,
        signer: Optional[TokenSigner] = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.signer = signer or TokenSigner()
        self.namespace = settings.key_namespace
        self.logger = logger

    # -- keys -----------------------------------------------------------

    def _refresh_key(self, refresh_token: str) -> str:
        return f"{self.namespace}{self.REFRESH_TOKEN_PREFIX}{refresh_token}"

    def _family_key(self, token_family: str) -> str:
        return f"{self.namespace}{self.TOKEN_FAMILY_PREFIX}{token_family}"

    def _owner_key(self, token_family: str) -> str:
        return f"{self.namespace}{self.FAMILY_OWNER_PREFIX}{token_family}"

    def _sessions_key(self, user_id: str) -> str:
        return f"{self.namespace}{self.USER_SESSIONS_PREFIX}{user_id}"

    def _blacklist_key(self, access_token: str) -> str:
        return f"{self.namespace}{self.BLACKLIST_PREFIX}{access_token}"

    def _revoked_key(self, token_family: str) -> str:
        return f"{self.namespace}{self.REVOKED_FAMILY_PREFIX}{token_family}"

    def _now_ms(self) -> int:
        return int(self.signer.clock() * 1000)

    # -- signing --------------------------------------------------------

    def _sign_pair(self, identity: Dict[str, Any]) -> Tuple[str, str]:
        access_claims = {**identity, "jti": uuid.uuid4().hex}
        refresh_claims = {**identity, "type": REFRESH_TOKEN_TYPE, "jti": uuid.uuid4().hex}
        access_token = self.signer.sign(
            access_claims,
            self.settings.jwt_secret,
            self.settings.access_token_ttl_seconds,
        )
        refresh_token = self.signer.sign(
            refresh_claims,
            self.settings.jwt_refresh_secret,
            self.settings.refresh_token_ttl_seconds,
        )
        return access_token, refresh_token

    @staticmethod
    def _identity_from_claims(claims: Dict[str, Any]) -> Dict[str, Any]:
        identity = {}
        for name in _IDENTITY_CLAIMS:
            value = claims.get(name)
            if not isinstance(value, str) or not value:
                raise InvalidTokenError(f"Token is missing the {name} claim")
            identity[name] = value
        return identity

    async def _persist(self, refresh_token: str, record: RefreshTokenRecord) -> None:
        ttl = self.settings.refresh_token_ttl_seconds
        await self.store.set(self._refresh_key(refresh_token), record.to_json(), ttl)
        await self.store.set(self._family_key(record.token_family), refresh_token, ttl)
        await self.store.set(self._owner_key(record.token_family), record.user_id, ttl)

    # -- issuance and rotation ------------------------------------------

    async def issue_tokens(
        self, user: User, fingerprint: Optional[ClientFingerprint] = None
    ) -> TokenPair:
        """Mint a pair for a verified identity, opening a new token family."""
        try:
            role = Role(user.role).value
        except ValueError:
            raise ValidationError(
                "Unknown role", detail={"role": user.role}
            ) from None
        fingerprint = fingerprint or ClientFingerprint()
        token_family = str(uuid.uuid4())
        identity = {
            "id": user.id,
            "email": user.email,
            "role": role,
            "tokenFamily": token_family,
        }
        access_token, refresh_token = self._sign_pair(identity)

        now = self._now_ms()
        record = RefreshTokenRecord(
            user_id=user.id,
            token_family=token_family,
            created_at=now,
            last_used_at=now,
            user_agent=fingerprint.user_agent,
            ip_address=fingerprint.ip_address,
        )
        await self._persist(refresh_token, record)
        await self.store.sadd(self._sessions_key(user.id), token_family)
        self.logger.info("token_family_issued", user_id=user.id, token_family=token_family)
        return TokenPair(access_token, refresh_token, token_family)

    async def rotate(
        self, refresh_token: str, fingerprint: Optional[ClientFingerprint] = None
    ) -> TokenPair:
        """Exchange a refresh token for a new pair in the same family.

        Raises ``InvalidTokenError``, ``TokenExpiredError`` or, when the token
        was already consumed or its family is revoked while the exchange is in
        flight, ``SecurityBreachError`` after revoking the family. All three
        are terminal for the caller.
        """
        try:
            claims = self.signer.verify(refresh_token, self.settings.jwt_refresh_secret)
        except TokenExpiredError:
            await self.store.delete(self._refresh_key(refresh_token))
            self.logger.info("refresh_token_expired")
            raise
        if claims.get("type") != REFRESH_TOKEN_TYPE:
            raise InvalidTokenError("Invalid token type")
        identity = self._identity_from_claims(claims)
        token_family = identity["tokenFamily"]

        # Read and delete in one step so the same token cannot be exchanged twice
        raw = await self.store.take(self._refresh_key(refresh_token))
        if raw is None:
            self.logger.warning(
                "refresh_token_reuse_detected",
                user_id=identity["id"],
                token_family=token_family,
            )
            await self.revoke_family(token_family)
            raise SecurityBreachError(
                "Refresh token not found - possible security breach",
                detail={"token_family": token_family},
            )
        record = RefreshTokenRecord.from_json(raw)

        fingerprint = fingerprint or ClientFingerprint()
        new_record = replace(
            record,
            last_used_at=self._now_ms(),
            user_agent=fingerprint.user_agent or record.user_agent,
            ip_address=fingerprint.ip_address or record.ip_address,
        )
        access_token, new_refresh_token = self._sign_pair(identity)
        await self._persist(new_refresh_token, new_record)
        # A revocation that ran after our take must not be undone by the writes above
        if await self.store.exists(self._revoked_key(token_family)):
            self.logger.warning(
                "refresh_rotation_lost_to_revocation",
                user_id=record.user_id,
                token_family=token_family,
            )
            await self.revoke_family(token_family)
            raise SecurityBreachError(
                "Token family was revoked during rotation",
                detail={"token_family": token_family},
            )
        self.logger.info(
            "refresh_token_rotated", user_id=record.user_id, token_family=token_family
        )
        return TokenPair(access_token, new_refresh_token, token_family)

    # -- revocation -----------------------------------------------------

    async def revoke_family(self, token_family: str) -> None:
        """Revoke one login chain. Safe to call repeatedly."""
        if not token_family:
            return
        await self.store.set(
            self._revoked_key(token_family), "1", self.settings.refresh_token_ttl_seconds
        )
        family_key = self._family_key(token_family)
        current_refresh = await self.store.get(family_key)
        if current_refresh:
            await self.store.delete(self._refresh_key(current_refresh))
        await self.store.delete(family_key)

        owner = await self.store.take(self._owner_key(token_family))
        if owner:
            await self.store.srem(self._sessions_key(owner), token_family)
        else:
            # Owner entry expired or predates it; fall back to scanning every index
            index_keys = await self.store.scan_prefix(
                f"{self.namespace}{self.USER_SESSIONS_PREFIX}"
            )
            for key in index_keys:
                await self.store.srem(key, token_family)
        self.logger.info(
            "token_family_revoked", token_family=token_family, owner_known=bool(owner)
        )

    async def revoke_all_for_user(self, user_id: str) -> int:
        """Log a user out everywhere. Returns the number of families revoked."""
        sessions_key = self._sessions_key(user_id)
        families = await self.store.smembers(sessions_key)
        for token_family in families:
            await self.revoke_family(token_family)
        await self.store.delete(sessions_key)
        self.logger.info("user_token_families_revoked", user_id=user_id, count=len(families))
        return len(families)

    async def revoke_session(self, user_id: str, token_family: str) -> None:
        """Revoke one of ``user_id``'s own sessions."""
        families = await self.store.smembers(self._sessions_key(user_id))
        if token_family not in families:
            raise NotFoundError(
                "Session not found", detail={"token_family": token_family}
            )
        await self.revoke_family(token_family)

    async def blacklist_access_token(self, access_token: str) -> bool:
        """Reject ``access_token`` for the rest of its natural lifetime.

        Returns True when a blacklist entry was written. Tokens that no
        longer verify need no entry.
        """
        try:
            claims = self.signer.verify(access_token, self.settings.jwt_secret)
        except AuthenticationError as exc:
            self.logger.debug("blacklist_skipped_invalid_token", reason=exc.error_code)
            return False
        ttl = int(claims["exp"]) - int(self.signer.clock())
        if ttl <= 0:
            return False
        await self.store.set(self._blacklist_key(access_token), "1", ttl)
        self.logger.info(
            "access_token_blacklisted",
            user_id=claims.get("id"),
            token_family=claims.get("tokenFamily"),
            ttl=ttl,
        )
        return True

    async def is_blacklisted(self, access_token: str) -> bool:
        return await self.store.exists(self._blacklist_key(access_token))

    async def verify_access_token(self, access_token: str) -> Dict[str, Any]:
        """Return the claims of an access token that is valid and not revoked."""
        if await self.is_blacklisted(access_token):
            raise TokenRevokedError("Token has been revoked")
        claims = self.signer.verify(access_token, self.settings.jwt_secret)
        if claims.get("type") == REFRESH_TOKEN_TYPE:
            raise InvalidTokenError("Invalid token type")
        self._identity_from_claims(claims)
        return claims

    # -- session directory and maintenance ------------------------------

    async def list_sessions(self, user_id: str) -> List[SessionInfo]:
        """Active logins for ``user_id``, most recently used first."""
        sessions: List[SessionInfo] = []
        for token_family in await self.store.smembers(self._sessions_key(user_id)):
            refresh_token = await self.store.get(self._family_key(token_family))
            if not refresh_token:
                continue
            raw = await self.store.get(self._refresh_key(refresh_token))
            if not raw:
                continue
            sessions.append(SessionInfo.from_record(RefreshTokenRecord.from_json(raw)))
        sessions.sort(key=lambda s: s.last_used_at, reverse=True)
        return sessions

    async def cleanup_expired_families(self) -> int:
        """Drop index members whose family pointer has expired.

        Never touches pointers or records, so it is safe to interleave with
        issuance and rotation. Returns the number of members removed.
        """
        removed = 0
        index_keys = await self.store.scan_prefix(
            f"{self.namespace}{self.USER_SESSIONS_PREFIX}"
        )
        for key in index_keys:
            for token_family in await self.store.smembers(key):
                if not await self.store.exists(self._family_key(token_family)):
                    removed += await self.store.srem(key, token_family)
        self.logger.info(
            "token_cleanup_completed", indexes_scanned=len(index_keys), removed=removed
        )
        return removed
