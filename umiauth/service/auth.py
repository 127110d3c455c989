from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError

from umiauth.logging import get_logger
from umiauth.service.errors import AuthenticationError, ForbiddenError
from umiauth.service.tokens import TokenService
from umiauth.storage.models import ClientFingerprint, Role, SessionInfo, TokenPair, User

logger = get_logger(__name__)


class UserStore(Protocol):
    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def get_password_hash(self, user_id: str) -> Optional[str]: ...


@dataclass
class AuthContext:
    user_id: str
    email: str
    role: str
    token_family: str


class AuthService:
    """Login, request authentication and logout on top of ``TokenService``."""

    def __init__(
        self,
        users: UserStore,
        tokens: TokenService,
        *,
        password_hasher: Optional[PasswordHasher] = None,
    ) -> None:
        self.users = users
        self.tokens = tokens
        self._pwd_hasher = password_hasher or PasswordHasher(type=Type.ID)
        # Verified against when the email is unknown so both paths cost the same
        self._dummy_hash = self._pwd_hasher.hash("umiauth-timing-equalizer")
        self.logger = logger

    def hash_password(self, password: str) -> str:
        return self._pwd_hasher.hash(password)

    def _verify_password(self, stored_hash: str, password: str) -> bool:
        try:
            return self._pwd_hasher.verify(stored_hash, password)
        except (InvalidHashError, VerificationError):
            return False

    def validate_credentials(self, email: str, password: str) -> Optional[User]:
        user = self.users.get_user_by_email(email)
        stored_hash = self.users.get_password_hash(user.id) if user else None
        if not user or not stored_hash:
            self._verify_password(self._dummy_hash, password)
            return None
        if not self._verify_password(stored_hash, password):
            self.logger.warning("password_verification_failed", user_id=user.id)
            return None
        if not user.is_active:
            self.logger.warning("login_inactive_user", user_id=user.id)
            return None
        return user

    async def login(
        self,
        email: str,
        password: str,
        fingerprint: Optional[ClientFingerprint] = None,
    ) -> Tuple[User, TokenPair]:
        user = self.validate_credentials(email, password)
        if not user:
            raise AuthenticationError("Invalid email or password")
        tokens = await self.tokens.issue_tokens(user, fingerprint)
        self.logger.info("user_logged_in", user_id=user.id, token_family=tokens.token_family)
        return user, tokens

    async def refresh(
        self, refresh_token: str, fingerprint: Optional[ClientFingerprint] = None
    ) -> TokenPair:
        return await self.tokens.rotate(refresh_token, fingerprint)

    @staticmethod
    def _role_allows(role: str, required: str) -> bool:
        if role == required:
            return True
        return role == Role.ADMIN.value

    @staticmethod
    def extract_bearer(header: Optional[str]) -> Optional[str]:
        if not header:
            return None
        if not header.lower().startswith("bearer "):
            return None
        token = header.split(" ", 1)[1].strip()
        return token or None

    async def authenticate(
        self, access_token: str, *, required_role: Optional[str] = None
    ) -> AuthContext:
        """Resolve an access token to its user, rejecting revoked tokens."""
        claims = await self.tokens.verify_access_token(access_token)
        user = self.users.get_user(claims["id"])
        if not user or not user.is_active:
            raise AuthenticationError("User not found")
        if required_role and not self._role_allows(user.role, required_role):
            raise ForbiddenError(
                "Insufficient role", detail={"required_role": required_role}
            )
        return AuthContext(
            user_id=user.id,
            email=user.email,
            role=user.role,
            token_family=claims["tokenFamily"],
        )

    async def logout(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        """Blacklist the access token and, if given, end the refresh token's family.

        The refresh token must belong to the same user as the access token;
        otherwise ``ForbiddenError`` is raised and no family is touched.
        """
        settings = self.tokens.settings
        await self.tokens.blacklist_access_token(access_token)
        if not refresh_token:
            return
        try:
            access_claims = self.tokens.signer.verify(access_token, settings.jwt_secret)
            refresh_claims = self.tokens.signer.verify(
                refresh_token, settings.jwt_refresh_secret
            )
        except AuthenticationError:
            # Expired or forged tokens leave nothing we may revoke
            return
        if refresh_claims.get("id") != access_claims.get("id"):
            logger.warning(
                "logout_refresh_token_user_mismatch",
                user_id=access_claims.get("id"),
                token_family=refresh_claims.get("tokenFamily"),
            )
            raise ForbiddenError("Refresh token does not belong to this user")
        await self.tokens.revoke_family(refresh_claims.get("tokenFamily", ""))

    async def logout_all(self, user_id: str) -> int:
        return await self.tokens.revoke_all_for_user(user_id)

    async def list_sessions(self, user_id: str) -> List[SessionInfo]:
        return await self.tokens.list_sessions(user_id)

    async def revoke_session(self, user_id: str, token_family: str) -> None:
        await self.tokens.revoke_session(user_id, token_family)
