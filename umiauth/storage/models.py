from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Role(str, Enum):
    """Closed set of roles embedded in every token."""

    ADMIN = "admin"
    COLLECTOR = "collector"


@dataclass
class User:
    id: str
    email: str
    role: str = Role.COLLECTOR.value
    full_name: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def new(cls, email: str, role: str = Role.COLLECTOR.value, **kwargs: Any) -> "User":
        return cls(id=str(uuid.uuid4()), email=email, role=Role(role).value, **kwargs)


@dataclass(frozen=True)
class ClientFingerprint:
    """Where a login came from; both parts are optional."""

    user_agent: Optional[str] = None
    ip_address: Optional[str] = None


@dataclass
class RefreshTokenRecord:
    """Store value kept under ``refresh_token:<token>``.

    Serialized with the camelCase keys the rest of the platform reads;
    timestamps are epoch milliseconds.
    """

    user_id: str
    token_family: str
    created_at: int
    last_used_at: int
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None

    def to_json(self) -> str:
        data: Dict[str, Any] = {
            "userId": self.user_id,
            "tokenFamily": self.token_family,
            "createdAt": self.created_at,
            "lastUsedAt": self.last_used_at,
        }
        if self.user_agent is not None:
            data["userAgent"] = self.user_agent
        if self.ip_address is not None:
            data["ipAddress"] = self.ip_address
        return json.dumps(data, separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str) -> "RefreshTokenRecord":
        data = json.loads(raw)
        return cls(
            user_id=data["userId"],
            token_family=data["tokenFamily"],
            created_at=int(data["createdAt"]),
            last_used_at=int(data["lastUsedAt"]),
            user_agent=data.get("userAgent"),
            ip_address=data.get("ipAddress"),
        )


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    token_family: str
    token_type: str = "bearer"

    def as_dict(self) -> Dict[str, str]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_family": self.token_family,
            "token_type": self.token_type,
        }


@dataclass(frozen=True)
class SessionInfo:
    """One active login as shown to the user on a "your devices" page."""

    token_family: str
    created_at: int
    last_used_at: int
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None

    @classmethod
    def from_record(cls, record: RefreshTokenRecord) -> "SessionInfo":
        return cls(
            token_family=record.token_family,
            created_at=record.created_at,
            last_used_at=record.last_used_at,
            user_agent=record.user_agent,
            ip_address=record.ip_address,
        )
