from __future__ import annotations

import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VerificationType(str, Enum):
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


@dataclass
class UserPreferences:
    enable_2fa: bool = False
    email_notification: bool = True


@dataclass
class User:
    id: str
    name: str
    email: str
    created_at: datetime = field(default_factory=_utcnow)
    is_email_verified: bool = False
    preferences: UserPreferences = field(default_factory=UserPreferences)


@dataclass
class Session:
    id: str
    user_id: str
    created_at: datetime
    expired_at: datetime
    user_agent: Optional[str] = None

    @classmethod
    def new(
        cls,
        user_id: str,
        expired_at: datetime,
        user_agent: str | None = None,
        *,
        created_at: datetime | None = None,
    ) -> "Session":
        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            created_at=created_at or _utcnow(),
            expired_at=expired_at,
            user_agent=user_agent,
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expired_at <= now


@dataclass
class VerificationCode:
    id: str
    user_id: str
    code: str
    type: VerificationType
    expires_at: datetime
    created_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def new(
        cls,
        user_id: str,
        type: VerificationType,
        expires_at: datetime,
        *,
        created_at: datetime | None = None,
    ) -> "VerificationCode":
        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            code=secrets.token_hex(16),
            type=VerificationType(type),
            expires_at=expires_at,
            created_at=created_at or _utcnow(),
        )
