from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional, Protocol, Union

from sessionauth.config import Settings
from sessionauth.logging import get_logger
from sessionauth.service.clock import (
    ONE_DAY,
    Clock,
    SystemClock,
    calculate_expiration,
    forty_five_minutes_from,
)
from sessionauth.service.errors import BadRequestError, ErrorCode, UnauthorizedError
from sessionauth.service.tokens import (
    AccessTokenPayload,
    RefreshTokenPayload,
    SignOptions,
    TokenCodec,
    access_token_sign_options,
    refresh_token_sign_options,
)
from sessionauth.storage.errors import ConstraintViolation
from sessionauth.storage.models import Session, User, VerificationCode, VerificationType

logger = get_logger(__name__)

_INVALID_CREDENTIALS = "Invalid email or password provided"


class CredentialStore(Protocol):
    def user_exists(self, email: str) -> bool: ...

    def create_user(self, name: str, email: str, password: str) -> User: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def verify_password(self, user_id: str, password: str) -> bool: ...

    def create_verification_code(
        self,
        user_id: str,
        type: VerificationType,
        expires_at: datetime,
        *,
        created_at: datetime | None = None,
    ) -> VerificationCode: ...


class SessionStore(Protocol):
    def create_session(
        self,
        user_id: str,
        expired_at: datetime,
        user_agent: str | None = None,
        *,
        created_at: datetime | None = None,
    ) -> Session: ...

    def get_session(self, session_id: str) -> Optional[Session]: ...

    def save_session(self, session: Session) -> Session: ...


class AuthStore(CredentialStore, SessionStore, Protocol):
    """A single backend serving both capability sets."""


@dataclass(frozen=True)
class LoginCompleted:
    user: User
    access_token: str
    refresh_token: str
    session_id: str

    mfa_required: Literal[False] = False


@dataclass(frozen=True)
class MfaRequired:
    """Login stopped at the MFA gate; no session exists yet."""

    mfa_required: Literal[True] = True
    user: None = None
    access_token: str = ""
    refresh_token: str = ""


LoginOutcome = Union[LoginCompleted, MfaRequired]


@dataclass(frozen=True)
class RefreshResult:
    access_token: str
    # Set only when the session was rotated; callers replace their stored token
    new_refresh_token: Optional[str] = None

    @property
    def rotated(self) -> bool:
        return self.new_refresh_token is not None


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    session_id: str


class AuthService:
    """Registration, login and sliding refresh-token rotation.

    Holds no state between calls: users and sessions live in the injected
    stores, time comes from the injected clock, and every failure is raised as
    a ``ServiceError`` subclass.

    Concurrent refreshes of one session inside the rotation window can both
    rotate, leaving two valid refresh tokens for that session. Both tokens
    resolve to the same session record and expire with it; the store keeps
    the later of the two expiries whichever write lands last.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        sessions: SessionStore,
        settings: Settings,
        *,
        codec: Optional[TokenCodec] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.credentials = credentials
        self.sessions = sessions
        self.settings = settings
        self.clock: Clock = clock or SystemClock()
        self.codec = codec or TokenCodec(self.clock)
        self.access_options: SignOptions = access_token_sign_options(settings)
        self.refresh_options: SignOptions = refresh_token_sign_options(settings)
        self.rotation_threshold = ONE_DAY
        self.logger = logger

    @classmethod
    def from_store(
        cls,
        store: AuthStore,
        settings: Settings,
        *,
        codec: Optional[TokenCodec] = None,
        clock: Optional[Clock] = None,
    ) -> "AuthService":
        return cls(store, store, settings, codec=codec, clock=clock)

    def _now(self) -> datetime:
        return self.clock.now()

    async def register(self, name: str, email: str, password: str) -> User:
        if self.credentials.user_exists(email):
            self.logger.info("register_email_exists", email=email)
            raise BadRequestError(
                "User already exists with this email",
                ErrorCode.AUTH_EMAIL_ALREADY_EXISTS,
            )
        try:
            user = self.credentials.create_user(name=name, email=email, password=password)
        except ConstraintViolation as exc:
            # Lost the race against a concurrent registration for the same email
            self.logger.info("register_email_conflict", email=email, detail=exc.detail)
            raise BadRequestError(
                "User already exists with this email",
                ErrorCode.AUTH_EMAIL_ALREADY_EXISTS,
            ) from exc

        now = self._now()
        verification = self.credentials.create_verification_code(
            user.id,
            VerificationType.EMAIL_VERIFICATION,
            expires_at=forty_five_minutes_from(now),
            created_at=now,
        )
        self.logger.info(
            "user_registered",
            user_id=user.id,
            verification_id=verification.id,
            verification_expires_at=verification.expires_at.isoformat(),
        )
        return user

    async def login(
        self, email: str, password: str, user_agent: Optional[str] = None
    ) -> LoginOutcome:
        self.logger.info("login_attempt", email=email)
        user = self.credentials.get_user_by_email(email)
        if not user:
            self.logger.warning("login_user_not_found", email=email)
            raise BadRequestError(_INVALID_CREDENTIALS, ErrorCode.AUTH_USER_NOT_FOUND)

        if not self.credentials.verify_password(user.id, password):
            self.logger.warning("login_invalid_password", user_id=user.id)
            raise BadRequestError(_INVALID_CREDENTIALS, ErrorCode.AUTH_USER_NOT_FOUND)

        if user.preferences.enable_2fa:
            self.logger.info("login_mfa_required", user_id=user.id)
            return MfaRequired()

        now = self._now()
        session = self.sessions.create_session(
            user.id,
            expired_at=calculate_expiration(self.settings.refresh_token_ttl, now),
            user_agent=user_agent,
            created_at=now,
        )
        self.logger.info("session_created", user_id=user.id, session_id=session.id)

        access_token = self.codec.sign(
            AccessTokenPayload(user_id=user.id, session_id=session.id),
            self.access_options,
        )
        refresh_token = self.codec.sign(
            RefreshTokenPayload(session_id=session.id), self.refresh_options
        )
        self.logger.info("login_succeeded", user_id=user.id, session_id=session.id)
        return LoginCompleted(
            user=user,
            access_token=access_token,
            refresh_token=refresh_token,
            session_id=session.id,
        )

    async def refresh_token(self, refresh_token: str) -> RefreshResult:
        payload = self.codec.verify(refresh_token, self.refresh_options)
        if not isinstance(payload, RefreshTokenPayload):
            self.logger.warning("refresh_token_invalid")
            raise UnauthorizedError("Invalid refresh token")

        session = self.sessions.get_session(payload.session_id)
        now = self._now()
        if not session:
            self.logger.warning("refresh_session_missing", session_id=payload.session_id)
            raise UnauthorizedError("Session does not exist")

        if session.is_expired(now):
            self.logger.info("refresh_session_expired", session_id=session.id)
            raise UnauthorizedError("Session expired")

        new_refresh_token: Optional[str] = None
        if session.expired_at - now <= self.rotation_threshold:
            session.expired_at = calculate_expiration(self.settings.refresh_token_ttl, now)
            session = self.sessions.save_session(session)
            new_refresh_token = self.codec.sign(
                RefreshTokenPayload(session_id=session.id), self.refresh_options
            )
            self.logger.info(
                "session_rotated",
                session_id=session.id,
                expired_at=session.expired_at.isoformat(),
            )

        access_token = self.codec.sign(
            AccessTokenPayload(user_id=session.user_id, session_id=session.id),
            self.access_options,
        )
        return RefreshResult(access_token=access_token, new_refresh_token=new_refresh_token)

    async def authenticate(self, access_token: str) -> AuthContext:
        """Resolve an access token to the user and live session it was issued for."""
        payload = self.codec.verify(access_token, self.access_options)
        if not isinstance(payload, AccessTokenPayload):
            self.logger.warning("access_token_invalid")
            raise UnauthorizedError("Invalid access token", ErrorCode.AUTH_INVALID_TOKEN)

        session = self.sessions.get_session(payload.session_id)
        if not session or session.user_id != payload.user_id:
            self.logger.warning("access_session_missing", session_id=payload.session_id)
            raise UnauthorizedError("Session does not exist")
        if session.is_expired(self._now()):
            self.logger.info("access_session_expired", session_id=session.id)
            raise UnauthorizedError("Session expired")
        return AuthContext(user_id=payload.user_id, session_id=session.id)
