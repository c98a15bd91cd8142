from __future__ import annotations

import json
import threading
import uuid
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from sessionauth.logging import get_logger
from sessionauth.storage.errors import ConstraintViolation
from sessionauth.storage.models import (
    Session,
    User,
    UserPreferences,
    VerificationCode,
    VerificationType,
)

PASSWORD_ALGO = "argon2id"


class MemoryStore:
    """In-memory credential and session store with optional JSON persistence.

    Every read/modify/write runs under one re-entrant lock, so single-record
    create, read and update are atomic and the unique email constraint holds
    for concurrent registrations.
    """

    def __init__(self, fs_root: str | None = None) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.credentials: Dict[str, tuple[str, str]] = {}
        self.sessions: Dict[str, Session] = {}
        self.verification_codes: Dict[str, VerificationCode] = {}
        self._data_lock = threading.RLock()
        self._pwd_hasher = PasswordHasher(type=Type.ID)
        self.fs_root = Path(fs_root) if fs_root else None
        if self.fs_root is not None:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "auth_store.json"

    @staticmethod
    def _serialize_datetime(dt: datetime) -> str:
        return dt.isoformat()

    @staticmethod
    def _deserialize_datetime(raw: str) -> datetime:
        return datetime.fromisoformat(raw)

    # users / credentials
    @staticmethod
    def _normalize_email(email: str) -> str:
        return email.strip().lower()

    def create_user(self, name: str, email: str, password: str) -> User:
        email = self._normalize_email(email)
        pwd_hash = self._pwd_hasher.hash(password)
        with self._data_lock:
            if any(existing.email == email for existing in self.users.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            user = User(id=str(uuid.uuid4()), name=name, email=email)
            self.users[user.id] = user
            self.credentials[user.id] = (pwd_hash, PASSWORD_ALGO)
            self._persist_state()
            return user

    def user_exists(self, email: str) -> bool:
        email = self._normalize_email(email)
        with self._data_lock:
            return any(u.email == email for u in self.users.values())

    def get_user_by_email(self, email: str) -> Optional[User]:
        email = self._normalize_email(email)
        with self._data_lock:
            return next((u for u in self.users.values() if u.email == email), None)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def verify_password(self, user_id: str, password: str) -> bool:
        with self._data_lock:
            record = self.credentials.get(user_id)
        if not record:
            self.logger.warning("password_record_missing", user_id=user_id)
            return False
        stored_hash, algo = record
        if algo != PASSWORD_ALGO:
            self.logger.warning("password_algo_mismatch", user_id=user_id, algo=algo)
            return False
        try:
            return self._pwd_hasher.verify(stored_hash, password)
        except (InvalidHash, VerifyMismatchError, VerificationError):
            return False

    def set_user_mfa(self, user_id: str, enabled: bool) -> User:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                raise ConstraintViolation("user not found for mfa", {"user_id": user_id})
            user.preferences.enable_2fa = enabled
            self._persist_state()
            return user

    def mark_email_verified(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.is_email_verified = True
            self._persist_state()
            return user

    # verification codes
    def create_verification_code(
        self,
        user_id: str,
        type: VerificationType,
        expires_at: datetime,
        *,
        created_at: datetime | None = None,
    ) -> VerificationCode:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation(
                    "user not found for verification code", {"user_id": user_id}
                )
            record = VerificationCode.new(
                user_id, type, expires_at, created_at=created_at
            )
            self.verification_codes[record.id] = record
            self._persist_state()
            return record

    def get_verification_code(self, code: str) -> Optional[VerificationCode]:
        with self._data_lock:
            return next(
                (v for v in self.verification_codes.values() if v.code == code), None
            )

    def list_verification_codes(self, user_id: str) -> List[VerificationCode]:
        with self._data_lock:
            return sorted(
                (v for v in self.verification_codes.values() if v.user_id == user_id),
                key=lambda v: v.created_at,
            )

    # sessions
    def create_session(
        self,
        user_id: str,
        expired_at: datetime,
        user_agent: str | None = None,
        *,
        created_at: datetime | None = None,
    ) -> Session:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation("user does not exist", {"user_id": user_id})
            sess = Session.new(
                user_id=user_id,
                expired_at=expired_at,
                user_agent=user_agent,
                created_at=created_at,
            )
            self.sessions[sess.id] = sess
            self._persist_state()
            # Callers get a detached copy; changes land only through save_session
            return replace(sess)

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._data_lock:
            sess = self.sessions.get(session_id)
            return replace(sess) if sess else None

    def save_session(self, session: Session) -> Session:
        with self._data_lock:
            current = self.sessions.get(session.id)
            if not current:
                raise ConstraintViolation(
                    "session does not exist", {"session_id": session.id}
                )
            # Expiry only slides forward; a stale writer keeps the later value
            if session.expired_at < current.expired_at:
                self.logger.info(
                    "session_expiry_kept",
                    session_id=session.id,
                    stored=current.expired_at.isoformat(),
                    requested=session.expired_at.isoformat(),
                )
            merged = replace(
                session, expired_at=max(current.expired_at, session.expired_at)
            )
            self.sessions[session.id] = merged
            self._persist_state()
            return replace(merged)

    def list_sessions(self, user_id: str) -> List[Session]:
        with self._data_lock:
            return [replace(s) for s in self.sessions.values() if s.user_id == user_id]

    # persistence
    def _persist_state(self) -> None:
        if self.fs_root is None:
            return
        state = {
            "users": [self._serialize_user(u) for u in self.users.values()],
            "credentials": [
                {
                    "user_id": user_id,
                    "password_hash": creds[0],
                    "password_algo": creds[1],
                }
                for user_id, creds in self.credentials.items()
            ],
            "sessions": [self._serialize_session(s) for s in self.sessions.values()],
            "verification_codes": [
                self._serialize_verification_code(v)
                for v in self.verification_codes.values()
            ],
        }
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise RuntimeError(f"failed to persist auth store state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.users = {u["id"]: self._deserialize_user(u) for u in data.get("users", [])}
        self.credentials = {
            entry["user_id"]: (entry["password_hash"], entry.get("password_algo", ""))
            for entry in data.get("credentials", [])
        }
        self.sessions = {
            s["id"]: self._deserialize_session(s) for s in data.get("sessions", [])
        }
        self.verification_codes = {
            v["id"]: self._deserialize_verification_code(v)
            for v in data.get("verification_codes", [])
        }
        self.logger.info(
            "auth_store_state_loaded",
            users=len(self.users),
            sessions=len(self.sessions),
        )
        return True

    def _serialize_user(self, user: User) -> dict:
        return {
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "created_at": self._serialize_datetime(user.created_at),
            "is_email_verified": user.is_email_verified,
            "preferences": {
                "enable_2fa": user.preferences.enable_2fa,
                "email_notification": user.preferences.email_notification,
            },
        }

    def _deserialize_user(self, data: dict) -> User:
        prefs = data.get("preferences") or {}
        return User(
            id=str(data["id"]),
            name=data.get("name", ""),
            email=data["email"],
            created_at=self._deserialize_datetime(data["created_at"]),
            is_email_verified=data.get("is_email_verified", False),
            preferences=UserPreferences(
                enable_2fa=prefs.get("enable_2fa", False),
                email_notification=prefs.get("email_notification", True),
            ),
        )

    def _serialize_session(self, session: Session) -> dict:
        return {
            "id": session.id,
            "user_id": session.user_id,
            "created_at": self._serialize_datetime(session.created_at),
            "expired_at": self._serialize_datetime(session.expired_at),
            "user_agent": session.user_agent,
        }

    def _deserialize_session(self, data: dict) -> Session:
        return Session(
            id=data["id"],
            user_id=data["user_id"],
            created_at=self._deserialize_datetime(data["created_at"]),
            expired_at=self._deserialize_datetime(data["expired_at"]),
            user_agent=data.get("user_agent"),
        )

    def _serialize_verification_code(self, record: VerificationCode) -> dict:
        return {
            "id": record.id,
            "user_id": record.user_id,
            "code": record.code,
            "type": record.type.value,
            "created_at": self._serialize_datetime(record.created_at),
            "expires_at": self._serialize_datetime(record.expires_at),
        }

    def _deserialize_verification_code(self, data: dict) -> VerificationCode:
        return VerificationCode(
            id=data["id"],
            user_id=data["user_id"],
            code=data["code"],
            type=VerificationType(data["type"]),
            created_at=self._deserialize_datetime(data["created_at"]),
            expires_at=self._deserialize_datetime(data["expires_at"]),
        )
