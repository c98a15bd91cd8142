from __future__ import annotations

import base64
import hashlib
import hmac
import json
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, ClassVar, Optional, Type, Union

from sessionauth.config import Settings
from sessionauth.logging import get_logger
from sessionauth.service.clock import Clock, SystemClock

logger = get_logger(__name__)

_HEADER = {"alg": "HS256", "typ": "JWT"}


@dataclass(frozen=True)
class AccessTokenPayload:
    user_id: str
    session_id: str

    token_type: ClassVar[str] = "access"

    def to_claims(self) -> dict[str, Any]:
        return {"sub": self.user_id, "sid": self.session_id}

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> Optional["AccessTokenPayload"]:
        user_id, session_id = claims.get("sub"), claims.get("sid")
        if not isinstance(user_id, str) or not isinstance(session_id, str):
            return None
        return cls(user_id=user_id, session_id=session_id)


@dataclass(frozen=True)
class RefreshTokenPayload:
    """Refresh tokens are scoped to a session, never directly to a user."""

    session_id: str

    token_type: ClassVar[str] = "refresh"

    def to_claims(self) -> dict[str, Any]:
        return {"sid": self.session_id}

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> Optional["RefreshTokenPayload"]:
        session_id = claims.get("sid")
        if not isinstance(session_id, str):
            return None
        return cls(session_id=session_id)


TokenPayload = Union[AccessTokenPayload, RefreshTokenPayload]


@dataclass(frozen=True)
class SignOptions:
    secret: str
    expires_in: timedelta
    payload_type: Type[TokenPayload]
    audience: str
    issuer: str

    @property
    def token_type(self) -> str:
        return self.payload_type.token_type


def access_token_sign_options(settings: Settings) -> SignOptions:
    return SignOptions(
        secret=settings.jwt_secret,
        expires_in=settings.access_token_ttl,
        payload_type=AccessTokenPayload,
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
    )


def refresh_token_sign_options(settings: Settings) -> SignOptions:
    return SignOptions(
        secret=settings.jwt_refresh_secret,
        expires_in=settings.refresh_token_ttl,
        payload_type=RefreshTokenPayload,
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
    )


class TokenCodec:
    """Signs and verifies compact HS256 tokens.

    The codec is pure CPU work: the clock supplies ``iat``/``exp`` and the
    expiry check, the options supply the secret and claim expectations.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.clock = clock or SystemClock()

    @staticmethod
    def _encode_segment(data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    @staticmethod
    def _decode_segment(segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _signature(self, signing_input: str, secret: str) -> str:
        digest = hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()
        return self._encode_segment(digest)

    def sign(self, payload: TokenPayload, options: SignOptions) -> str:
        if not isinstance(payload, options.payload_type):
            raise TypeError(
                f"{type(payload).__name__} cannot be signed as a {options.token_type} token"
            )
        now = self.clock.now()
        claims = {
            **payload.to_claims(),
            "iss": options.issuer,
            "aud": options.audience,
            "token_type": options.token_type,
            "jti": str(uuid.uuid4()),
            "iat": int(now.timestamp()),
            "exp": int((now + options.expires_in).timestamp()),
        }
        header_enc = self._encode_segment(
            json.dumps(_HEADER, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(claims, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._signature(signing_input, options.secret)}"

    def verify(self, token: str, options: SignOptions) -> Optional[TokenPayload]:
        # Issued tokens are base64url ASCII; anything else is malformed
        if not isinstance(token, str) or not token.isascii():
            return None
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            return None

        # Reject anything but HS256 to prevent algorithm confusion
        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, TypeError):
            logger.warning("jwt_header_decode_failed")
            return None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning("jwt_invalid_algorithm")
            return None

        expected_sig = self._signature(f"{header_b64}.{payload_b64}", options.secret)
        if not hmac.compare_digest(expected_sig, sig_b64):
            return None
        try:
            claims = json.loads(self._decode_segment(payload_b64))
        except (ValueError, TypeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        if not isinstance(claims, dict):
            return None
        if claims.get("iss") != options.issuer:
            return None
        if claims.get("aud") != options.audience:
            return None
        if claims.get("token_type") != options.token_type:
            return None
        exp = claims.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            return None
        if exp <= self.clock.now().timestamp():
            return None
        return options.payload_type.from_claims(claims)
