"""Tests for the HS256 token codec."""

import base64
import json
from datetime import timedelta

import pytest

from sessionauth.service.tokens import (
    AccessTokenPayload,
    RefreshTokenPayload,
    SignOptions,
    access_token_sign_options,
    refresh_token_sign_options,
)


def _b64(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def _claims(token: str) -> dict:
    segment = token.split(".")[1]
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return json.loads(base64.urlsafe_b64decode(segment + padding))


@pytest.fixture
def access_options(settings):
    return access_token_sign_options(settings)


@pytest.fixture
def refresh_options(settings):
    return refresh_token_sign_options(settings)


class TestSign:
    def test_access_token_claims(self, codec, access_options, clock):
        token = codec.sign(AccessTokenPayload("user-1", "sess-1"), access_options)
        claims = _claims(token)

        assert claims["sub"] == "user-1"
        assert claims["sid"] == "sess-1"
        assert claims["token_type"] == "access"
        assert claims["iss"] == "sessionauth"
        assert claims["aud"] == "user"
        assert claims["exp"] == int((clock.now() + timedelta(minutes=15)).timestamp())

    def test_refresh_token_carries_no_user(self, codec, refresh_options, clock):
        token = codec.sign(RefreshTokenPayload("sess-1"), refresh_options)
        claims = _claims(token)

        assert "sub" not in claims
        assert claims["sid"] == "sess-1"
        assert claims["token_type"] == "refresh"
        assert claims["exp"] == int((clock.now() + timedelta(days=30)).timestamp())

    def test_sign_rejects_payload_of_other_kind(self, codec, refresh_options):
        with pytest.raises(TypeError):
            codec.sign(AccessTokenPayload("user-1", "sess-1"), refresh_options)

    def test_tokens_are_unique_per_signing(self, codec, refresh_options):
        first = codec.sign(RefreshTokenPayload("sess-1"), refresh_options)
        second = codec.sign(RefreshTokenPayload("sess-1"), refresh_options)

        assert first != second


class TestVerify:
    def test_verify_returns_typed_payload(self, codec, access_options):
        token = codec.sign(AccessTokenPayload("user-1", "sess-1"), access_options)

        assert codec.verify(token, access_options) == AccessTokenPayload("user-1", "sess-1")

    def test_verify_rejects_tampered_signature(self, codec, access_options):
        token = codec.sign(AccessTokenPayload("user-1", "sess-1"), access_options)
        header, payload, signature = token.split(".")
        flipped = ("A" if signature[0] != "A" else "B") + signature[1:]

        assert codec.verify(f"{header}.{payload}.{flipped}", access_options) is None

    @pytest.mark.parametrize("signature", ["ééé", "\ud800", "sig with spaces", "!!!"])
    def test_verify_rejects_non_base64_signature(self, codec, access_options, signature):
        token = codec.sign(AccessTokenPayload("user-1", "sess-1"), access_options)
        header, payload, _ = token.split(".")

        assert codec.verify(f"{header}.{payload}.{signature}", access_options) is None

    def test_verify_rejects_non_ascii_header_and_payload(self, codec, access_options):
        token = codec.sign(AccessTokenPayload("user-1", "sess-1"), access_options)
        header, payload, signature = token.split(".")

        assert codec.verify(f"ü{header}.{payload}.{signature}", access_options) is None
        assert codec.verify(f"{header}.ü{payload}.{signature}", access_options) is None
        assert codec.verify(f"{header}.\udc80{payload}.{signature}", access_options) is None

    def test_verify_rejects_tampered_payload(self, codec, access_options):
        token = codec.sign(AccessTokenPayload("user-1", "sess-1"), access_options)
        header, _, signature = token.split(".")
        claims = _claims(token)
        claims["sub"] = "user-2"

        assert codec.verify(f"{header}.{_b64(claims)}.{signature}", access_options) is None

    def test_verify_rejects_none_algorithm(self, codec, access_options):
        token = codec.sign(AccessTokenPayload("user-1", "sess-1"), access_options)
        _, payload, signature = token.split(".")
        header = _b64({"alg": "none", "typ": "JWT"})

        assert codec.verify(f"{header}.{payload}.{signature}", access_options) is None

    def test_verify_rejects_expired_token(self, codec, access_options, clock):
        token = codec.sign(AccessTokenPayload("user-1", "sess-1"), access_options)
        clock.advance(timedelta(minutes=15))

        assert codec.verify(token, access_options) is None

    def test_verify_accepts_token_just_before_expiry(self, codec, access_options, clock):
        token = codec.sign(AccessTokenPayload("user-1", "sess-1"), access_options)
        clock.advance(timedelta(minutes=14, seconds=59))

        assert codec.verify(token, access_options) is not None

    def test_verify_rejects_wrong_audience(self, codec, access_options):
        token = codec.sign(AccessTokenPayload("user-1", "sess-1"), access_options)
        other = SignOptions(
            secret=access_options.secret,
            expires_in=access_options.expires_in,
            payload_type=AccessTokenPayload,
            audience="admin",
            issuer=access_options.issuer,
        )

        assert codec.verify(token, other) is None

    def test_verify_rejects_wrong_issuer(self, codec, access_options):
        token = codec.sign(AccessTokenPayload("user-1", "sess-1"), access_options)
        other = SignOptions(
            secret=access_options.secret,
            expires_in=access_options.expires_in,
            payload_type=AccessTokenPayload,
            audience=access_options.audience,
            issuer="someone-else",
        )

        assert codec.verify(token, other) is None

    def test_same_secret_still_separates_token_kinds(self, codec, access_options):
        """The token_type claim keeps kinds apart even if secrets were shared."""
        shared = SignOptions(
            secret=access_options.secret,
            expires_in=timedelta(days=30),
            payload_type=RefreshTokenPayload,
            audience=access_options.audience,
            issuer=access_options.issuer,
        )
        token = codec.sign(AccessTokenPayload("user-1", "sess-1"), access_options)

        assert codec.verify(token, shared) is None

    @pytest.mark.parametrize("token", ["", "abc", "a.b", "a.b.c", None, 42])
    def test_verify_rejects_malformed_input(self, codec, access_options, token):
        assert codec.verify(token, access_options) is None

    def test_verify_rejects_missing_session_claim(self, codec, refresh_options):
        token = codec.sign(RefreshTokenPayload("sess-1"), refresh_options)
        header = token.split(".")[0]
        claims = _claims(token)
        claims.pop("sid")
        payload = _b64(claims)
        signature = codec._signature(f"{header}.{payload}", refresh_options.secret)

        assert codec.verify(f"{header}.{payload}.{signature}", refresh_options) is None
