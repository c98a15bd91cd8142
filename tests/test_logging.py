import structlog

from sessionauth.logging import (
    REDACTED,
    _add_correlation_id,
    _redact_auth_fields,
    correlation_id_var,
    get_correlation_id,
    mask_email,
    set_correlation_id,
)


def test_credentials_are_replaced_outright():
    event = {
        "event": "refresh_token_invalid",
        "refresh_token": "abc.def.ghi",
        "password": "pw",
        "jwt_secret": "x" * 40,
        "Authorization": "Bearer abc",
    }

    redacted = _redact_auth_fields(None, "info", dict(event))

    assert redacted["refresh_token"] == REDACTED
    assert redacted["password"] == REDACTED
    assert redacted["jwt_secret"] == REDACTED
    assert redacted["Authorization"] == REDACTED
    assert redacted["event"] == "refresh_token_invalid"


def test_email_keeps_first_character_and_domain():
    redacted = _redact_auth_fields(
        None, "info", {"event": "login_attempt", "email": "someone@example.com"}
    )

    assert redacted["email"] == "s***@example.com"


def test_mask_email_without_local_part():
    assert mask_email("not-an-email") == REDACTED
    assert mask_email("@example.com") == REDACTED


def test_session_ids_are_shortened_consistently():
    sid = "0f8fad5b-d9cb-469f-a165-70867728950e"

    first = _redact_auth_fields(None, "info", {"event": "session_created", "session_id": sid})
    second = _redact_auth_fields(None, "info", {"event": "session_rotated", "session_id": sid})

    assert first["session_id"] == second["session_id"] == "0f8fad5b"


def test_user_ids_pass_through():
    redacted = _redact_auth_fields(None, "info", {"event": "x", "user_id": "user-1"})

    assert redacted["user_id"] == "user-1"


def test_events_render_as_json():
    processors = structlog.get_config()["processors"]

    assert _redact_auth_fields in processors
    assert isinstance(processors[-1], structlog.processors.JSONRenderer)


def test_correlation_id_is_attached():
    token = correlation_id_var.set(None)
    try:
        cid = set_correlation_id("req-123")

        assert cid == "req-123"
        assert get_correlation_id() == "req-123"
        assert _add_correlation_id(None, "info", {})["correlation_id"] == "req-123"
    finally:
        correlation_id_var.reset(token)


def test_set_correlation_id_generates_value():
    token = correlation_id_var.set(None)
    try:
        assert set_correlation_id()
    finally:
        correlation_id_var.reset(token)


def test_no_correlation_id_leaves_event_untouched():
    token = correlation_id_var.set(None)
    try:
        assert _add_correlation_id(None, "info", {"event": "x"}) == {"event": "x"}
    finally:
        correlation_id_var.reset(token)
