import logging

from app.core.logging import ResetTokenFilter, redact_credentials


def test_credentials_never_reach_the_log():
    event = {
        "event": "Password changed",
        "user_id": "u-1",
        "password": "Aa1!aaaa",
        "password_hash": "$2b$12$...",
        "otp": "123456",
        "token": "eyJ...",
        "refresh_token": "eyJ...",
    }

    redacted = redact_credentials(None, "info", dict(event))

    assert redacted == {"event": "Password changed", "user_id": "u-1"}


def test_access_log_masks_reset_tokens():
    record = logging.LogRecord(
        "uvicorn.access", logging.INFO, __file__, 1,
        '%s - "%s %s HTTP/%s" %d',
        ("1.2.3.4:5000", "POST", "/api/users/reset-password/abc123?x=1", "1.1", 200),
        None,
    )

    assert ResetTokenFilter().filter(record) is True
    assert "abc123" not in record.getMessage()
    assert "/api/users/reset-password/{token}?x=1" in record.getMessage()
