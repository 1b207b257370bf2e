from jobgate.logging import (
    _add_correlation_id,
    _redact_sensitive,
    correlation_id_var,
    set_correlation_id,
)


def test_sensitive_values_are_masked():
    event = _redact_sensitive(
        None,
        "info",
        {
            "event": "login_failed",
            "email": "person@example.com",
            "refresh_token": "eyJhbGciOiJIUzI1NiJ9.payload.sig",
            "identity_id": "1234-5678",
            "error_code": "invalid_credentials",
        },
    )

    assert event["email"] == "pe***om"
    assert event["refresh_token"].startswith("ey***")
    assert event["identity_id"] == "1234-5678"
    assert event["error_code"] == "invalid_credentials"
    assert event["event"] == "login_failed"


def test_correlation_id_attached():
    token = correlation_id_var.set(None)
    try:
        assert "correlation_id" not in _add_correlation_id(None, "info", {})
        cid = set_correlation_id("req-42")
        assert _add_correlation_id(None, "info", {})["correlation_id"] == cid == "req-42"
        assert set_correlation_id() != "req-42"
    finally:
        correlation_id_var.reset(token)
