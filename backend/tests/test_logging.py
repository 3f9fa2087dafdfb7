from nedapay.logging_config import add_app_context, redact_secrets


def test_redacts_credentials():
    event = redact_secrets(None, "info", {"event": "webhook_signature_invalid", "signature": "abc", "provider": "paycrest"})

    assert event["signature"] == "***"
    assert event["provider"] == "paycrest"


def test_app_context_does_not_override():
    event = add_app_context(None, "info", {"event": "x", "env": "test"})

    assert event["app"] == "nedapay"
    assert event["env"] == "test"
