import logging

from services.redaction import redact_dict, redact_text


def test_redact_text_masks_email_and_tokens():
    text = "Contributor dev@example.org token Bearer abcdef"
    redacted = redact_text(text)
    assert "dev@example.org" not in redacted
    assert redacted == "[REDACTED]"


def test_redact_text_masks_private_keys():
    key = "302e020100300506032b657004220420" + "ab" * 32
    redacted = redact_text(f"operator key {key}")
    assert key not in redacted
    assert "[REDACTED_KEY]" in redacted


def test_redact_dict_masks_sensitive_keys():
    payload = {
        "email": "dev@example.org",
        "api_key": "abc",
        "Authorization": "Bearer def",
        "operator_private_key": "302e...",
        "recipient_account_id": "0.0.5001",
        "transfers": [{"account_id": "0.0.5001", "amount": 10}],
    }
    redacted = redact_dict(payload)
    assert redacted["email"] == "d***@example.org"
    assert redacted["api_key"] == "[REDACTED]"
    assert redacted["Authorization"] == "[REDACTED]"
    assert redacted["operator_private_key"] == "[REDACTED]"
    assert redacted["recipient_account_id"] == "0.0.5001"
    assert redacted["transfers"] == [{"account_id": "0.0.5001", "amount": 10}]


def test_log_line_uses_redaction_helper(caplog):
    logger = logging.getLogger("redaction-test")
    caplog.set_level(logging.INFO)
    msg = redact_text("email dev@example.org token Bearer abcdef")
    logger.info("payload=%s", msg)
    assert "dev@example.org" not in caplog.text
