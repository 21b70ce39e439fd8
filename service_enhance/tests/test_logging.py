"""
Unit tests for the structured logging processors.
"""

from shared.logging import (
    REDACTED_VALUE,
    add_request_context,
    clear_context,
    redact_secrets,
    set_request_id,
    set_subject_context,
)


class TestLoggingProcessors:
    """Test cases for the structlog processor chain."""

    def teardown_method(self):
        clear_context()

    def test_credentials_are_redacted(self):
        event = redact_secrets(None, "info", {
            "event": "Forwarding",
            "api_key": "sk-or-v1-secret",
            "Authorization": "Bearer abc",
            "key_hint": "sk-o********cret",
            "proof": None,
        })

        assert event["api_key"] == REDACTED_VALUE
        assert event["Authorization"] == REDACTED_VALUE
        assert event["key_hint"] == "sk-o********cret"
        assert event["proof"] is None

    def test_request_context_is_attached(self):
        request_id = set_request_id("req-1")
        set_subject_context("subject-1")

        event = add_request_context(None, "info", {"event": "x"})

        assert request_id == "req-1"
        assert event["request_id"] == "req-1"
        assert event["subject"] == "subject-1"

    def test_generated_request_id(self):
        request_id = set_request_id()

        assert len(request_id) == 36

    def test_cleared_context_adds_nothing(self):
        set_request_id("req-1")
        clear_context()

        assert add_request_context(None, "info", {"event": "x"}) == {"event": "x"}
