"""
Unit tests for caller credential handling and request models.
"""

import pytest
from pydantic import ValidationError

from service_enhance.app.domain import EnhanceEnvelope, EnhanceRequest, detect_provider, mask_api_key, sanitize_api_key
from service_enhance.app.domain.schemas import field_errors
from shared.test_helpers import TEST_BYOK_KEY

OPENROUTER_KEY = TEST_BYOK_KEY
OPENAI_KEY = "sk-" + "A1b2C3d4" * 6
ANTHROPIC_KEY = "sk-ant-" + "a" * 95
GOOGLE_KEY = "AIza" + "B" * 35


class TestCredentials:
    """Test cases for key sanitizing, detection and masking."""

    @pytest.mark.parametrize("key, provider", [
        (OPENROUTER_KEY, "openrouter"),
        (OPENAI_KEY, "openai"),
        (ANTHROPIC_KEY, "anthropic"),
        (GOOGLE_KEY, "google"),
        ("sk-proj_" + "x" * 20, "generic"),
    ])
    def test_detect_provider(self, key, provider):
        assert detect_provider(key) == provider

    @pytest.mark.parametrize("key", ["", "sk-short", "pk-" + "a" * 40, "AIza" + "B" * 10])
    def test_unknown_formats(self, key):
        assert detect_provider(key) is None

    def test_sanitize(self):
        assert sanitize_api_key(f"  {OPENROUTER_KEY[:20]}\r\n\t{OPENROUTER_KEY[20:]} ") == OPENROUTER_KEY

    def test_mask(self):
        masked = mask_api_key(OPENROUTER_KEY)

        assert masked.startswith(OPENROUTER_KEY[:4])
        assert masked.endswith(OPENROUTER_KEY[-4:])
        assert OPENROUTER_KEY[4:-4] not in masked
        assert len(masked) == len(OPENROUTER_KEY)

    def test_mask_short_values(self):
        assert mask_api_key("abc") == "***"
        assert mask_api_key("abcdefgh") == "abcd********efgh"


class TestEnhanceModels:
    """Test cases for EnhanceRequest and EnhanceEnvelope."""

    def validate(self, model, data, limit=100):
        return model.model_validate(data, context={"max_prompt_chars": limit})

    def test_minimal_request(self):
        request = self.validate(EnhanceRequest, {"messages": [{"role": "user", "content": "hi"}]})

        assert request.model is None
        assert request.max_tokens is None
        assert request.prompt_chars == 2

    def test_extra_fields_are_ignored(self):
        request = self.validate(EnhanceRequest, {
            "messages": [{"role": "user", "content": "hi", "name": "x"}],
            "top_p": 0.5,
        })

        assert not hasattr(request, "top_p")

    @pytest.mark.parametrize("data, field", [
        ({}, "messages"),
        ({"messages": []}, "messages"),
        ({"messages": [{"role": "user", "content": ""}]}, "messages.0.content"),
        ({"messages": [{"role": "user", "content": "x" * 101}]}, "messages.0.content"),
        ({"messages": [{"content": "hi"}]}, "messages.0.role"),
        ({"messages": [{"role": "user", "content": "hi"}], "max_tokens": 0}, "max_tokens"),
        ({"messages": [{"role": "user", "content": "hi"}], "max_tokens": 4097}, "max_tokens"),
        ({"messages": [{"role": "user", "content": "hi"}], "max_tokens": "50"}, "max_tokens"),
        ({"messages": [{"role": "user", "content": "hi"}], "temperature": 2.5}, "temperature"),
        ({"messages": [{"role": "user", "content": "hi"}], "temperature": -0.1}, "temperature"),
    ])
    def test_field_errors(self, data, field):
        with pytest.raises(ValidationError) as exc_info:
            self.validate(EnhanceRequest, data)

        assert field in [error["field"] for error in field_errors(exc_info.value)]

    def test_envelope_requires_known_key(self):
        with pytest.raises(ValidationError) as exc_info:
            self.validate(EnhanceEnvelope, {
                "messages": [{"role": "user", "content": "hi"}],
                "api_key": "definitely-not-a-key",
            })

        errors = field_errors(exc_info.value)
        assert errors[0]["field"] == "api_key"
        assert "definitely-not-a-key" not in str(errors)

    def test_envelope_holds_key_as_secret(self):
        envelope = self.validate(EnhanceEnvelope, {
            "messages": [{"role": "user", "content": "hi"}],
            "api_key": f" {OPENROUTER_KEY}\n",
        })

        assert envelope.api_key.get_secret_value() == OPENROUTER_KEY
        assert OPENROUTER_KEY not in repr(envelope)
        assert OPENROUTER_KEY not in str(envelope.model_dump())
