"""
Request models for the enhance endpoints.

Length bounds that depend on configuration are read from the validation
context (``max_prompt_chars``) so one model serves every deployment.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, ValidationInfo, field_validator

from .credentials import detect_provider, sanitize_api_key

MAX_TOKENS_CEILING = 4096


class ChatMessage(BaseModel):
    """One entry of the conversation sent upstream."""

    model_config = ConfigDict(extra="ignore")

    role: str = Field(min_length=1)
    content: str = Field(min_length=1)

    @field_validator("content")
    @classmethod
    def _content_within_cap(cls, value: str, info: ValidationInfo) -> str:
        limit = (info.context or {}).get("max_prompt_chars")
        if limit is not None and len(value) > limit:
            raise ValueError(f"String should have at most {limit} characters")
        return value


class EnhanceRequest(BaseModel):
    """Completion request accepted from callers in proxy mode."""

    model_config = ConfigDict(extra="ignore")

    model: Optional[str] = Field(default=None, min_length=1)
    messages: List[ChatMessage] = Field(min_length=1)
    max_tokens: Optional[int] = Field(default=None, gt=0, le=MAX_TOKENS_CEILING, strict=True)
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    stream: Optional[bool] = None

    @property
    def prompt_chars(self) -> int:
        return sum(len(message.content) for message in self.messages)


class EnhanceEnvelope(EnhanceRequest):
    """BYOK request: an EnhanceRequest plus the caller's upstream credential."""

    api_key: SecretStr

    @field_validator("api_key", mode="before")
    @classmethod
    def _sanitize(cls, value: Any) -> Any:
        if isinstance(value, str):
            return sanitize_api_key(value)
        return value

    @field_validator("api_key")
    @classmethod
    def _known_format(cls, value: SecretStr) -> SecretStr:
        if detect_provider(value.get_secret_value()) is None:
            raise ValueError("API key format not recognized")
        return value


def field_errors(exc: ValidationError) -> List[Dict[str, Any]]:
    """Flatten pydantic errors into client-safe field errors (no input echo)."""
    errors = []
    for error in exc.errors(include_url=False, include_input=False, include_context=False):
        errors.append({
            "field": ".".join(str(part) for part in error.get("loc", ())),
            "message": error.get("msg", "Invalid value"),
            "type": error.get("type", "value_error"),
        })
    return errors
