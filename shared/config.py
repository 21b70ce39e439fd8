"""
Shared configuration management for the Prompt Enhance Gateway.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SYSTEM_PROMPT = (
    "You are a prompt enhancer. Rewrite the user's prompt to be more detailed, "
    "specific, and effective. Keep the same intent but make it clearer and more "
    "comprehensive. Return only the enhanced prompt, no explanations."
)

SEVEN_DAYS_SECONDS = 7 * 24 * 60 * 60
DEFAULT_CLIENT_IP_HEADER = "CF-Connecting-IP"


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


class GatewayConfig(BaseSettings):
    """Gateway configuration resolved from the environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    service_name: str = Field(default="enhance-gateway")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8787)

    # Upstream completion API
    openrouter_api_key: str = Field(default="")
    upstream_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions")
    app_http_referer: str = Field(default="")
    app_title: str = Field(default="Enhance Prompt")
    request_timeout_ms: int = Field(default=15000, gt=0)

    # Verification provider (Cloudflare Turnstile)
    turnstile_secret_key: str = Field(default="")
    turnstile_site_key: str = Field(default="")
    turnstile_verify_url: str = Field(
        default="https://challenges.cloudflare.com/turnstile/v0/siteverify"
    )
    verification_timeout_ms: int = Field(default=10000, gt=0)

    # Session tokens
    jwt_secret: str = Field(default="")
    jwt_algorithm: str = Field(default="HS256")
    token_ttl_seconds: int = Field(default=SEVEN_DAYS_SECONDS, gt=0)
    revoked_subjects_str: str = Field(default="", alias="revoked_subjects")

    # Origin gate
    allowed_origins_str: str = Field(default="", alias="allowed_origins")
    allowed_hosts_str: str = Field(
        default="claude.ai,gemini.google.com,chat.openai.com,chatgpt.com,grok.com",
        alias="allowed_hosts",
    )

    # Rate limiting
    rate_limit_per_day: int = Field(default=100, ge=0)
    # Header the edge proxy overwrites with the peer address; empty means socket peer only.
    client_ip_header: str = Field(default=DEFAULT_CLIENT_IP_HEADER)
    rate_limit_bypass_subjects_str: str = Field(default="", alias="rate_limit_bypass_subjects")
    min_request_interval_ms: int = Field(default=1000, ge=0)

    # Request shaping
    max_prompt_chars: int = Field(default=4000, gt=0)
    max_body_bytes: int = Field(default=48 * 1024, gt=0)
    default_model: str = Field(default="google/gemini-2.0-flash-exp:free")
    default_max_tokens: int = Field(default=500, gt=0, le=4096)
    default_temperature: float = Field(default=0.7, ge=0, le=2)
    system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT)

    # Storage
    storage_backend: str = Field(default="memory")
    redis_url: str = Field(default="redis://localhost:6379/0")
    max_live_actors: int = Field(default=10000, gt=0)

    @property
    def allowed_origins(self) -> List[str]:
        return _split_csv(self.allowed_origins_str)

    @property
    def allowed_hosts(self) -> List[str]:
        return _split_csv(self.allowed_hosts_str)

    @property
    def rate_limit_bypass_subjects(self) -> List[str]:
        return _split_csv(self.rate_limit_bypass_subjects_str)

    @property
    def revoked_subjects(self) -> List[str]:
        return _split_csv(self.revoked_subjects_str)

    @property
    def request_timeout_seconds(self) -> float:
        return self.request_timeout_ms / 1000.0

    @property
    def verification_timeout_seconds(self) -> float:
        return self.verification_timeout_ms / 1000.0


def get_config(**overrides) -> GatewayConfig:
    """Build the gateway configuration, applying keyword overrides on top of the environment."""
    return GatewayConfig(**overrides)
