"""
Shared utilities for the Prompt Enhance Gateway.

This package aggregates common building blocks consumed by services:

- config: Gateway configuration via pydantic-settings
- logging: Structured logging with request correlation and secret redaction
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI service scaffolding (health, metrics, error handlers)
- test_helpers: Config and token factories for tests

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service packages into shared/.
"""
