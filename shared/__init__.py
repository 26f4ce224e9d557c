"""
Shared utilities for the Content Gateway.

This package aggregates common building blocks consumed by the gateway:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- circuit_breaker: Resilient engine call protection
- base_service: FastAPI application scaffolding
- test_helpers: Fake engine bridge and token factories for tests

Do not import from content_gateway into shared/.
"""
