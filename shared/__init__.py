"""
Shared utilities for the Access response cache.

This package aggregates common building blocks consumed by the service:

- config: Cache configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- circuit_breaker: Protection around cache backend calls
- base_service: FastAPI service scaffolding

Do not import from service_* packages into shared/.
"""
