"""
Shared utilities for QuotaGate.

This package aggregates the ambient building blocks used by quota_gate:

- config: Gate configuration via pydantic-settings
- logging: Structured logging via structlog
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry helpers for blocking and async calls
- test_helpers: In-memory counter store and manual clock

Do not import from quota_gate into shared/.
"""
