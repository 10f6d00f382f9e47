"""
Shared utilities for the FoodList access layer.

This package aggregates common building blocks consumed by the gateway
client and the user data cache:

- config: Client configuration via pydantic-settings
- logging: Structured logging with correlation context
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Bounded backoff for request timeouts
- circuit_breaker: Resilient outbound call protection
- storage: Pluggable best-effort key-value persistence
- inflight: Deduplication of concurrent identical operations

Any cross-package logic should live here to avoid import cycles. Do not
import from gateway_client or user_data into shared/.
"""
