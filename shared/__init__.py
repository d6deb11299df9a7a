"""
Shared utilities for the Commerce Access Service.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- secrets_manager: Ordered configuration provider chain
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- responses: Success envelope helper
- retry: Retry decorators for startup connections
- base_service: FastAPI service skeleton

Any cross-service logic should live here to avoid import cycles. Do not
import from service_commerce into shared/.
"""
