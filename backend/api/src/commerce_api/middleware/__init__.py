"""API middleware."""

from commerce_api.middleware.correlation import CorrelationIdMiddleware

__all__ = ["CorrelationIdMiddleware"]
