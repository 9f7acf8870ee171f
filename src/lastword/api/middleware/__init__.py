"""API middleware package."""

from src.lastword.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
