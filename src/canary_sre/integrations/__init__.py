"""Integrations with external observability backends."""

__all__ = [
    "otel",
]
