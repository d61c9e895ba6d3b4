"""Observability helpers: structured logging."""
