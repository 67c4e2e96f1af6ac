"""API route modules."""

from . import health, stage3


__all__ = ["health", "stage3"]
