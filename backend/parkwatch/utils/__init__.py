"""Utility modules for parkwatch."""

from parkwatch.utils.clock import utcnow

__all__ = ["utcnow"]
