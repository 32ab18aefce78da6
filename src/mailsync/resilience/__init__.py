"""Resilience infrastructure for provider calls with retry."""

from mailsync.resilience.retry import resilient_api_call

__all__ = [
    "resilient_api_call",
]
