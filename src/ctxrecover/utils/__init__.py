"""Utility modules for ctxrecover."""

from ctxrecover.utils.formatting import format_bytes
from ctxrecover.utils.retry import RetryConfig, backoff_schedule, calculate_delay

__all__ = [
    "RetryConfig",
    "calculate_delay",
    "backoff_schedule",
    "format_bytes",
]
