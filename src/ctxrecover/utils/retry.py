"""Exponential backoff configuration for recovery retries.

The summarize strategy retries inside one explicit loop; this module only
computes how long each wait should be.
"""

import random
from dataclasses import dataclass
from typing import List


@dataclass
class RetryConfig:
    """Configuration for retry behavior with exponential backoff.

    Attributes:
        max_retries: Maximum number of attempts (default: 2)
        initial_delay: Delay after the first failed attempt in seconds (default: 2.0)
        max_delay: Maximum delay between individual retries in seconds (default: 30.0)
        backoff_factor: Exponential backoff multiplier (default: 2.0)
        jitter: Add random jitter to retry delays (default: False)
        reset_window: Seconds after which the attempt counter starts over (default: 300.0)
    """

    max_retries: int = 2
    initial_delay: float = 2.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    jitter: bool = False
    reset_window: float = 300.0


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Calculate the delay after a failed attempt using exponential backoff.

    Args:
        attempt: The attempt number that just failed (1-based)
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    if attempt <= 0:
        return 0

    delay = config.initial_delay * (config.backoff_factor ** (attempt - 1))
    delay = min(delay, config.max_delay)

    if config.jitter:
        # Add random jitter between 0-25% of the delay
        jitter_amount = delay * 0.25 * random.random()  # nosec B311 - jitter, not crypto
        delay += jitter_amount

    return delay


def backoff_schedule(config: RetryConfig) -> List[float]:
    """Return the delay following each of the configured attempts."""
    return [calculate_delay(n, config) for n in range(1, config.max_retries + 1)]
