"""
ContextRAG - Utilities
======================

- retry.py: error classification, exponential backoff with jitter
- rate_limiter.py: adaptive token-bucket rate limiter
"""

from contextrag.utils.rate_limiter import AdaptiveRateLimiter, RateLimiterStats
from contextrag.utils.retry import (
    RetryConfig,
    compute_delay,
    is_retryable,
    with_retry,
)

__all__ = [
    'AdaptiveRateLimiter',
    'RateLimiterStats',
    'RetryConfig',
    'compute_delay',
    'is_retryable',
    'with_retry',
]
