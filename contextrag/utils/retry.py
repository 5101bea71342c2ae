"""
ContextRAG - Retry Policy
=========================

Error classification and exponential backoff with jitter for calls to
quota-limited external services.

    delay(attempt) = min(initial * multiplier^(attempt-1) * (1 ± jitter), max_delay)
    delay = max(delay, error.retry_after)     # provider-specified wait wins

Usage:
    from contextrag.utils.retry import RetryConfig, with_retry

    result = await with_retry(
        lambda: service.generate(prompt),
        RetryConfig(max_retries=3),
        on_retry=lambda attempt, exc, delay: logger.warning(...)
    )
"""

import asyncio
import inspect
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional, Tuple

from contextrag.shared.exceptions import (
    ConfigurationError,
    ContentPolicyError,
    DimensionMismatchError,
    QuotaExceededError,
    RateLimitError,
    StructuredOutputError,
    TransientServiceError,
)

logger = logging.getLogger(__name__)

DEFAULT_RETRYABLE_PATTERNS: Tuple[str, ...] = (
    "429",
    "500",
    "502",
    "503",
    "504",
    "TIMEOUT",
    "TIMED OUT",
    "ECONNRESET",
    "ETIMEDOUT",
    "CONNECTION RESET",
)

# Failures that will not change on a second attempt
NON_RETRYABLE_ERRORS = (
    QuotaExceededError,
    ContentPolicyError,
    ConfigurationError,
    StructuredOutputError,
    DimensionMismatchError,
)

RetryCallback = Callable[[int, Exception, float], Any]


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.1
    timeout: Optional[float] = None
    retryable_patterns: Tuple[str, ...] = DEFAULT_RETRYABLE_PATTERNS

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


def is_retryable(
    error: BaseException,
    patterns: Optional[Iterable[str]] = None
) -> bool:
    """
    Classify an error.

    Rate-limit errors are always retryable. Quota, content-policy,
    configuration and exhausted-validation errors never are. Anything else
    is retryable when it is a transient/network error or when its text
    matches one of the configured patterns (case-insensitive).
    """
    if isinstance(error, RateLimitError):
        return True
    if isinstance(error, NON_RETRYABLE_ERRORS):
        return False
    if isinstance(error, (TransientServiceError, TimeoutError, ConnectionError)):
        return True

    patterns = DEFAULT_RETRYABLE_PATTERNS if patterns is None else patterns
    haystack = f"{type(error).__name__}: {error}".upper()
    return any(p.upper() in haystack for p in patterns)


def compute_base_delay(attempt: int, config: RetryConfig) -> float:
    """Backoff before jitter: initial * multiplier^(attempt-1), capped at max_delay."""
    attempt = max(1, attempt)
    return min(
        config.initial_delay * (config.multiplier ** (attempt - 1)),
        config.max_delay
    )


def compute_delay(
    attempt: int,
    config: RetryConfig,
    error: Optional[BaseException] = None,
    rng: Callable[[], float] = random.random
) -> float:
    """
    Delay in seconds before retry number `attempt` (1-based).

    Jitter is ±config.jitter of the base delay. A retry-after carried by a
    RateLimitError raises the delay to at least that value.
    """
    delay = compute_base_delay(attempt, config)
    if config.jitter:
        delay *= 1 + config.jitter * (2 * rng() - 1)
    delay = max(0.0, min(delay, config.max_delay))

    retry_after = getattr(error, "retry_after", None)
    if isinstance(error, RateLimitError) and retry_after:
        delay = max(delay, float(retry_after))

    return delay


async def _call_hook(hook: Optional[Callable], *args) -> None:
    if hook is None:
        return
    result = hook(*args)
    if inspect.isawaitable(result):
        await result


async def with_retry(
    operation: Callable[[], Awaitable[Any]],
    config: RetryConfig = None,
    on_retry: Optional[RetryCallback] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
) -> Any:
    """
    Execute an async operation, retrying retryable failures with backoff.

    Args:
        operation: Zero-argument async callable
        config: Retry configuration
        on_retry: Called as on_retry(attempt, exception, delay) before each
            backoff sleep; may be sync or async
        sleep: Sleep function (injectable for tests)

    Returns:
        The operation's result

    Raises:
        The last error, once retries are exhausted or a non-retryable error is seen
    """
    config = config or RetryConfig()

    for attempt in range(1, config.max_attempts + 1):
        try:
            if config.timeout:
                async with asyncio.timeout(config.timeout):
                    return await operation()
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if isinstance(e, TimeoutError):
                e = TransientServiceError(f"Request timed out after {config.timeout}s")

            if not is_retryable(e, config.retryable_patterns):
                logger.debug(f"Not retrying {type(e).__name__}: {e}")
                raise e

            if attempt >= config.max_attempts:
                logger.error(f"All {config.max_attempts} attempts failed: {e}")
                raise e

            delay = compute_delay(attempt, config, e)
            logger.warning(
                f"Attempt {attempt} failed: {e}. Retrying in {delay:.1f}s..."
            )
            await _call_hook(on_retry, attempt, e, delay)
            await sleep(delay)

    raise RuntimeError("unreachable")
