"""
Bounded retry for provider calls: per-attempt timeout, linear backoff, ExternalServiceError on exhaustion.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Optional, TypeVar

from schoolpool.domain.constraints import RetryPolicy
from schoolpool.domain.errors import ExternalServiceError, SchoolPoolError
from schoolpool.utils.logger import logger

T = TypeVar("T")

# Shared pool for timed calls. A timed-out call keeps its worker until it returns.
_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="provider-call")


def call_with_retry(
    fn: Callable[[], T],
    policy: Optional[RetryPolicy] = None,
    operation: str = "provider call",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run fn up to policy.max_attempts times.

    Domain errors other than ExternalServiceError are raised immediately.
    Between attempt k and k+1 waits base_delay_s * k.
    """
    policy = policy or RetryPolicy()
    attempts = max(1, policy.max_attempts)
    last_error: Optional[BaseException] = None

    for attempt in range(1, attempts + 1):
        try:
            if policy.timeout_s and policy.timeout_s > 0:
                future = _executor.submit(fn)
                return future.result(timeout=policy.timeout_s)
            return fn()
        except FutureTimeoutError as e:
            last_error = e
            logger.warning(f"{operation} timed out after {policy.timeout_s}s (attempt {attempt}/{attempts})")
        except ExternalServiceError as e:
            last_error = e
            logger.warning(f"{operation} failed (attempt {attempt}/{attempts}): {e.reason}")
        except SchoolPoolError:
            raise
        except Exception as e:
            last_error = e
            logger.warning(f"{operation} failed (attempt {attempt}/{attempts}): {e}")

        if attempt < attempts:
            sleep(policy.base_delay_s * attempt)

    raise ExternalServiceError(
        f"{operation} failed after {attempts} attempts: {last_error}",
        recovery="Try again later",
    ) from last_error
