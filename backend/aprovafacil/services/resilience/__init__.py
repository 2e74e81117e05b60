"""
Resilience Module

Retry-with-exponential-backoff executor and failure classification.
"""

from .retry import (
    ErrorClassification,
    ErrorKind,
    RetryableError,
    RetryExecutor,
    RetryPolicy,
    RetryPolicyPresets,
    base_backoff_delay,
    calculate_exponential_backoff,
    classify_error,
    execute_with_retry,
    heuristic,
    is_retryable_error,
    tagged_only,
    with_retry,
)

__all__ = [
    "ErrorClassification",
    "ErrorKind",
    "RetryableError",
    "RetryExecutor",
    "RetryPolicy",
    "RetryPolicyPresets",
    "base_backoff_delay",
    "calculate_exponential_backoff",
    "classify_error",
    "execute_with_retry",
    "heuristic",
    "is_retryable_error",
    "tagged_only",
    "with_retry",
]
