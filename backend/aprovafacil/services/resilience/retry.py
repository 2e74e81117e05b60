"""
Retry Policies and Executor

Retry mechanism for unreliable asynchronous calls (database RPCs, HTTP
services). Implements exponential backoff with jitter to prevent thundering
herd problems, and classification of transient versus fatal failures.

The executor itself does not log. The only side effect besides invoking the
operation is suspending the calling task between attempts.
"""

import asyncio
import random
from dataclasses import dataclass
from enum import Enum
from functools import partial, wraps
from typing import Any, Awaitable, Callable, FrozenSet, Iterable, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)

from ...core.config import Settings

T = TypeVar("T")

DEFAULT_JITTER_MIN = 0.85
DEFAULT_JITTER_MAX = 1.15

# HTTP-like statuses that signal a transient condition (5xx handled separately)
TRANSIENT_STATUS_CODES = frozenset({408, 429})

# Lowercase substrings found in messages of transient network failures
TRANSIENT_MESSAGE_PATTERNS = (
    "timeout",
    "connection",
    "network",
    "econnrefused",
    "econnreset",
    "socket hang up",
)

TRANSIENT_EXCEPTION_TYPES = (TimeoutError, asyncio.TimeoutError, ConnectionError)


class RetryableError(Exception):
    """Marks a failure as eligible for retry.

    Raise it from inside a wrapped operation (or from a classifier) to tell
    the executor the failure is transient. The underlying failure is kept on
    ``cause`` and chained as ``__cause__``.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


class RetryPolicy(BaseModel):
    """Immutable retry configuration supplied by the caller per invocation."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(
        default=3, ge=0, description="Retries after the initial attempt"
    )
    initial_delay_seconds: float = Field(
        default=1.0, ge=0, description="Base delay before the first retry"
    )
    max_delay_seconds: float = Field(
        default=30.0, ge=0, description="Ceiling on any computed delay"
    )
    backoff_factor: float = Field(
        default=2.0, ge=1.0, description="Delay multiplier per attempt"
    )
    retryable_error_codes: FrozenSet[str] = Field(
        default_factory=frozenset, description="Error codes considered transient"
    )
    jitter_min: float = Field(
        default=DEFAULT_JITTER_MIN, gt=0, description="Lower jitter multiplier"
    )
    jitter_max: float = Field(
        default=DEFAULT_JITTER_MAX, gt=0, description="Upper jitter multiplier"
    )
    calculate_delay: Optional[Callable[[int, Any], float]] = Field(
        default=None,
        exclude=True,
        description="Custom delay function (attempt, policy) -> seconds",
    )

    @model_validator(mode="after")
    def validate_bounds(self) -> "RetryPolicy":
        if self.max_delay_seconds < self.initial_delay_seconds:
            raise ValueError("max_delay_seconds must be >= initial_delay_seconds")
        if self.jitter_min > self.jitter_max:
            raise ValueError("jitter_min must be <= jitter_max")
        return self

    @property
    def max_attempts(self) -> int:
        """Total number of invocations: the initial try plus every retry."""
        return self.max_retries + 1

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "RetryPolicy":
        """Build the default policy from application settings."""
        values = {
            "max_retries": settings.RETRY_MAX_RETRIES,
            "initial_delay_seconds": settings.RETRY_INITIAL_DELAY_SECONDS,
            "max_delay_seconds": settings.RETRY_MAX_DELAY_SECONDS,
            "backoff_factor": settings.RETRY_BACKOFF_FACTOR,
            "jitter_min": settings.RETRY_JITTER_MIN,
            "jitter_max": settings.RETRY_JITTER_MAX,
        }
        values.update(overrides)
        return cls(**values)


class RetryPolicyPresets:
    """Predefined retry policies for common scenarios."""

    # Standard retry for general service calls
    STANDARD = RetryPolicy(
        max_retries=3,
        initial_delay_seconds=1.0,
        max_delay_seconds=30.0,
        backoff_factor=2.0,
    )

    # Quick retry for cheap, latency-sensitive calls
    QUICK = RetryPolicy(
        max_retries=2,
        initial_delay_seconds=0.1,
        max_delay_seconds=1.0,
        backoff_factor=1.5,
    )

    # Database RPCs: PostgREST/connection failures are usually short-lived
    DATABASE = RetryPolicy(
        max_retries=3,
        initial_delay_seconds=0.5,
        max_delay_seconds=10.0,
        backoff_factor=2.0,
        retryable_error_codes=frozenset(
            {"PGRST301", "08000", "08003", "08006", "57P01", "40001"}
        ),
    )


def base_backoff_delay(attempt: int, policy: RetryPolicy) -> float:
    """Unjittered delay for a 1-based retry attempt, clamped to max_delay."""
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    if policy.initial_delay_seconds == 0:
        return 0.0
    try:
        delay = policy.initial_delay_seconds * (policy.backoff_factor ** (attempt - 1))
    except OverflowError:
        return policy.max_delay_seconds
    return min(delay, policy.max_delay_seconds)


def calculate_exponential_backoff(
    attempt: int, policy: RetryPolicy, rng: Optional[random.Random] = None
) -> float:
    """
    Calculate the delay before retry number ``attempt`` (1-based).

    delay = initial_delay * backoff_factor ** (attempt - 1) * jitter,
    with jitter drawn uniformly from [jitter_min, jitter_max], then clamped
    to max_delay_seconds.
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    if policy.initial_delay_seconds == 0:
        return 0.0

    jitter = (rng or random).uniform(policy.jitter_min, policy.jitter_max)
    try:
        delay = policy.initial_delay_seconds * (policy.backoff_factor ** (attempt - 1))
    except OverflowError:
        return policy.max_delay_seconds

    return min(delay * jitter, policy.max_delay_seconds)


class ErrorKind(str, Enum):
    """Outcome of classifying a failure."""

    TRANSIENT = "transient"
    FATAL = "fatal"


@dataclass(frozen=True)
class ErrorClassification:
    """Closed classification result consumed by retry logic."""

    kind: ErrorKind
    detail: str

    @property
    def is_transient(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT

    @classmethod
    def transient(cls, detail: str) -> "ErrorClassification":
        return cls(ErrorKind.TRANSIENT, detail)

    @classmethod
    def fatal(cls, detail: str) -> "ErrorClassification":
        return cls(ErrorKind.FATAL, detail)


def _error_message(error: BaseException) -> str:
    message = getattr(error, "message", None)
    if isinstance(message, str):
        return message
    return str(error)


def classify_error(
    error: BaseException, retryable_codes: Iterable[str] = ()
) -> ErrorClassification:
    """
    Classify an arbitrary failure as transient or fatal.

    Best-effort compatibility shim for heterogeneous error sources (database
    client errors, HTTP errors, socket errors). Checked in order:

    - ``RetryableError`` is always transient, cancellation is always fatal
    - a string ``code`` attribute decides alone: transient iff listed
    - an integer ``status``/``status_code`` of 408, 429 or 5xx is transient
    - built-in timeout and connection exceptions are transient
    - messages mentioning timeouts, connections or network resets are transient
    """
    if isinstance(error, asyncio.CancelledError):
        return ErrorClassification.fatal("operation cancelled")

    if isinstance(error, RetryableError):
        return ErrorClassification.transient("tagged as retryable")

    code = getattr(error, "code", None)
    if isinstance(code, str):
        if code in set(retryable_codes):
            return ErrorClassification.transient(f"retryable error code {code}")
        return ErrorClassification.fatal(f"non-retryable error code {code}")

    for attribute in ("status", "status_code"):
        status = getattr(error, attribute, None)
        if isinstance(status, int) and not isinstance(status, bool):
            if status in TRANSIENT_STATUS_CODES or 500 <= status < 600:
                return ErrorClassification.transient(f"transient status {status}")
            break

    if isinstance(error, TRANSIENT_EXCEPTION_TYPES):
        return ErrorClassification.transient(type(error).__name__)

    message = _error_message(error).lower()
    for pattern in TRANSIENT_MESSAGE_PATTERNS:
        if pattern in message:
            return ErrorClassification.transient(f"message mentions '{pattern}'")

    return ErrorClassification.fatal(type(error).__name__)


def is_retryable_error(error: BaseException, retryable_codes: Iterable[str] = ()) -> bool:
    """Heuristic check whether a failure is worth retrying."""
    return classify_error(error, retryable_codes).is_transient


# Classifiers decide retry eligibility given the failure and the active policy
RetryClassifier = Callable[[BaseException, RetryPolicy], bool]


def tagged_only(error: BaseException, policy: RetryPolicy) -> bool:
    """Retry only failures explicitly tagged as RetryableError."""
    return isinstance(error, RetryableError)


def heuristic(error: BaseException, policy: RetryPolicy) -> bool:
    """Retry tagged failures plus anything the heuristic classifier deems transient."""
    return is_retryable_error(error, policy.retryable_error_codes)


class RetryExecutor:
    """
    Executes an async operation with exponential backoff retries.

    Each ``execute`` call owns its attempt state; concurrent calls never
    share anything. The operation must be safe to re-invoke. After the retry
    budget is exhausted (or on a non-retryable failure) the last failure is
    re-raised unchanged.
    """

    def __init__(
        self,
        classifier: Optional[RetryClassifier] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self._classifier = classifier or tagged_only
        self._sleep = sleep
        self._rng = rng

    async def execute(
        self, operation: Callable[[], Awaitable[T]], policy: RetryPolicy
    ) -> T:
        """
        Invoke ``operation`` up to ``policy.max_retries + 1`` times.

        Args:
            operation: Zero-argument coroutine function
            policy: Retry policy for this invocation

        Returns:
            The first successful result

        Raises:
            The last failure observed, exactly as raised by the operation
        """
        delay_fn = policy.calculate_delay or partial(
            calculate_exponential_backoff, rng=self._rng
        )

        def wait(retry_state: RetryCallState) -> float:
            # attempt_number counts attempts already made, so the first
            # retry is computed with attempt=1
            return delay_fn(retry_state.attempt_number, policy)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait,
            retry=retry_if_exception(lambda error: self._classifier(error, policy)),
            sleep=self._sleep,
            reraise=True,
        )
        return await retrying(operation)


default_executor = RetryExecutor()


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    executor: Optional[RetryExecutor] = None,
) -> T:
    """Run ``operation`` through an executor (tagged-only classifier by default)."""
    return await (executor or default_executor).execute(
        operation, policy or RetryPolicyPresets.STANDARD
    )


def with_retry(
    policy: Optional[RetryPolicy] = None, executor: Optional[RetryExecutor] = None
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator retrying a coroutine function with the given policy."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await execute_with_retry(
                lambda: func(*args, **kwargs), policy, executor
            )

        return wrapper

    return decorator
