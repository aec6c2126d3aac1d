"""Retry, validation and fallback helpers for calls to the language model.

Generation requests go through three layers:

* :func:`execute_with_retry` retries a failing call a bounded number of
  times, sleeping between attempts with a delay that grows by 1.5x up to
  :data:`MAX_RETRY_DELAY_MS`. Each attempt receives a fresh
  :class:`CancellationSignal` the callee turns into its request timeout.
* :func:`is_valid_response` classifies what came back using a small set of
  heuristics (length and well-known apology phrases).
* :func:`get_fallback` picks a canned response for a content category when
  the live service is unavailable or returned something unusable.

:func:`execute_with_fallback` is the only place where generation failures are
absorbed. Everything above it receives either real model output or a fallback
string, never an exception from the generation path.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Optional, Protocol, TypeVar, Union

from .fallback_content import (
    DEFAULT_CATEGORY,
    DEFAULT_FALLBACK_RESPONSES,
    UNABLE_TO_GENERATE_MESSAGE,
    FallbackCategory,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRY_DELAY_MS = 10_000
BACKOFF_MULTIPLIER = 1.5

MIN_RESPONSE_LENGTH = 10
SHORT_RESPONSE_LENGTH = 100

# Matched case-insensitively against short responses only.
ERROR_INDICATORS = (
    "sorry",
    "apologize",
    "unavailable",
    "error",
    "fail",
    "could not",
    "unable",
    "not available",
    "try again",
    "抱歉",
    "对不起",
    "失败",
    "错误",
    "无法",
    "不可用",
    "请重试",
)


class RandomSource(Protocol):
    def randrange(self, stop: int) -> int:  # pragma: no cover - protocol
        ...


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    retry_delay_ms: float = 1500
    timeout_ms: float = 30000
    fallback_responses: Mapping[str, Sequence[str]] = field(
        default_factory=lambda: DEFAULT_FALLBACK_RESPONSES
    )

    def __post_init__(self) -> None:
        if int(self.max_retries) < 1:
            raise ValueError("max_retries must be a positive integer")
        if self.retry_delay_ms < 0:
            raise ValueError("retry_delay_ms cannot be negative")
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")


DEFAULT_RETRY_CONFIG = RetryConfig()


class CancellationSignal:
    """Deadline handed to a single attempt.

    The signal fires ``timeout_ms`` after it is created. Callees are expected
    to bound their blocking work by :meth:`remaining` and to give up once
    :attr:`cancelled` is true.
    """

    def __init__(self, timeout_ms: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self.timeout_ms = timeout_ms
        self.deadline = clock() + timeout_ms / 1000.0

    @property
    def cancelled(self) -> bool:
        return self._clock() >= self.deadline

    def remaining(self) -> float:
        """Seconds left before the signal fires, never negative."""

        return max(0.0, self.deadline - self._clock())

    def __repr__(self) -> str:  # pragma: no cover - repr for debugging
        return f"<CancellationSignal remaining={self.remaining():.3f}s>"


@dataclass
class RetryOutcome(Generic[T]):
    value: T
    attempts: int
    retry_delay_ms: float


@dataclass
class FallbackOutcome:
    value: Any
    used_fallback: bool
    attempts: int
    error: Optional[BaseException] = None


def next_retry_delay(delay_ms: float) -> float:
    return min(delay_ms * BACKOFF_MULTIPLIER, MAX_RETRY_DELAY_MS)


def execute_with_retry(
    call: Callable[..., T],
    args: Sequence[Any] = (),
    config: Optional[RetryConfig] = None,
    *,
    kwargs: Optional[Dict[str, Any]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RetryOutcome[T]:
    """Invoke ``call`` until it succeeds or ``config.max_retries`` attempts fail.

    ``call`` receives ``*args``, ``**kwargs`` and a ``signal`` keyword holding
    the attempt's :class:`CancellationSignal`. The backoff delay is threaded
    through the loop and reported on the returned :class:`RetryOutcome`; the
    config object is left untouched so it can be shared between callers.

    When every attempt fails the exception raised by the final attempt is
    re-raised as is.
    """

    config = config or DEFAULT_RETRY_CONFIG
    call_kwargs = dict(kwargs or {})
    max_retries = int(config.max_retries)
    delay_ms = float(config.retry_delay_ms)
    last_error: Optional[Exception] = None

    for attempt in range(1, max_retries + 1):
        signal = CancellationSignal(config.timeout_ms)
        try:
            value = call(*args, signal=signal, **call_kwargs)
        except Exception as exc:
            last_error = exc
            LOGGER.warning(
                "AI service call failed (attempt %s/%s): %s", attempt, max_retries, exc
            )
            if attempt < max_retries:
                sleep(delay_ms / 1000.0)
                delay_ms = next_retry_delay(delay_ms)
            continue
        return RetryOutcome(value=value, attempts=attempt, retry_delay_ms=delay_ms)

    assert last_error is not None
    raise last_error


def _category_key(category: Union[str, FallbackCategory]) -> str:
    if isinstance(category, FallbackCategory):
        return category.value
    return str(category)


def get_fallback(
    category: Union[str, FallbackCategory],
    config: Optional[RetryConfig] = None,
    *,
    rng: Optional[RandomSource] = None,
) -> str:
    """Return a canned response for ``category``.

    Unknown or empty categories use the ``ai-assistance`` list. The choice is
    pseudo-random; pass ``rng`` (anything with ``randrange``) to control it.
    """

    config = config or DEFAULT_RETRY_CONFIG
    table = config.fallback_responses
    responses = table.get(_category_key(category)) or table.get(DEFAULT_CATEGORY)
    if not responses:
        return UNABLE_TO_GENERATE_MESSAGE

    source = rng if rng is not None else random
    return responses[source.randrange(len(responses))]


def execute_with_fallback(
    call: Callable[..., Any],
    category: Union[str, FallbackCategory],
    args: Sequence[Any] = (),
    config: Optional[RetryConfig] = None,
    *,
    kwargs: Optional[Dict[str, Any]] = None,
    rng: Optional[RandomSource] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> FallbackOutcome:
    """Run :func:`execute_with_retry` and swap any failure for a canned response."""

    config = config or DEFAULT_RETRY_CONFIG
    try:
        outcome = execute_with_retry(call, args, config, kwargs=kwargs, sleep=sleep)
    except Exception as exc:
        LOGGER.error(
            "AI service degraded to fallback content for '%s': %s", _category_key(category), exc
        )
        return FallbackOutcome(
            value=get_fallback(category, config, rng=rng),
            used_fallback=True,
            attempts=int(config.max_retries),
            error=exc,
        )
    return FallbackOutcome(value=outcome.value, used_fallback=False, attempts=outcome.attempts)


def _has_error_marker(response: Any) -> bool:
    if isinstance(response, Mapping):
        return bool(response.get("error") or response.get("errorMessage"))
    return bool(getattr(response, "error", None) or getattr(response, "errorMessage", None))


def is_valid_response(response: Any) -> bool:
    """Heuristically decide whether ``response`` is usable model output.

    False positives and negatives are expected: a short but legitimate line
    mentioning "error" is rejected, a long apology is accepted.
    """

    if response is None:
        return False

    if isinstance(response, str):
        if len(response) < MIN_RESPONSE_LENGTH:
            return False
        lowered = response.lower()
        if len(response) < SHORT_RESPONSE_LENGTH and any(
            indicator in lowered for indicator in ERROR_INDICATORS
        ):
            return False
        return True

    if isinstance(response, (Mapping, list, tuple, set)) and len(response) == 0:
        return False

    if isinstance(response, (int, float, bool)):
        return True

    return not _has_error_marker(response)


def sanitize_or_fallback(
    response: Any,
    category: Union[str, FallbackCategory],
    config: Optional[RetryConfig] = None,
    *,
    rng: Optional[RandomSource] = None,
) -> Any:
    if not is_valid_response(response):
        LOGGER.warning("Received an invalid AI response; using fallback content for '%s'.", _category_key(category))
        return get_fallback(category, config, rng=rng)
    return response


__all__: List[str] = [
    "CancellationSignal",
    "DEFAULT_RETRY_CONFIG",
    "ERROR_INDICATORS",
    "FallbackOutcome",
    "MAX_RETRY_DELAY_MS",
    "RetryConfig",
    "RetryOutcome",
    "execute_with_fallback",
    "execute_with_retry",
    "get_fallback",
    "is_valid_response",
    "next_retry_delay",
    "sanitize_or_fallback",
]
