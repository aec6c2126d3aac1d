import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from inkwell.services.fallback_content import (
    DEFAULT_FALLBACK_RESPONSES,
    UNABLE_TO_GENERATE_MESSAGE,
    FallbackCategory,
)
from inkwell.services.resilience import (
    MAX_RETRY_DELAY_MS,
    CancellationSignal,
    RetryConfig,
    execute_with_fallback,
    execute_with_retry,
    get_fallback,
    is_valid_response,
    next_retry_delay,
    sanitize_or_fallback,
)


class FixedRandom:
    def __init__(self, index: int = 0) -> None:
        self.index = index
        self.calls = []

    def randrange(self, stop: int) -> int:
        self.calls.append(stop)
        return min(self.index, stop - 1)


class FlakyCall:
    def __init__(self, failures: int, value: str = "A perfectly reasonable reply.") -> None:
        self.failures = failures
        self.value = value
        self.calls = 0
        self.signals = []

    def __call__(self, *args, signal=None, **kwargs):
        self.calls += 1
        self.signals.append(signal)
        if self.calls <= self.failures:
            raise RuntimeError(f"failure {self.calls}")
        return self.value


def test_retry_returns_first_success_and_reports_attempts():
    call = FlakyCall(failures=2)
    sleeps = []

    outcome = execute_with_retry(call, config=RetryConfig(retry_delay_ms=1000), sleep=sleeps.append)

    assert outcome.value == call.value
    assert outcome.attempts == 3
    assert call.calls == 3
    assert sleeps == [1.0, 1.5]
    assert outcome.retry_delay_ms == pytest.approx(2250)


def test_retry_reraises_last_error_after_exactly_max_attempts():
    call = FlakyCall(failures=10)
    sleeps = []

    with pytest.raises(RuntimeError, match="failure 4"):
        execute_with_retry(call, config=RetryConfig(max_retries=4, retry_delay_ms=100), sleep=sleeps.append)

    assert call.calls == 4
    # No sleep after the final attempt.
    assert len(sleeps) == 3


def test_retry_passes_arguments_and_a_fresh_signal_per_attempt():
    received = []

    def call(first, second, *, signal, flag):
        received.append((first, second, flag, signal))
        if len(received) == 1:
            raise ValueError("first attempt fails")
        return "done"

    outcome = execute_with_retry(
        call,
        ("a", "b"),
        RetryConfig(retry_delay_ms=0, timeout_ms=5000),
        kwargs={"flag": True},
        sleep=lambda _: None,
    )

    assert outcome.value == "done"
    assert [entry[:3] for entry in received] == [("a", "b", True), ("a", "b", True)]
    first_signal, second_signal = received[0][3], received[1][3]
    assert first_signal is not second_signal
    assert isinstance(first_signal, CancellationSignal)
    assert first_signal.timeout_ms == 5000


def test_retry_does_not_mutate_shared_config():
    config = RetryConfig(retry_delay_ms=1000)
    with pytest.raises(RuntimeError):
        execute_with_retry(FlakyCall(failures=5), config=config, sleep=lambda _: None)
    assert config.retry_delay_ms == 1000


def test_backoff_is_capped():
    assert next_retry_delay(1000) == pytest.approx(1500)
    assert next_retry_delay(9000) == MAX_RETRY_DELAY_MS
    assert next_retry_delay(MAX_RETRY_DELAY_MS) == MAX_RETRY_DELAY_MS


def test_retry_delays_stop_growing_at_the_cap():
    sleeps = []

    with pytest.raises(RuntimeError, match="failure 8"):
        execute_with_retry(
            FlakyCall(failures=8), config=RetryConfig(max_retries=8, retry_delay_ms=5000), sleep=sleeps.append
        )

    assert sleeps == [5.0, 7.5, 10.0, 10.0, 10.0, 10.0, 10.0]


@pytest.mark.parametrize(
    "kwargs",
    [{"max_retries": 0}, {"retry_delay_ms": -1}, {"timeout_ms": 0}],
)
def test_retry_config_rejects_invalid_values(kwargs):
    with pytest.raises(ValueError):
        RetryConfig(**kwargs)


def test_cancellation_signal_fires_at_deadline():
    now = [100.0]
    signal = CancellationSignal(2500, clock=lambda: now[0])

    assert not signal.cancelled
    assert signal.remaining() == pytest.approx(2.5)

    now[0] = 102.5
    assert signal.cancelled
    assert signal.remaining() == 0.0


def test_fallback_outcome_on_total_failure():
    call = FlakyCall(failures=10)

    outcome = execute_with_fallback(
        call,
        FallbackCategory.OUTLINE,
        config=RetryConfig(max_retries=2, retry_delay_ms=0),
        rng=FixedRandom(1),
        sleep=lambda _: None,
    )

    assert outcome.used_fallback
    assert outcome.value == DEFAULT_FALLBACK_RESPONSES["outline"][1]
    assert outcome.attempts == 2
    assert isinstance(outcome.error, RuntimeError)
    assert call.calls == 2


def test_fallback_outcome_passes_through_success():
    outcome = execute_with_fallback(FlakyCall(failures=0), "chapter", sleep=lambda _: None)

    assert not outcome.used_fallback
    assert outcome.value == "A perfectly reasonable reply."
    assert outcome.attempts == 1
    assert outcome.error is None


def test_get_fallback_uses_injected_random_source():
    rng = FixedRandom(2)

    value = get_fallback("feedback", rng=rng)

    assert value == DEFAULT_FALLBACK_RESPONSES["feedback"][2]
    assert rng.calls == [len(DEFAULT_FALLBACK_RESPONSES["feedback"])]


def test_get_fallback_accepts_enum_members():
    assert get_fallback(FallbackCategory.CHAPTER, rng=FixedRandom(0)) == DEFAULT_FALLBACK_RESPONSES["chapter"][0]


def test_unknown_category_uses_ai_assistance_list():
    value = get_fallback("no-such-category", rng=FixedRandom(0))
    assert value == DEFAULT_FALLBACK_RESPONSES["ai-assistance"][0]


def test_empty_tables_return_sentinel_message():
    config = RetryConfig(fallback_responses={"chapter": []})
    assert get_fallback("chapter", config) == UNABLE_TO_GENERATE_MESSAGE


@pytest.mark.parametrize(
    "response",
    [
        None,
        "",
        "too short",
        "sorry",
        "抱歉",
        "An error occurred in the plot engine.",
        "Sorry, the service is down.",
        "我很抱歉，暂时无法生成内容。",
        {},
        [],
        {"error": "quota exceeded"},
        {"errorMessage": "bad gateway"},
    ],
)
def test_invalid_responses(response):
    assert not is_valid_response(response)


@pytest.mark.parametrize(
    "response",
    [
        "The lighthouse keeper climbed the stairs one last time.",
        "I am sorry to say the dragon ate the map. " * 4,
        "Her one error was trusting the guide. " * 4,
        {"text": "content", "error": None},
        ["one"],
        0,
        3.5,
    ],
)
def test_valid_responses(response):
    assert is_valid_response(response)


def test_sanitize_or_fallback_replaces_only_invalid_responses():
    good = "The caravan reached the oasis at dusk."
    assert sanitize_or_fallback(good, "chapter") == good
    assert sanitize_or_fallback("error", "chapter", rng=FixedRandom(0)) == DEFAULT_FALLBACK_RESPONSES["chapter"][0]
