import sys
from pathlib import Path
from types import SimpleNamespace

import httpx
import openai
import pytest
from openai import NOT_GIVEN

sys.path.append(str(Path(__file__).resolve().parents[1]))

from api_handler import (
    AIErrorType,
    AIServiceError,
    ChatCompletionsGenerator,
    classify_openai_error,
    normalize_base_url,
)
from inkwell.services.resilience import CancellationSignal


class FakeCompletions:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


def _chat_response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _generator(response=None, error=None, **kwargs):
    completions = FakeCompletions(response=response, error=error)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    generator = ChatCompletionsGenerator("story-model", "sk-test-1234567890", client=client, **kwargs)
    return generator, completions


_REQUEST = httpx.Request("POST", "https://api.example.com/v1/chat/completions")


def test_generate_response_posts_messages_and_returns_stripped_text():
    generator, completions = _generator(_chat_response("  The moon rose over the dunes.  "))
    messages = [
        {"role": "system", "content": "You are a novelist."},
        {"role": "user", "content": "Continue the story."},
    ]

    text = generator.generate_response(messages)

    assert text == "The moon rose over the dunes."
    call = completions.calls[0]
    assert call["model"] == "story-model"
    assert call["messages"] == messages
    assert call["temperature"] == 0.3
    assert call["max_tokens"] == 1000
    assert call["stream"] is False
    assert call["timeout"] is NOT_GIVEN


def test_plain_prompt_becomes_user_message_and_overrides_apply():
    generator, completions = _generator(_chat_response("Reply"), default_max_tokens=200)

    generator.generate_response("Name three dragons.", temperature=0.9, max_tokens=50)

    call = completions.calls[0]
    assert call["messages"] == [{"role": "user", "content": "Name three dragons."}]
    assert call["temperature"] == 0.9
    assert call["max_tokens"] == 50


def test_signal_remaining_time_becomes_request_timeout():
    now = [10.0]
    signal = CancellationSignal(4000, clock=lambda: now[0])
    generator, completions = _generator(_chat_response("Reply"))

    generator.generate_response("Hello", signal=signal)

    assert completions.calls[0]["timeout"] == pytest.approx(4.0)


def test_fired_signal_fails_without_calling_the_api():
    now = [10.0]
    signal = CancellationSignal(1000, clock=lambda: now[0])
    now[0] = 20.0
    generator, completions = _generator(_chat_response("Reply"))

    with pytest.raises(AIServiceError) as excinfo:
        generator.generate_response("Hello", signal=signal)

    assert excinfo.value.error_type == AIErrorType.TIMEOUT
    assert excinfo.value.retryable
    assert completions.calls == []


def test_dict_responses_with_text_parts_are_joined():
    response = {
        "choices": [
            {
                "message": {
                    "content": [
                        {"type": "text", "text": "First part."},
                        {"type": "image", "url": "ignored"},
                        {"type": "text", "text": "Second part."},
                    ]
                }
            }
        ]
    }
    generator, _ = _generator(response)

    assert generator.generate_response("Hi") == "First part.\nSecond part."


def test_unexpected_response_shape_is_a_retryable_service_error():
    generator, _ = _generator(SimpleNamespace(choices=[]))

    with pytest.raises(AIServiceError) as excinfo:
        generator.generate_response("Hi")

    assert excinfo.value.error_type == AIErrorType.SERVICE_ERROR
    assert excinfo.value.retryable


def test_sdk_errors_are_translated():
    error = openai.APIStatusError(
        "upstream exploded", response=httpx.Response(502, request=_REQUEST), body=None
    )
    generator, _ = _generator(error=error)

    with pytest.raises(AIServiceError) as excinfo:
        generator.generate_response("Hi")

    assert excinfo.value.error_type == AIErrorType.SERVICE_ERROR
    assert excinfo.value.status_code == 502
    assert excinfo.value.__cause__ is error


@pytest.mark.parametrize(
    "error, error_type, retryable",
    [
        (openai.APITimeoutError(request=_REQUEST), AIErrorType.TIMEOUT, True),
        (openai.APIConnectionError(request=_REQUEST), AIErrorType.NETWORK_ERROR, True),
        (
            openai.APIStatusError("bad key", response=httpx.Response(401, request=_REQUEST), body=None),
            AIErrorType.AUTHORIZATION_ERROR,
            False,
        ),
        (
            openai.APIStatusError("forbidden", response=httpx.Response(403, request=_REQUEST), body=None),
            AIErrorType.AUTHORIZATION_ERROR,
            False,
        ),
        (
            openai.APIStatusError("malformed", response=httpx.Response(400, request=_REQUEST), body=None),
            AIErrorType.INVALID_REQUEST,
            False,
        ),
        (
            openai.APIStatusError("slow down", response=httpx.Response(429, request=_REQUEST), body=None),
            AIErrorType.UNKNOWN,
            False,
        ),
        (
            openai.APIStatusError("oops", response=httpx.Response(500, request=_REQUEST), body=None),
            AIErrorType.SERVICE_ERROR,
            True,
        ),
    ],
)
def test_classify_openai_error(error, error_type, retryable):
    classified = classify_openai_error(error)

    assert classified.error_type == error_type
    assert classified.retryable is retryable


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, None),
        ("", None),
        ("https://api.example.com/v1", "https://api.example.com/v1"),
        ("https://api.example.com/v1/", "https://api.example.com/v1"),
        ("https://api.example.com/v1/chat/completions", "https://api.example.com/v1"),
    ],
)
def test_normalize_base_url(value, expected):
    assert normalize_base_url(value) == expected


def test_invalid_arguments_are_rejected():
    generator, _ = _generator(_chat_response("Reply"))

    with pytest.raises(ValueError):
        generator.generate_response("   ")
    with pytest.raises(ValueError):
        generator.generate_response([])
    with pytest.raises(ValueError):
        generator.generate_response("Hi", max_tokens=0)
    with pytest.raises(ValueError):
        ChatCompletionsGenerator("  ", "key", client=object())


def test_signature_never_exposes_the_key():
    generator, _ = _generator(_chat_response("Reply"))

    model, redacted = generator.signature()

    assert model == "story-model"
    assert redacted == "sk-t…7890"
