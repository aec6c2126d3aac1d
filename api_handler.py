# api_handler.py
from __future__ import annotations

import enum
from typing import Any, Dict, List, Optional, Sequence, Union

import openai
from openai import NOT_GIVEN

Message = Dict[str, str]


class AIErrorType(str, enum.Enum):
    TIMEOUT = "TIMEOUT"
    SERVICE_ERROR = "SERVICE_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    UNKNOWN = "UNKNOWN"


class AIServiceError(RuntimeError):
    """Raised when the chat-completions endpoint cannot produce a response."""

    def __init__(
        self,
        message: str,
        error_type: AIErrorType = AIErrorType.UNKNOWN,
        *,
        retryable: bool = False,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.retryable = retryable
        self.status_code = status_code


class ChatCompletionsGenerator:
    """
    Thin wrapper around an OpenAI-compatible ``/chat/completions`` endpoint.

    Each request posts ``{model, messages, temperature, max_tokens, stream: false}``
    with bearer authorisation and returns ``choices[0].message.content``.

    The SDK's own retry loop is switched off: retries, backoff and fallbacks
    are handled by :mod:`inkwell.services.resilience`, which passes a
    cancellation ``signal`` whose remaining time becomes the request timeout.
    """

    def __init__(
        self,
        model_name: str,
        api_key: str,
        *,
        base_url: Optional[str] = None,
        default_max_tokens: int = 1000,
        default_temperature: float = 0.3,
        client: Any = None,
    ) -> None:
        self.model_name = (model_name or "").strip()
        self.api_key = (api_key or "").strip()
        self.base_url = normalize_base_url(base_url)
        self.default_max_tokens = int(default_max_tokens or 1000)
        self.default_temperature = float(default_temperature)
        if not self.model_name:
            raise ValueError("A model name is required.")

        if client is None:
            client = openai.OpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                max_retries=0,
            )
        self._client = client

    # ---------------- public API ----------------
    def generate_response(
        self,
        messages: Union[str, Sequence[Message]],
        *,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        signal: Any = None,
    ) -> str:
        if isinstance(messages, str):
            if not messages.strip():
                raise ValueError("prompt must be a non-empty string.")
            messages = [{"role": "user", "content": messages}]
        message_list = [dict(message) for message in messages]
        if not message_list:
            raise ValueError("At least one message is required.")

        tokens = int(max_tokens if max_tokens is not None else self.default_max_tokens)
        if tokens <= 0:
            raise ValueError("max_tokens must be positive.")

        timeout: Any = NOT_GIVEN
        if signal is not None:
            if signal.cancelled:
                raise AIServiceError("The request timed out.", AIErrorType.TIMEOUT, retryable=True)
            timeout = signal.remaining()

        try:
            resp = self._client.chat.completions.create(
                model=self.model_name,
                messages=message_list,
                temperature=float(temperature if temperature is not None else self.default_temperature),
                max_tokens=tokens,
                stream=False,
                timeout=timeout,
            )
        except openai.APIError as exc:
            raise classify_openai_error(exc) from exc

        content = self._extract_text_from_chat(resp)
        if content is None:
            snippet = self._shorten_debug(str(resp))
            raise AIServiceError(
                f"AI service returned an unexpected response shape. Raw response (truncated): {snippet}",
                AIErrorType.SERVICE_ERROR,
                retryable=True,
            )
        return content.strip()

    def signature(self) -> tuple[str, str]:
        # Never return raw secrets
        redacted = (self.api_key[:4] + "…" + self.api_key[-4:]) if self.api_key else ""
        return (self.model_name, redacted)

    # ---------------- extractors ----------------
    def _extract_text_from_chat(self, resp: Any) -> Optional[str]:
        if isinstance(resp, dict):
            choices = resp.get("choices") or []
        else:
            choices = getattr(resp, "choices", []) or []
        if not choices:
            return None
        first = choices[0]
        msg = first.get("message") if isinstance(first, dict) else getattr(first, "message", None)
        if isinstance(msg, dict):
            content = msg.get("content")
        else:
            content = getattr(msg, "content", None)
        if isinstance(content, list):
            parts: List[str] = []
            for p in content:
                if isinstance(p, dict) and p.get("type") == "text":
                    parts.append(str(p.get("text") or ""))
            return "\n".join([p for p in parts if p])
        if not isinstance(content, str):
            return None
        return content

    @staticmethod
    def _shorten_debug(s: str, limit: int = 1200) -> str:
        s = s.replace("\n", " ")
        return (s[:limit] + "…") if len(s) > limit else s


def normalize_base_url(base_url: Optional[str]) -> Optional[str]:
    """Accept either the API root or the full chat-completions URL."""

    cleaned = (base_url or "").strip().rstrip("/")
    if not cleaned:
        return None
    suffix = "/chat/completions"
    if cleaned.endswith(suffix):
        cleaned = cleaned[: -len(suffix)]
    return cleaned


def classify_openai_error(exc: openai.APIError) -> AIServiceError:
    """Translate an SDK exception into an :class:`AIServiceError`."""

    message = str(getattr(exc, "message", None) or exc)
    if isinstance(exc, openai.APITimeoutError):
        return AIServiceError("The request timed out.", AIErrorType.TIMEOUT, retryable=True)
    if isinstance(exc, openai.APIConnectionError):
        return AIServiceError(message or "Network error.", AIErrorType.NETWORK_ERROR, retryable=True)
    if isinstance(exc, openai.APIStatusError):
        status = int(exc.status_code)
        if status in (401, 403):
            return AIServiceError(
                message or "Authentication failed.",
                AIErrorType.AUTHORIZATION_ERROR,
                status_code=status,
            )
        if status == 400:
            return AIServiceError(
                message or "Invalid request.", AIErrorType.INVALID_REQUEST, status_code=status
            )
        if status >= 500:
            return AIServiceError(
                message or "AI service error.",
                AIErrorType.SERVICE_ERROR,
                retryable=True,
                status_code=status,
            )
        return AIServiceError(message or f"HTTP error: {status}", AIErrorType.UNKNOWN, status_code=status)
    return AIServiceError(message or "AI service call failed.", AIErrorType.UNKNOWN)


__all__ = [
    "AIErrorType",
    "AIServiceError",
    "ChatCompletionsGenerator",
    "classify_openai_error",
    "normalize_base_url",
]
