# api_handler.py
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

import openai


class CompletionError(RuntimeError):
    """Raised when a chat completion request fails or returns no text."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ImageGenerationError(RuntimeError):
    """Raised when the image deployment rejects a request.

    ``body`` keeps the provider's error payload so callers can look for a
    content-policy revision without re-parsing the message.
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


@dataclass(frozen=True)
class CompletionResult:
    text: str
    usage: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class GeneratedImage:
    url: str
    revised_prompt: Optional[str] = None


@dataclass(frozen=True)
class GenerationErrorInfo:
    is_policy_rejection: bool
    revised_prompt: Optional[str] = None
    code: Optional[str] = None


CONTENT_POLICY_CODE = "content_policy_violation"


class AzureChatGenerator:
    """
    Thin wrapper around an Azure OpenAI chat-completions deployment.

    - ``complete`` takes a full message list and returns text plus usage
    - SDK errors are translated into :class:`CompletionError`

    Compatible with OpenAI Python SDK >= 1.0.
    """

    def __init__(
        self,
        *,
        api_key: str,
        endpoint: str,
        deployment: str,
        api_version: str,
        client: Any = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.endpoint = (endpoint or "").strip()
        self.deployment = (deployment or "").strip()
        self.api_version = (api_version or "").strip()
        if client is None:
            client = openai.AzureOpenAI(
                api_key=self.api_key,
                azure_endpoint=self.endpoint,
                api_version=self.api_version,
            )
        self._client = client

    # ---------------- public API ----------------
    def complete(
        self,
        messages: Sequence[Mapping[str, str]],
        *,
        max_tokens: Optional[int] = None,
        max_completion_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        frequency_penalty: Optional[float] = None,
        presence_penalty: Optional[float] = None,
        stop: Optional[List[str]] = None,
    ) -> CompletionResult:
        if not messages:
            raise ValueError("messages must be a non-empty list.")

        kwargs: Dict[str, Any] = {
            "model": self.deployment,
            "messages": [dict(message) for message in messages],
        }
        optional = {
            "max_tokens": max_tokens,
            "max_completion_tokens": max_completion_tokens,
            "temperature": temperature,
            "top_p": top_p,
            "frequency_penalty": frequency_penalty,
            "presence_penalty": presence_penalty,
            "stop": stop,
        }
        kwargs.update({k: v for k, v in optional.items() if v is not None})

        try:
            resp = self._client.chat.completions.create(**kwargs)
        except openai.APIStatusError as exc:
            raise CompletionError(
                f"API Error: {exc.status_code} - {_response_text(exc)}",
                status_code=exc.status_code,
                body=exc.body,
            ) from exc
        except openai.APIError as exc:
            raise CompletionError(f"API request failed: {exc}") from exc

        text = self._extract_text_from_chat(resp).strip()
        if not text:
            snippet = self._shorten_debug(str(resp))
            raise CompletionError(f"Invalid response format from API. Raw response (truncated): {snippet}")
        return CompletionResult(text=text, usage=_usage_dict(getattr(resp, "usage", None)))

    # ---------------- extractors ----------------
    def _extract_text_from_chat(self, resp: Any) -> str:
        choices = getattr(resp, "choices", []) or []
        if not choices:
            return ""
        first = choices[0]
        msg = getattr(first, "message", None)
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
        return str(content or "")

    @staticmethod
    def _shorten_debug(s: str, limit: int = 1200) -> str:
        s = s.replace("\n", " ")
        return (s[:limit] + "…") if len(s) > limit else s


class AzureImageGenerator:
    """Wrapper around an Azure DALL-E deployment returning hosted image URLs."""

    def __init__(
        self,
        *,
        api_key: str,
        endpoint: str,
        deployment: str,
        api_version: str,
        client: Any = None,
    ) -> None:
        self.deployment = (deployment or "").strip()
        if client is None:
            client = openai.AzureOpenAI(
                api_key=(api_key or "").strip(),
                azure_endpoint=(endpoint or "").strip(),
                api_version=(api_version or "").strip(),
            )
        self._client = client

    def generate(self, prompt: str, *, size: str, style: str, quality: str) -> GeneratedImage:
        try:
            resp = self._client.images.generate(
                model=self.deployment,
                prompt=prompt,
                size=size,
                style=style,
                quality=quality,
                n=1,
            )
        except openai.APIStatusError as exc:
            raise ImageGenerationError(
                f"API Error: {exc.status_code} - {_response_text(exc)}",
                status_code=exc.status_code,
                body=exc.body,
            ) from exc
        except openai.APIError as exc:
            raise ImageGenerationError(f"API request failed: {exc}") from exc

        data = getattr(resp, "data", None) or []
        url = getattr(data[0], "url", None) if data else None
        if not url:
            raise ImageGenerationError("Invalid response format from the DALL-E API")
        return GeneratedImage(url=url, revised_prompt=getattr(data[0], "revised_prompt", None))


def interpret_generation_error(raw_error: Any) -> GenerationErrorInfo:
    """Detect an Azure content-policy rejection that offers a revised prompt.

    ``raw_error`` may be an :class:`ImageGenerationError`, the SDK's parsed
    error body, the full ``{"error": {...}}`` envelope or its JSON text.
    """

    payload = raw_error
    if isinstance(payload, ImageGenerationError):
        payload = payload.body if payload.body is not None else str(payload)
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError:
            return GenerationErrorInfo(is_policy_rejection=False)
    if not isinstance(payload, Mapping):
        return GenerationErrorInfo(is_policy_rejection=False)

    error = payload.get("error")
    if isinstance(error, Mapping):
        payload = error

    code = payload.get("code")
    if code != CONTENT_POLICY_CODE:
        return GenerationErrorInfo(is_policy_rejection=False, code=code if isinstance(code, str) else None)

    inner = payload.get("inner_error") or payload.get("innererror") or {}
    revised = inner.get("revised_prompt") if isinstance(inner, Mapping) else None
    revised = revised.strip() if isinstance(revised, str) else ""
    return GenerationErrorInfo(is_policy_rejection=True, revised_prompt=revised or None, code=code)


def _response_text(exc: openai.APIStatusError) -> str:
    response = getattr(exc, "response", None)
    text = getattr(response, "text", None) if response is not None else None
    if text:
        return text
    if exc.body is not None:
        try:
            return json.dumps(exc.body)
        except (TypeError, ValueError):
            return str(exc.body)
    return str(exc)


def _usage_dict(usage: Any) -> Optional[Dict[str, Any]]:
    if usage is None:
        return None
    if isinstance(usage, dict):
        return dict(usage)
    dump = getattr(usage, "model_dump", None)
    if callable(dump):
        return dump()
    return {key: value for key, value in vars(usage).items() if not key.startswith("_")}
