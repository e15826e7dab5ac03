"""Request shaping for the chat proxy endpoint."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

VALID_ROLES = {"user", "assistant", "system"}
MAX_STOP_SEQUENCES = 4


class ChatValidationError(ValueError):
    """Raised when the chat payload is malformed."""


@dataclass
class ChatRequest:
    messages: List[Dict[str, str]]
    parameters: Dict[str, Any] = field(default_factory=dict)


def _clamp(value: Any, low: float, high: float) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return max(low, min(high, number))


def build_chat_request(payload: Any) -> ChatRequest:
    """Turn the raw JSON payload into messages plus clamped sampling parameters."""

    if not isinstance(payload, dict):
        raise ChatValidationError("Messages array is required")
    raw_messages = payload.get("messages")
    if not isinstance(raw_messages, list):
        raise ChatValidationError("Messages array is required")

    messages: List[Dict[str, str]] = []
    for entry in raw_messages:
        if not isinstance(entry, dict) or entry.get("role") not in VALID_ROLES:
            raise ChatValidationError("Every message needs a role of user, assistant or system.")
        messages.append({"role": entry["role"], "content": str(entry.get("content") or "")})

    system_prompt = (payload.get("systemPrompt") or "").strip()
    if system_prompt:
        messages.insert(0, {"role": "system", "content": system_prompt})

    messages = limit_history(messages, payload.get("pastMessagesLimit"))
    if not messages:
        raise ChatValidationError("Messages array is required")

    parameters: Dict[str, Any] = {
        "temperature": _clamp(payload.get("temperature"), 0, 1),
        "top_p": _clamp(payload.get("topP"), 0, 1),
        "frequency_penalty": _clamp(payload.get("frequencyPenalty"), -2, 2),
        "presence_penalty": _clamp(payload.get("presencePenalty"), -2, 2),
    }
    max_tokens = _clamp(payload.get("maxTokens"), 1, 16384)
    if max_tokens is not None and float(payload["maxTokens"]) > 0:
        parameters["max_tokens"] = int(max_tokens)

    stops = payload.get("stopSequences")
    if isinstance(stops, list):
        valid = [stop for stop in stops if isinstance(stop, str) and stop.strip()][:MAX_STOP_SEQUENCES]
        if valid:
            parameters["stop"] = valid

    return ChatRequest(
        messages=messages,
        parameters={key: value for key, value in parameters.items() if value is not None},
    )


def limit_history(messages: List[Dict[str, str]], limit: Any) -> List[Dict[str, str]]:
    """Keep the first system message plus the last ``limit`` other messages."""

    try:
        limit = int(limit) if limit is not None else 0
    except (TypeError, ValueError):
        limit = 0
    if limit <= 0 or len(messages) <= limit:
        return messages

    system = next((message for message in messages if message["role"] == "system"), None)
    others = [message for message in messages if message["role"] != "system"][-limit:]
    return [system, *others] if system else others
