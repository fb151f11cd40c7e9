"""
Parsing of untrusted model and provider output.
Any payload is classified into one of a few known shapes, or marked unparsed.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

CANONICAL_KEYS = ("clauses", "risks", "recommendations", "summary")
WRAPPER_KEYS = ("analysis", "result", "data", "response", "output")

_TRAILING_COMMA = re.compile(r',\s*([}\]])')


@dataclass
class CanonicalPayload:
    """A dict carrying analysis fields at the top level."""
    data: Dict[str, Any]


@dataclass
class WrappedPayload:
    """Analysis fields nested under an envelope key."""
    data: Dict[str, Any]
    wrapper: str


@dataclass
class ItemsPayload:
    """A bare JSON array."""
    items: List[Any]


@dataclass
class UnparsedPayload:
    """Anything that could not be read as analysis JSON."""
    raw: str
    reason: str


ProviderPayload = Union[CanonicalPayload, WrappedPayload, ItemsPayload, UnparsedPayload]


def extract_json(text: str) -> Any:
    """
    Pull a JSON value out of free-form model text.

    Handles fenced ```json blocks, prose around a JSON object or array,
    and trailing commas.

    Raises:
        ValueError: No JSON value could be recovered
    """
    if text is None:
        raise ValueError("no text")
    text = text.strip()

    candidates = []
    if "```json" in text:
        start = text.find("```json") + 7
        end = text.find("```", start)
        candidates.append(text[start:end if end != -1 else None].strip())
    elif "```" in text:
        start = text.find("```") + 3
        end = text.find("```", start)
        candidates.append(text[start:end if end != -1 else None].strip())
    candidates.append(text)

    # Whichever bracket opens first is tried first
    slices = []
    for opener, closer in (("{", "}"), ("[", "]")):
        start = text.find(opener)
        end = text.rfind(closer)
        if start != -1 and end > start:
            slices.append((start, text[start:end + 1]))
    candidates.extend(candidate for _, candidate in sorted(slices))

    for candidate in candidates:
        for attempt in (candidate, _TRAILING_COMMA.sub(r'\1', candidate)):
            try:
                return json.loads(attempt)
            except (json.JSONDecodeError, TypeError):
                continue
    raise ValueError("no JSON object or array found in text")


def classify_payload(payload: Any) -> ProviderPayload:
    """Classify an arbitrary payload into a known shape."""
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")

    if isinstance(payload, str):
        try:
            parsed = extract_json(payload)
        except ValueError as e:
            return UnparsedPayload(raw=payload[:500], reason=str(e))
        return classify_payload(parsed)

    if isinstance(payload, list):
        return ItemsPayload(items=payload)

    if isinstance(payload, dict):
        if any(key in payload for key in CANONICAL_KEYS):
            return CanonicalPayload(data=payload)

        for key in WRAPPER_KEYS:
            if isinstance(payload.get(key), (dict, str)):
                inner = classify_payload(payload[key])
                if isinstance(inner, (CanonicalPayload, WrappedPayload)):
                    return WrappedPayload(data=inner.data, wrapper=key)

        text = _chat_completion_text(payload)
        if text is not None:
            inner = classify_payload(text)
            if isinstance(inner, (CanonicalPayload, WrappedPayload)):
                return WrappedPayload(data=inner.data, wrapper="completion")
            return inner

        return UnparsedPayload(raw=json.dumps(payload, default=str)[:500], reason="no analysis fields in payload")

    return UnparsedPayload(raw=repr(payload)[:500], reason=f"unsupported payload type {type(payload).__name__}")


def _chat_completion_text(payload: Dict[str, Any]) -> Optional[str]:
    """Text content of OpenAI-style or Gemini-style completion envelopes."""
    try:
        if "choices" in payload:
            return payload["choices"][0]["message"]["content"]
        if "candidates" in payload:
            return payload["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    return None


def payload_items(payload: ProviderPayload, key: str) -> List[Any]:
    """
    Items for one result field.

    Raises:
        ValueError: The payload was unparsed or carries nothing for the key
    """
    if isinstance(payload, UnparsedPayload):
        raise ValueError(f"unparseable output: {payload.reason}")
    if isinstance(payload, ItemsPayload):
        return payload.items
    value = payload.data.get(key)
    if value is None:
        raise ValueError(f"output has no '{key}' field")
    return value if isinstance(value, list) else [value]
