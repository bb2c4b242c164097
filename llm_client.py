#!/usr/bin/env python3
"""Chat-completion call helpers.

Thin wrapper over the openai SDK (AsyncOpenAI, any OpenAI-compatible base URL).
Returns (meta, assistant_text) and never raises on transport or provider
failure; callers inspect meta["error_kind"] and fall back.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Optional, Tuple

from openai import AsyncOpenAI, APIError, APITimeoutError

from env_utils import env_str
from logging_utils import get_logger

_LOG = get_logger("llm_client")
_TIMEOUT_GRACE_SEC = 2.0


def build_client(
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    timeout_sec: float = 30.0,
) -> Optional[AsyncOpenAI]:
    """Create an AsyncOpenAI client from args or OPENAI_API_KEY / OPENAI_BASE_URL.

    Returns None when no API key is available.
    """
    key = api_key or env_str("OPENAI_API_KEY")
    if not key:
        return None
    url = base_url or env_str("OPENAI_BASE_URL")
    kwargs: Dict[str, Any] = {"api_key": key, "timeout": float(timeout_sec)}
    if url:
        kwargs["base_url"] = url
    return AsyncOpenAI(**kwargs)


_DECODER = json.JSONDecoder()


def safe_json_loads(text: Optional[str]) -> Optional[Any]:
    """Parse model output as JSON, else the first decodable object inside it.

    Covers code fences and prose around the object.
    """
    if text is None:
        return None
    raw = str(text).strip()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        pass
    start = raw.find("{")
    while start >= 0:
        try:
            obj, _ = _DECODER.raw_decode(raw, start)
            return obj
        except json.JSONDecodeError:
            start = raw.find("{", start + 1)
    return None


async def chat_json(
    client: Optional[AsyncOpenAI],
    *,
    system: str,
    user: str,
    model: str,
    max_tokens: int = 500,
    temperature: float = 0.3,
    timeout_sec: float = 30.0,
) -> Tuple[Dict[str, Any], str]:
    """Run one JSON-mode chat completion and return (meta, assistant_text).

    meta shape:
    {
      "error_kind": "none|not_configured|timeout|api_error|empty_output|invalid_json",
      "model": str,
      "detail": str,
      "payload": Optional[dict],
    }
    """
    meta: Dict[str, Any] = {"error_kind": "none", "model": model, "detail": "", "payload": None}
    if client is None:
        meta["error_kind"] = "not_configured"
        return meta, ""

    try:
        response = await asyncio.wait_for(
            client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                temperature=temperature,
                max_tokens=int(max_tokens),
                response_format={"type": "json_object"},
            ),
            timeout=max(1.0, float(timeout_sec) + _TIMEOUT_GRACE_SEC),
        )
    except (asyncio.TimeoutError, APITimeoutError) as exc:
        meta["error_kind"] = "timeout"
        meta["detail"] = str(exc)
        return meta, ""
    except APIError as exc:
        meta["error_kind"] = "api_error"
        meta["detail"] = str(exc)
        return meta, ""

    text = ""
    if response.choices:
        text = (response.choices[0].message.content or "").strip()
    if not text:
        meta["error_kind"] = "empty_output"
        return meta, ""

    payload = safe_json_loads(text)
    if not isinstance(payload, dict):
        meta["error_kind"] = "invalid_json"
        meta["detail"] = text[:200]
        return meta, text

    meta["payload"] = payload
    _LOG.debug(f"chat_json ok model={model} keys={sorted(payload.keys())}")
    return meta, text
