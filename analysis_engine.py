#!/usr/bin/env python3
"""Market judgment from social posts via a chat-completion backend."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from llm_client import chat_json
from logging_utils import get_logger
from sentiment_source import SocialPost

CONDITIONS = ("bullish", "bearish", "neutral")

SYSTEM_PROMPT = (
    "You are an AI trained to analyze market sentiment and trading opportunities. "
    "Provide detailed analysis with clear reasoning. Always respond in valid JSON format."
)


@dataclass(frozen=True)
class MarketJudgment:
    sentiment: float
    confidence: float
    condition: str
    reasoning: Tuple[str, ...] = field(default_factory=tuple)
    suggested_actions: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sentiment": self.sentiment,
            "confidence": self.confidence,
            "condition": self.condition,
            "reasoning": list(self.reasoning),
            "suggestedActions": list(self.suggested_actions),
        }


FALLBACK_JUDGMENT = MarketJudgment(
    sentiment=0.0,
    confidence=0.5,
    condition="neutral",
    reasoning=("fallback",),
    suggested_actions=("wait for more data",),
)


def build_prompt(symbol: str, posts: Sequence[SocialPost]) -> str:
    """Deterministic user prompt: one line per post, in input order."""
    lines = [f"- {p.text} (Engagement: {p.engagement})" for p in posts]
    return "\n".join([
        f"Analyze the market sentiment and conditions for {symbol} based on the following data:",
        "",
        "Social Media Sentiment:",
        *lines,
        "",
        "Provide a structured analysis in the following JSON format:",
        "{",
        '  "sentiment": <number between -1 and 1>,',
        '  "confidence": <number between 0 and 1>,',
        '  "reasons": [<array of strings explaining key reasons>],',
        '  "marketCondition": <"bullish" or "bearish" or "neutral">,',
        '  "suggestedActions": [<array of strings with trading suggestions>]',
        "}",
    ])


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def _as_float(raw: Any) -> Optional[float]:
    if isinstance(raw, bool):
        return None
    try:
        val = float(raw)
    except (TypeError, ValueError):
        return None
    if math.isnan(val) or math.isinf(val):
        return None
    return val


def _str_list(raw: Any) -> Tuple[str, ...]:
    if isinstance(raw, str):
        return (raw,) if raw.strip() else ()
    if not isinstance(raw, list):
        return ()
    return tuple(str(x) for x in raw if x is not None and str(x).strip())


def parse_judgment(payload: Any) -> Optional[MarketJudgment]:
    """Coerce a backend payload into a MarketJudgment; None if unusable."""
    if not isinstance(payload, dict):
        return None
    sentiment = _as_float(payload.get("sentiment"))
    confidence = _as_float(payload.get("confidence"))
    if sentiment is None or confidence is None:
        return None
    condition = str(payload.get("marketCondition") or payload.get("condition") or "").strip().lower()
    if condition not in CONDITIONS:
        condition = "neutral"
    reasons = payload.get("reasons")
    if reasons is None:
        reasons = payload.get("reasoning")
    return MarketJudgment(
        sentiment=_clamp(sentiment, -1.0, 1.0),
        confidence=_clamp(confidence, 0.0, 1.0),
        condition=condition,
        reasoning=_str_list(reasons),
        suggested_actions=_str_list(payload.get("suggestedActions")),
    )


class AnalysisEngine:
    """Turns raw posts into a MarketJudgment; falls back on any failure."""

    def __init__(
        self,
        client: Any = None,
        *,
        model: str = "gpt-4-turbo-preview",
        max_tokens: int = 500,
        temperature: float = 0.3,
        timeout_sec: float = 30.0,
    ):
        self.client = client
        self.model = model
        self.max_tokens = int(max_tokens)
        self.temperature = float(temperature)
        self.timeout_sec = float(timeout_sec)
        self.log = get_logger("analysis_engine")
        if client is None:
            self.log.warning("No OpenAI client configured; every analysis will use the fallback judgment")

    async def infer(self, symbol: str, weighted_texts: Sequence[SocialPost]) -> MarketJudgment:
        meta, text = await chat_json(
            self.client,
            system=SYSTEM_PROMPT,
            user=build_prompt(symbol, weighted_texts),
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            timeout_sec=self.timeout_sec,
        )
        if meta.get("error_kind") != "none":
            self.log.warning(
                f"Analysis backend failed for {symbol}: {meta.get('error_kind')} {meta.get('detail', '')}".rstrip()
            )
            return FALLBACK_JUDGMENT
        judgment = parse_judgment(meta.get("payload"))
        if judgment is None:
            self.log.warning(f"Unusable analysis payload for {symbol}: {text[:200]}")
            return FALLBACK_JUDGMENT
        return judgment

    async def analyze(self, symbol: str, posts: Sequence[SocialPost]) -> MarketJudgment:
        if not posts:
            self.log.info(f"No posts for {symbol}; using fallback judgment")
            return FALLBACK_JUDGMENT
        try:
            judgment = await self.infer(symbol, posts)
        except Exception as exc:
            self.log.error(f"Analysis failed for {symbol}: {exc}")
            return FALLBACK_JUDGMENT
        self.log.info(
            f"Market analysis {symbol}: sentiment={judgment.sentiment:.2f} "
            f"confidence={judgment.confidence:.2f} condition={judgment.condition} posts={len(posts)}"
        )
        return judgment
