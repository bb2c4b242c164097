#!/usr/bin/env python3

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import analysis_engine
from analysis_engine import FALLBACK_JUDGMENT, AnalysisEngine, build_prompt, parse_judgment
from sentiment_source import SocialPost


POSTS = [
    SocialPost(text="ETH breaking out", engagement=600, timestamp=1),
    SocialPost(text="bearish short term", engagement=225, timestamp=2),
]


def _patch_backend(monkeypatch, meta, text=""):
    calls = []

    async def _fake_chat_json(client, **kwargs):
        calls.append(kwargs)
        return meta, text

    monkeypatch.setattr(analysis_engine, "chat_json", _fake_chat_json)
    return calls


def test_empty_posts_use_fallback_without_backend_call(monkeypatch) -> None:
    calls = _patch_backend(monkeypatch, {"error_kind": "none", "payload": {"sentiment": 1, "confidence": 1}})
    engine = AnalysisEngine(client=object())

    judgment = asyncio.run(engine.analyze("XYZ", []))

    assert judgment == FALLBACK_JUDGMENT
    assert judgment.sentiment == 0.0
    assert judgment.confidence == 0.5
    assert judgment.condition == "neutral"
    assert list(judgment.reasoning) == ["fallback"]
    assert list(judgment.suggested_actions) == ["wait for more data"]
    assert calls == []


def test_backend_payload_is_parsed(monkeypatch) -> None:
    payload = {
        "sentiment": 0.75,
        "confidence": 0.9,
        "reasons": ["L2 growth", "fees dropping"],
        "marketCondition": "Bullish",
        "suggestedActions": ["accumulate"],
    }
    calls = _patch_backend(monkeypatch, {"error_kind": "none", "payload": payload})
    engine = AnalysisEngine(client=object(), model="m", max_tokens=200, temperature=0.1)

    judgment = asyncio.run(engine.analyze("ETH", POSTS))

    assert judgment.sentiment == 0.75
    assert judgment.confidence == 0.9
    assert judgment.condition == "bullish"
    assert judgment.reasoning == ("L2 growth", "fees dropping")
    assert judgment.suggested_actions == ("accumulate",)
    assert calls[0]["model"] == "m"
    assert calls[0]["max_tokens"] == 200
    assert "- ETH breaking out (Engagement: 600)" in calls[0]["user"]


def test_backend_failure_and_garbage_fall_back(monkeypatch) -> None:
    engine = AnalysisEngine(client=object())

    _patch_backend(monkeypatch, {"error_kind": "timeout", "detail": "slow"})
    assert asyncio.run(engine.analyze("ETH", POSTS)) == FALLBACK_JUDGMENT

    _patch_backend(monkeypatch, {"error_kind": "none", "payload": {"sentiment": "high"}})
    assert asyncio.run(engine.analyze("ETH", POSTS)) == FALLBACK_JUDGMENT


def test_backend_exception_falls_back(monkeypatch) -> None:
    async def _boom(client, **kwargs):
        raise RuntimeError("provider exploded")

    monkeypatch.setattr(analysis_engine, "chat_json", _boom)
    engine = AnalysisEngine(client=object())
    assert asyncio.run(engine.analyze("ETH", POSTS)) == FALLBACK_JUDGMENT


def test_parse_judgment_clamps_and_normalizes() -> None:
    judgment = parse_judgment({
        "sentiment": 3.2,
        "confidence": -0.4,
        "marketCondition": "sideways",
        "reasons": "single reason",
    })
    assert judgment.sentiment == 1.0
    assert judgment.confidence == 0.0
    assert judgment.condition == "neutral"
    assert judgment.reasoning == ("single reason",)
    assert judgment.suggested_actions == ()

    assert parse_judgment({"sentiment": True, "confidence": 0.9}) is None
    assert parse_judgment({"sentiment": float("nan"), "confidence": 0.9}) is None
    assert parse_judgment(["not", "a", "dict"]) is None


def test_build_prompt_is_deterministic_and_ordered() -> None:
    first = build_prompt("ETH", POSTS)
    assert first == build_prompt("ETH", POSTS)
    assert first.index("ETH breaking out") < first.index("bearish short term")
    assert '"marketCondition"' in first
