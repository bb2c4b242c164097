#!/usr/bin/env python3

import asyncio
import sys
from pathlib import Path

import aiohttp
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sentiment_source import (
    CorpusSentimentSource,
    TransientDataError,
    TwitterSentimentSource,
    build_sentiment_source,
)

NOW = 1_700_000_000_000


class _FakeResponse:
    def __init__(self, status, payload=None, body=""):
        self.status = status
        self._payload = payload
        self._body = body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    async def text(self):
        return self._body


class _FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.closed = False
        self.requests = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.requests.append({"url": url, "params": params, "headers": headers})
        if self.error is not None:
            raise self.error
        return self.response

    async def close(self):
        self.closed = True


def test_corpus_engagement_is_reposts_plus_likes() -> None:
    source = CorpusSentimentSource(clock=lambda: NOW)
    posts = asyncio.run(source.fetch("eth"))

    assert len(posts) == 4
    assert posts[0].engagement == 150 + 450
    assert posts[0].timestamp == NOW - 3_600_000
    assert "AERO" in source.symbols()


def test_corpus_unknown_symbol_is_empty() -> None:
    assert asyncio.run(CorpusSentimentSource().fetch("XYZ")) == []


def test_live_search_parses_posts_and_sends_query() -> None:
    payload = {
        "data": [
            {
                "text": "ETH looking strong",
                "created_at": "2024-01-01T00:00:00.000Z",
                "public_metrics": {"retweet_count": 3, "like_count": 10, "reply_count": 2},
            },
            {"text": "", "public_metrics": {}},
            {"text": "no metrics here"},
        ]
    }
    session = _FakeSession(_FakeResponse(200, payload))
    source = TwitterSentimentSource("token-abc", session=session, max_results=5)

    posts = asyncio.run(source.fetch("ETH"))

    assert [p.text for p in posts] == ["ETH looking strong", "no metrics here"]
    assert posts[0].engagement == 15
    assert posts[0].timestamp == 1_704_067_200_000
    assert posts[1].engagement == 0

    req = session.requests[0]
    assert req["headers"]["Authorization"] == "Bearer token-abc"
    assert req["params"]["query"] == TwitterSentimentSource.build_query("ETH")
    assert req["params"]["max_results"] == "10"


def test_http_error_falls_back_to_corpus() -> None:
    session = _FakeSession(_FakeResponse(429, body="rate limited"))
    source = TwitterSentimentSource("t", session=session, fallback=CorpusSentimentSource(clock=lambda: NOW))

    posts = asyncio.run(source.fetch("AERO"))
    assert len(posts) == 3


def test_connection_error_without_fallback_is_transient() -> None:
    session = _FakeSession(error=aiohttp.ClientConnectionError("connection reset"))
    source = TwitterSentimentSource("t", session=session)

    with pytest.raises(TransientDataError):
        asyncio.run(source.fetch("ETH"))


def test_malformed_json_is_transient() -> None:
    session = _FakeSession(_FakeResponse(200, ValueError("bad json")))
    source = TwitterSentimentSource("t", session=session)

    with pytest.raises(TransientDataError):
        asyncio.run(source.fetch("ETH"))


def test_close_leaves_injected_session_open() -> None:
    session = _FakeSession(_FakeResponse(200, {"data": []}))
    source = TwitterSentimentSource("t", session=session)
    asyncio.run(source.close())
    assert session.closed is False


def test_builder_uses_corpus_without_token() -> None:
    assert isinstance(build_sentiment_source(None), CorpusSentimentSource)
    assert isinstance(build_sentiment_source(""), CorpusSentimentSource)
    assert isinstance(build_sentiment_source("abc"), TwitterSentimentSource)
