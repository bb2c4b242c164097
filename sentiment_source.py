#!/usr/bin/env python3
"""Social post sources feeding the analysis engine.

Two sources share one interface:
- CorpusSentimentSource: fixed per-symbol posts (dry runs, no credentials).
- TwitterSentimentSource: X recent-search over aiohttp, falling back to the
  corpus whenever the live fetch fails.

fetch() returns [] for an unknown symbol instead of raising.
"""

from __future__ import annotations

import abc
import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from logging_utils import get_logger

RECENT_SEARCH_URL = "https://api.twitter.com/2/tweets/search/recent"


class TransientDataError(RuntimeError):
    """Sentiment fetch or inference failed for this cycle."""


@dataclass(frozen=True)
class SocialPost:
    text: str
    engagement: int
    timestamp: int  # epoch ms

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "engagement": self.engagement, "timestamp": self.timestamp}


# (text, reposts, likes, age_ms)
_CORPUS: Dict[str, List[tuple]] = {
    "ETH": [
        ("Super bullish on $ETH with these L2 developments! Base chain looking strong", 150, 450, 3_600_000),
        ("ETH/USD breaking key resistance. Technical analysis suggests more upside #DeFi", 80, 320, 7_200_000),
        ("Feeling bearish on ETH short term, but long term thesis unchanged", 45, 180, 1_800_000),
        ("ETH gas fees dropping with L2 adoption. Massive bullish signal for ecosystem growth!", 320, 890, 900_000),
    ],
    "BTC": [
        ("Bitcoin ETF inflows remain strong! Bullish momentum continues", 250, 800, 2_700_000),
        ("BTC showing weakness at resistance. Might retest support levels", 120, 350, 5_400_000),
        ("Institutional adoption of BTC accelerating. Multiple new ETF products launching", 430, 1200, 1_200_000),
        ("Bitcoin mining difficulty hits ATH. Network security stronger than ever!", 280, 920, 3_000_000),
    ],
    "BASE": [
        ("Base chain TVL hitting new highs! DeFi ecosystem expanding rapidly", 180, 520, 3_600_000),
        ("Incredible to see Base chain adoption growing. Bullish on the ecosystem!", 210, 640, 7_200_000),
        ("New yield farming opportunities on Base looking juicy. APYs through the roof!", 150, 480, 2_400_000),
        ("Major protocol launching on Base next week. Expecting massive liquidity influx", 290, 850, 1_500_000),
    ],
    "USDC": [
        ("USDC reserves fully backed and audited. Stablecoin confidence growing", 180, 560, 4_500_000),
        ("USDC-ETH pools showing strong yields on Base. Low IL risk, high returns!", 130, 420, 3_200_000),
    ],
    "AERO": [
        ("Aerodrome TVL exploding on Base! New pools offering insane APYs", 220, 680, 2_800_000),
        ("Aerodrome governance proposal passed. Major protocol upgrades incoming!", 160, 490, 1_800_000),
        ("$AERO tokenomics looking strong. Emissions schedule perfectly balanced.", 140, 380, 900_000),
    ],
}


def _now_ms() -> int:
    return int(time.time() * 1000)


class SentimentSource(abc.ABC):
    """Supplies raw social posts per symbol."""

    @abc.abstractmethod
    async def fetch(self, symbol: str) -> List[SocialPost]:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class CorpusSentimentSource(SentimentSource):
    """Fixed fallback corpus. Engagement = reposts + likes."""

    def __init__(self, clock: Optional[Callable[[], int]] = None, corpus: Optional[Dict[str, List[tuple]]] = None):
        self._clock = clock or _now_ms
        self._corpus = _CORPUS if corpus is None else corpus

    def symbols(self) -> List[str]:
        return sorted(self._corpus)

    async def fetch(self, symbol: str) -> List[SocialPost]:
        now = self._clock()
        rows = self._corpus.get(str(symbol or "").upper(), [])
        return [
            SocialPost(text=text, engagement=int(reposts) + int(likes), timestamp=now - int(age))
            for text, reposts, likes, age in rows
        ]


def _parse_created_at(raw: Any, default: int) -> int:
    if not raw:
        return default
    try:
        return int(datetime.fromisoformat(str(raw).replace("Z", "+00:00")).timestamp() * 1000)
    except ValueError:
        return default


class TwitterSentimentSource(SentimentSource):
    """X recent-search source. Engagement = retweets + likes + replies."""

    def __init__(
        self,
        bearer_token: str,
        *,
        fallback: Optional[SentimentSource] = None,
        max_results: int = 100,
        timeout_sec: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
        url: str = RECENT_SEARCH_URL,
    ):
        self.log = get_logger("sentiment_source")
        self._bearer_token = bearer_token
        self._fallback = fallback
        # recent search accepts 10..100
        self._max_results = max(10, min(100, int(max_results)))
        self._timeout = aiohttp.ClientTimeout(total=float(timeout_sec))
        self._session = session
        self._owns_session = session is None
        self._url = url

    @staticmethod
    def build_query(symbol: str) -> str:
        return f"{symbol} (crypto OR trading OR blockchain) -is:retweet lang:en"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _search(self, symbol: str) -> List[SocialPost]:
        session = await self._get_session()
        params = {
            "query": self.build_query(symbol),
            "tweet.fields": "created_at,public_metrics",
            "max_results": str(self._max_results),
            "sort_order": "recency",
        }
        headers = {"Authorization": f"Bearer {self._bearer_token}"}
        async with session.get(self._url, params=params, headers=headers, timeout=self._timeout) as resp:
            if resp.status != 200:
                body = await resp.text()
                raise TransientDataError(f"recent search HTTP {resp.status}: {body[:200]}")
            data = await resp.json()

        now = _now_ms()
        posts: List[SocialPost] = []
        for item in (data or {}).get("data") or []:
            if not isinstance(item, dict) or not item.get("text"):
                continue
            metrics = item.get("public_metrics") or {}
            engagement = (
                int(metrics.get("retweet_count") or 0)
                + int(metrics.get("like_count") or 0)
                + int(metrics.get("reply_count") or 0)
            )
            posts.append(SocialPost(
                text=str(item["text"]),
                engagement=engagement,
                timestamp=_parse_created_at(item.get("created_at"), now),
            ))
        return posts

    async def fetch(self, symbol: str) -> List[SocialPost]:
        try:
            return await self._search(symbol)
        except (aiohttp.ClientError, asyncio.TimeoutError, TransientDataError, ValueError) as exc:
            if self._fallback is None:
                raise TransientDataError(f"sentiment fetch failed for {symbol}: {exc}") from exc
            self.log.warning(f"Live sentiment fetch failed for {symbol}: {exc}; falling back to corpus")
            return await self._fallback.fetch(symbol)


def build_sentiment_source(
    bearer_token: Optional[str],
    *,
    max_results: int = 100,
    timeout_sec: float = 10.0,
) -> SentimentSource:
    """Live source when a bearer token is configured, corpus otherwise."""
    corpus = CorpusSentimentSource()
    if not bearer_token:
        get_logger("sentiment_source").warning("No TWITTER_BEARER_TOKEN configured; using fallback corpus")
        return corpus
    return TwitterSentimentSource(
        bearer_token,
        fallback=corpus,
        max_results=max_results,
        timeout_sec=timeout_sec,
    )
