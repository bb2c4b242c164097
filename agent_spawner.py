#!/usr/bin/env python3
"""
Agent lifecycle manager ("spawner").

Each tick walks the monitored tokens in order and, per token, runs:

  posts -> judgment -> thresholds -> agent cap -> judge -> direction
        -> swap -> trade record -> agent spawn + funding -> supervision

Any negative step ends that token's attempt for the tick; it is logged and is
not an error. Failures inside one token are contained so the remaining tokens
are still processed.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from agent_factory import (
    AgentConfig,
    AgentFactory,
    AgentRegistry,
    AgentSpawnError,
    strategy_template,
)
from analysis_engine import MarketJudgment
from exchanges.base import ExecutionError
from health_supervisor import HealthConfig, HealthSupervisor
from logging_utils import get_logger
from opportunity_judge import OpportunityEvaluator
from sentiment_source import SentimentSource, TransientDataError
from trade_tracker import Trade, TradeTracker

DEFAULT_TOKENS = ["ETH", "BTC", "BASE", "USDC", "AERO"]
CAPITAL_DECIMALS = 9


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class SpawnerConfig:
    monitored_tokens: List[str] = field(default_factory=lambda: list(DEFAULT_TOKENS))
    monitor_interval: float = 300.0  # seconds
    min_sentiment: float = 0.3
    min_confidence: float = 0.7
    max_agents_per_token: int = 3
    min_capital: float = 0.1
    max_capital: float = 1.0
    trade_ledger_size: int = 100
    trade_history_view: int = 10
    termination_view: int = 5


@dataclass
class SpawnOutcome:
    token: str
    spawned: bool
    reason: str
    agent_id: Optional[str] = None
    judgment: Optional[MarketJudgment] = None
    trade: Optional[Trade] = None


class AgentSpawner:
    """Owns the active-agent registry, position book and trade ledger."""

    def __init__(
        self,
        config: SpawnerConfig,
        *,
        source: SentimentSource,
        engine: Any,
        judge: OpportunityEvaluator,
        executor: Any,
        supervisor: HealthSupervisor,
        factory: Optional[AgentFactory] = None,
        tracker: Optional[TradeTracker] = None,
        health_config: Optional[HealthConfig] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.config = config
        self.source = source
        self.engine = engine
        self.judge = judge
        self.executor = executor
        self.supervisor = supervisor
        self.registry: AgentRegistry = supervisor.registry
        self._clock = clock or _now_ms
        self.factory = factory or AgentFactory(executor, clock=self._clock)
        self.tracker = tracker or TradeTracker(config.trade_ledger_size, clock=self._clock)
        self.health_config = health_config
        self.log = get_logger("agent_spawner")

        self.started_at = self._clock()
        self.last_tick: Optional[int] = None
        self._judgments: Dict[str, Dict[str, Any]] = {}
        self._token_locks: Dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------ pipeline
    def _reject(self, token: str, reason: str, **kwargs: Any) -> SpawnOutcome:
        self.log.info(f"{token}: no spawn ({reason})")
        return SpawnOutcome(token=token, spawned=False, reason=reason, **kwargs)

    def _lock_for(self, token: str) -> asyncio.Lock:
        lock = self._token_locks.get(token)
        if lock is None:
            lock = asyncio.Lock()
            self._token_locks[token] = lock
        return lock

    async def _judgment_for(self, token: str) -> Optional[MarketJudgment]:
        try:
            posts = await self.source.fetch(token)
            judgment = await self.engine.analyze(token, posts)
        except TransientDataError as exc:
            self.log.warning(f"{token}: market judgment unavailable this cycle: {exc}")
            return None
        self._judgments[token] = {"judgment": judgment, "posts": len(posts), "at": self._clock()}
        return judgment

    async def spawn_agent_for_token(self, token: str) -> SpawnOutcome:
        token = str(token).upper()
        # Serialize attempts per token so the agent cap holds across the awaits below.
        async with self._lock_for(token):
            return await self._spawn_locked(token)

    async def _spawn_locked(self, token: str) -> SpawnOutcome:
        cfg = self.config
        judgment = await self._judgment_for(token)
        if judgment is None:
            return self._reject(token, "market judgment unavailable")

        if abs(judgment.sentiment) < cfg.min_sentiment:
            return self._reject(
                token, f"sentiment {judgment.sentiment:.2f} below {cfg.min_sentiment:.2f}", judgment=judgment
            )
        if judgment.confidence < cfg.min_confidence:
            return self._reject(
                token, f"confidence {judgment.confidence:.2f} below {cfg.min_confidence:.2f}", judgment=judgment
            )

        active = self.registry.count(token)
        if active >= cfg.max_agents_per_token:
            return self._reject(token, f"max agents reached ({active}/{cfg.max_agents_per_token})", judgment=judgment)

        evaluation = self.judge.evaluate(token, judgment, (cfg.min_capital, cfg.max_capital))
        if not evaluation.should_spawn or evaluation.recommended_config is None:
            return self._reject(token, "judge rejected: " + "; ".join(evaluation.reasons), judgment=judgment)

        if judgment.sentiment > 0:
            direction = "buy"
        elif judgment.sentiment < 0:
            direction = "sell"
        else:
            return self._reject(token, "neutral sentiment", judgment=judgment)

        rec = evaluation.recommended_config
        capital = Decimal(str(round(rec.capital, CAPITAL_DECIMALS)))
        strategy = strategy_template(judgment.sentiment)
        self.log.info(
            f"{token}: executing {direction} capital={capital} strategy={strategy} "
            f"reasons={list(judgment.reasoning)}"
        )
        try:
            result = await self.executor.execute(token, direction, capital)
        except ExecutionError as exc:
            self.log.warning(f"{token}: trade execution failed: {exc}")
            return self._reject(token, f"execution failed: {exc}", judgment=judgment)

        trade = Trade(
            timestamp=self._clock(),
            token=token,
            direction=direction,
            amount=result.amount,
            price=result.price,
            tx_ref=result.handle.reference,
            status="completed",
        )
        self.record_trade(trade, token_ref=result.token_address, strategy=strategy, current_price=result.price)

        agent_config = AgentConfig(
            capital=capital,
            target_pool=result.token_address,
            max_slippage=rec.max_slippage,
        )
        try:
            agent = await self.factory.spawn(token, agent_config, strategy=strategy)
        except AgentSpawnError as exc:
            self.log.error(f"{token}: trade {trade.tx_ref} completed but agent spawn failed: {exc}")
            return SpawnOutcome(token=token, spawned=False, reason=f"agent spawn failed: {exc}",
                                judgment=judgment, trade=trade)

        self.registry.add(agent)
        self.supervisor.monitor_agent(agent, self.health_config)
        self.log.info(
            f"{token}: spawned agent {agent.id} sentiment={judgment.sentiment:.2f} "
            f"condition={judgment.condition} strategy={strategy} tx={trade.tx_ref}"
        )
        return SpawnOutcome(token=token, spawned=True, reason="spawned", agent_id=agent.id,
                            judgment=judgment, trade=trade)

    def record_trade(
        self,
        trade: Trade,
        *,
        token_ref: str = "",
        strategy: Optional[str] = None,
        current_price: Optional[Decimal] = None,
    ) -> None:
        """Ledger + position update, plus health metrics when the trade belongs to a supervised agent."""
        self.tracker.record(trade, token_ref=token_ref, strategy=strategy, current_price=current_price)
        if trade.agent_id and trade.status != "pending":
            self.supervisor.record_trade(trade.agent_id, trade.status == "completed", trade.volume)

    async def check_and_spawn_agents(self) -> List[SpawnOutcome]:
        outcomes: List[SpawnOutcome] = []
        for token in self.config.monitored_tokens:
            try:
                outcomes.append(await self.spawn_agent_for_token(token))
            except Exception as exc:
                self.log.error(f"Error checking token {token}: {exc}")
                outcomes.append(SpawnOutcome(token=str(token).upper(), spawned=False, reason=f"error: {exc}"))
        self.last_tick = self._clock()
        spawned = sum(1 for o in outcomes if o.spawned)
        self.log.info(f"Spawn tick complete tokens={len(outcomes)} spawned={spawned} active={len(self.registry)}")
        return outcomes

    async def run(self, stop_event: asyncio.Event) -> None:
        self.log.info(f"Spawner loop started interval={self.config.monitor_interval:g}s")
        while not stop_event.is_set():
            try:
                await self.check_and_spawn_agents()
            except Exception as exc:
                self.log.error(f"Error in monitoring interval: {exc}")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.config.monitor_interval)
            except asyncio.TimeoutError:
                pass
        self.log.info("Spawner loop stopped")

    # ------------------------------------------------------------ projections
    def get_status(self) -> Dict[str, Any]:
        now = self._clock()
        tokens: Dict[str, Any] = {}
        for token in self.config.monitored_tokens:
            token = str(token).upper()
            seen = self._judgments.get(token)
            judgment: Optional[MarketJudgment] = seen["judgment"] if seen else None
            tokens[token] = {
                "sentiment": judgment.sentiment if judgment else None,
                "confidence": judgment.confidence if judgment else None,
                "condition": judgment.condition if judgment else None,
                "last_analysis": seen["at"] if seen else None,
                "active_agents": self.registry.count(token),
            }
        return {
            "tokens": tokens,
            "total_agents": len(self.registry),
            "supervised_agents": len(self.supervisor),
            "last_tick": self.last_tick,
            "uptime_ms": now - self.started_at,
            "recent_terminations": self.supervisor.recent_terminations(self.config.termination_view),
        }

    async def get_active_positions(self) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for pos in self.tracker.positions():
            if pos.amount <= 0:
                continue
            price = await self.executor.quote(pos.token)
            self.tracker.refresh_price(pos.token, price)
            out.append(pos.to_dict())
        return out

    def get_active_agents(self) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for agent in self.registry.all():
            row = agent.to_dict()
            record = self.supervisor.get(agent.id)
            if record is not None:
                row["last_activity"] = record.last_activity
                row["metrics"] = record.metrics.to_dict()
            out.append(row)
        return out

    def get_trade_history(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        view = self.config.trade_history_view if limit is None else limit
        return [t.to_dict() for t in self.tracker.history(view)]

    async def get_token_balances(self, address: Optional[str] = None) -> Dict[str, Decimal]:
        return await self.executor.get_token_balances(address)
