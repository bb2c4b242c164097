#!/usr/bin/env python3

import asyncio
import sys
from decimal import Decimal
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from agent_factory import AgentRegistry
from agent_spawner import AgentSpawner, SpawnerConfig
from analysis_engine import AnalysisEngine, MarketJudgment
from exchanges.paper_adapter import WEI
from executor import ExecutionConfig, Executor
from health_supervisor import HealthSupervisor
from opportunity_judge import JudgeConfig, OpportunityEvaluator
from sentiment_source import CorpusSentimentSource, SentimentSource, TransientDataError
from trade_tracker import Trade

WETH = "0x4200000000000000000000000000000000000006"
USDC = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
AERO = "0x940181a94A35A4569E4529A3CDfB74e38FD98631"
T0 = 1_700_000_000_000


class _StubEngine:
    def __init__(self, judgments=None, default=(0.75, 0.9)):
        self.judgments = judgments or {}
        self.default = default
        self.calls = []

    async def analyze(self, symbol, posts):
        self.calls.append((symbol, len(posts)))
        sentiment, confidence = self.judgments.get(symbol, self.default)
        condition = "bullish" if sentiment > 0 else "bearish" if sentiment < 0 else "neutral"
        return MarketJudgment(sentiment=sentiment, confidence=confidence, condition=condition,
                              reasoning=("stub",))


class _FlakySource(SentimentSource):
    async def fetch(self, symbol):
        raise TransientDataError("search timed out")


def _build(engine=None, *, base="USDC", tokens=("ETH",), source=None, min_sentiment=0.3, max_agents=3):
    clock = lambda: T0
    executor = Executor(
        ExecutionConfig(
            dry_run=True,
            base_asset=base,
            tokens={"ETH": WETH, "USDC": USDC, "AERO": AERO},
            paper_starting_balance=10.0,
            paper_prices={"USDC": 0.0004, "AERO": 0.0002},
        ),
        clock=lambda: T0 / 1000,
    )
    assert asyncio.run(executor.initialize()) is True
    venue = executor.venue
    venue.set_token_balance(USDC, executor.treasury_address, 1000 * WEI)
    venue.set_token_balance(AERO, executor.treasury_address, 5000 * WEI)

    registry = AgentRegistry()
    supervisor = HealthSupervisor(executor, registry, clock=clock)
    spawner = AgentSpawner(
        SpawnerConfig(
            monitored_tokens=list(tokens),
            min_sentiment=min_sentiment,
            max_agents_per_token=max_agents,
        ),
        source=source or CorpusSentimentSource(clock=clock),
        engine=engine or _StubEngine(),
        judge=OpportunityEvaluator(JudgeConfig(min_sentiment=min_sentiment)),
        executor=executor,
        supervisor=supervisor,
        clock=clock,
    )
    return spawner


def test_bullish_token_spawns_funded_supervised_agent() -> None:
    spawner = _build()

    outcome = asyncio.run(spawner.spawn_agent_for_token("eth"))

    assert outcome.spawned is True
    assert outcome.token == "ETH"
    agent = spawner.registry.get(outcome.agent_id)
    assert agent.token == "ETH"
    assert agent.strategy == "aggressive-long"
    assert agent.config.capital == Decimal("0.7")
    assert str(agent.config.capital) == "0.7"
    assert agent.config.target_pool == WETH
    assert asyncio.run(spawner.executor.get_balance(agent.address)) == Decimal("0.7")

    record = spawner.supervisor.get(agent.id)
    assert record.metrics.trades.successful == 0
    assert spawner.supervisor.next_due(agent.id) == T0 + 60_000

    trades = spawner.get_trade_history()
    assert len(trades) == 1
    assert trades[0]["direction"] == "buy"
    assert trades[0]["status"] == "completed"
    # 0.7 USDC at 2500 USDC per ETH
    assert float(spawner.tracker.get_position("ETH").amount) == pytest.approx(0.00028)

    spawner.record_trade(
        Trade(timestamp=T0 + 1, token="ETH", direction="buy", amount=Decimal("0.0001"),
              price=Decimal(2500), tx_ref="agent-tx", agent_id=agent.id),
    )
    assert spawner.supervisor.get(agent.id).metrics.trades.successful == 1


def test_unknown_symbol_falls_back_to_neutral_and_is_rejected() -> None:
    spawner = _build(engine=AnalysisEngine(client=None), tokens=("XYZ",))

    outcome = asyncio.run(spawner.spawn_agent_for_token("XYZ"))

    assert outcome.spawned is False
    assert "sentiment" in outcome.reason
    assert outcome.judgment.condition == "neutral"
    assert outcome.judgment.confidence == 0.5
    assert spawner.get_trade_history() == []
    assert len(spawner.registry) == 0


def test_low_confidence_is_rejected_before_any_trade() -> None:
    spawner = _build(engine=_StubEngine(default=(0.8, 0.5)))
    outcome = asyncio.run(spawner.spawn_agent_for_token("ETH"))
    assert outcome.spawned is False
    assert "confidence" in outcome.reason
    assert spawner.executor.venue.swaps == []


def test_agent_cap_is_enforced_per_token() -> None:
    spawner = _build(tokens=("AERO",), base="ETH")
    for _ in range(3):
        assert asyncio.run(spawner.spawn_agent_for_token("AERO")).spawned is True
    swaps_before = len(spawner.executor.venue.swaps)

    fourth = asyncio.run(spawner.spawn_agent_for_token("AERO"))
    assert fourth.spawned is False
    assert "max agents reached" in fourth.reason
    assert len(spawner.executor.venue.swaps) == swaps_before
    assert spawner.registry.count("AERO") == 3


def test_concurrent_attempts_do_not_exceed_cap() -> None:
    spawner = _build(tokens=("AERO",), base="ETH", max_agents=2)

    async def _burst():
        return await asyncio.gather(*(spawner.spawn_agent_for_token("AERO") for _ in range(5)))

    outcomes = asyncio.run(_burst())
    assert sum(1 for o in outcomes if o.spawned) == 2
    assert spawner.registry.count("AERO") == 2


def test_zero_sentiment_never_trades_even_with_no_threshold() -> None:
    spawner = _build(engine=_StubEngine(default=(0.0, 0.95)), min_sentiment=0.0)
    outcome = asyncio.run(spawner.spawn_agent_for_token("ETH"))
    assert outcome.spawned is False
    assert outcome.reason == "neutral sentiment"
    assert spawner.executor.venue.swaps == []


def test_execution_failure_leaves_no_trade_or_agent() -> None:
    spawner = _build()
    spawner.executor.venue.revert_swaps = True

    outcome = asyncio.run(spawner.spawn_agent_for_token("ETH"))

    assert outcome.spawned is False
    assert outcome.reason.startswith("execution failed")
    assert spawner.get_trade_history() == []
    assert len(spawner.registry) == 0
    assert len(spawner.supervisor) == 0


def test_bearish_token_sells_and_spawns_short_agent() -> None:
    spawner = _build(base="ETH", tokens=("AERO",), engine=_StubEngine(default=(-0.8, 0.8)))

    outcome = asyncio.run(spawner.spawn_agent_for_token("AERO"))

    assert outcome.spawned is True
    assert outcome.trade.direction == "sell"
    agent = spawner.registry.get(outcome.agent_id)
    assert agent.strategy == "aggressive-short"
    assert agent.config.capital == Decimal("0.4")
    # Selling into an empty book leaves no open position.
    assert spawner.tracker.get_position("AERO").amount == Decimal(0)


def test_funding_failure_keeps_trade_but_spawns_nothing() -> None:
    spawner = _build()
    spawner.executor.venue.fail_transfers = True

    outcome = asyncio.run(spawner.spawn_agent_for_token("ETH"))

    assert outcome.spawned is False
    assert outcome.reason.startswith("agent spawn failed")
    assert outcome.trade is not None
    assert len(spawner.get_trade_history()) == 1
    assert len(spawner.registry) == 0


def test_transient_source_failure_skips_token_for_this_tick() -> None:
    spawner = _build(source=_FlakySource())
    outcome = asyncio.run(spawner.spawn_agent_for_token("ETH"))
    assert outcome.spawned is False
    assert outcome.reason == "market judgment unavailable"


def test_tick_contains_per_token_failures() -> None:
    spawner = _build(tokens=("BTC", "ETH"))

    outcomes = asyncio.run(spawner.check_and_spawn_agents())

    assert [o.token for o in outcomes] == ["BTC", "ETH"]
    assert outcomes[0].spawned is False
    assert "No venue address" in outcomes[0].reason
    assert outcomes[1].spawned is True
    assert spawner.last_tick == T0


def test_projections_reflect_spawned_state() -> None:
    spawner = _build(tokens=("ETH", "AERO"))
    asyncio.run(spawner.check_and_spawn_agents())

    status = spawner.get_status()
    assert status["total_agents"] == 2
    assert status["supervised_agents"] == 2
    assert status["tokens"]["ETH"]["active_agents"] == 1
    assert status["tokens"]["ETH"]["sentiment"] == 0.75
    assert status["uptime_ms"] == 0
    assert status["recent_terminations"] == []

    agents = spawner.get_active_agents()
    assert {a["token"] for a in agents} == {"ETH", "AERO"}
    assert all("metrics" in a for a in agents)

    positions = asyncio.run(spawner.get_active_positions())
    assert {p["token"] for p in positions} == {"ETH", "AERO"}

    assert len(spawner.get_trade_history(limit=1)) == 1
