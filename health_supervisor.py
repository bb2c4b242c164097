#!/usr/bin/env python3
"""
Agent health supervision and kill switch.

One scheduler serves every supervised agent: a heap keyed by next-due time
(epoch ms) with lazy deletion, drained by run_due_checks(). Each check
refreshes ROI from the agent's native balance, then trips on the first
failing condition in this order:

1. inactivity   (now - last_activity > max_inactivity hours)
2. ROI floor    (roi < min_roi)
3. loss ceiling (drawdown > max_loss)

Kill path: drop the agent from supervision and the active set, then try the
withdrawal (best-effort), then append the termination audit record. A second
kill for the same id is a no-op.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from agent_factory import Agent, AgentRegistry
from exchanges.base import WithdrawalError
from jsonl_io import append_jsonl, read_jsonl
from logging_utils import get_logger

MS_PER_HOUR = 3_600_000
IDLE_POLL_SEC = 1.0


class HealthCheckError(RuntimeError):
    """Balance/price read failed during a health tick."""


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class HealthConfig:
    max_loss: float = 20.0  # percent of initial capital
    max_inactivity: float = 24.0  # hours
    min_roi: float = -50.0  # percent
    check_interval: float = 60.0  # seconds


@dataclass
class TradeMetrics:
    successful: int = 0
    failed: int = 0
    total_volume: Decimal = Decimal(0)


@dataclass
class PerformanceMetrics:
    roi: float = 0.0
    drawdown: float = 0.0
    volatility: float = 0.0


@dataclass
class AgentMetrics:
    trades: TradeMetrics = field(default_factory=TradeMetrics)
    performance: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    last_update: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trades": {
                "successful": self.trades.successful,
                "failed": self.trades.failed,
                "total_volume": str(self.trades.total_volume),
            },
            "performance": {
                "roi": self.performance.roi,
                "drawdown": self.performance.drawdown,
                "volatility": self.performance.volatility,
            },
            "last_update": self.last_update,
        }


@dataclass
class HealthRecord:
    agent: Agent
    config: HealthConfig
    last_activity: int
    metrics: AgentMetrics = field(default_factory=AgentMetrics)


def evaluate_health(record: HealthRecord, now: int) -> Optional[str]:
    """Return the termination reason for the first failing condition, else None."""
    cfg = record.config
    perf = record.metrics.performance
    inactive_hours = (now - record.last_activity) / MS_PER_HOUR
    if inactive_hours > cfg.max_inactivity:
        return f"inactive for {inactive_hours:.2f} hours (max {cfg.max_inactivity:g})"
    if perf.roi < cfg.min_roi:
        return f"ROI below threshold ({perf.roi:.2f}% < {cfg.min_roi:g}%)"
    if perf.drawdown > cfg.max_loss:
        return f"loss exceeds threshold ({perf.drawdown:.2f}% > {cfg.max_loss:g}%)"
    return None


class HealthSupervisor:
    def __init__(
        self,
        executor: Any,
        registry: AgentRegistry,
        *,
        default_config: Optional[HealthConfig] = None,
        audit_path: Optional[str] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.executor = executor
        self.registry = registry
        self.default_config = default_config or HealthConfig()
        self.audit_path = audit_path
        self._clock = clock or _now_ms
        self.log = get_logger("health_supervisor")

        self._records: Dict[str, HealthRecord] = {}
        self._queue: List[Tuple[int, int, str]] = []
        self._next_due: Dict[str, int] = {}
        self._seq = itertools.count()
        self._wake = asyncio.Event()
        self.terminations: List[Dict[str, Any]] = []

    # ------------------------------------------------------------ registry
    def get(self, agent_id: str) -> Optional[HealthRecord]:
        return self._records.get(agent_id)

    def records(self) -> List[HealthRecord]:
        return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._records

    def next_due(self, agent_id: str) -> Optional[int]:
        return self._next_due.get(agent_id)

    def _schedule(self, agent_id: str, due: int) -> None:
        self._next_due[agent_id] = due
        heapq.heappush(self._queue, (due, next(self._seq), agent_id))
        self._wake.set()

    def _cancel(self, agent_id: str) -> bool:
        # Heap entry is dropped lazily when popped.
        return self._next_due.pop(agent_id, None) is not None

    def monitor_agent(self, agent: Agent, config: Optional[HealthConfig] = None) -> HealthRecord:
        now = self._clock()
        cfg = config or self.default_config
        record = HealthRecord(
            agent=agent,
            config=cfg,
            last_activity=now,
            metrics=AgentMetrics(last_update=now),
        )
        self._records[agent.id] = record
        self._schedule(agent.id, now + int(cfg.check_interval * 1000))
        self.log.info(
            f"Monitoring agent {agent.id} interval={cfg.check_interval:g}s max_loss={cfg.max_loss:g}% "
            f"max_inactivity={cfg.max_inactivity:g}h min_roi={cfg.min_roi:g}%"
        )
        return record

    def record_trade(self, agent_id: str, successful: bool, volume: Decimal) -> bool:
        """Update trade counters and mark the agent active. False if not supervised."""
        record = self._records.get(agent_id)
        if record is None:
            return False
        trades = record.metrics.trades
        if successful:
            trades.successful += 1
        else:
            trades.failed += 1
        trades.total_volume += Decimal(str(volume))
        record.last_activity = self._clock()
        return True

    # ------------------------------------------------------------ checks
    async def update_metrics(self, agent_id: str) -> Optional[HealthRecord]:
        """Recompute ROI/drawdown from the agent's current native balance.

        Raises HealthCheckError if the balance read fails. Returns None when the
        agent left supervision while the read was in flight.
        """
        record = self._records.get(agent_id)
        if record is None:
            return None
        agent = record.agent
        try:
            balance = await self.executor.get_balance(agent.address)
        except Exception as exc:
            raise HealthCheckError(f"balance read failed for {agent_id}: {exc}") from exc

        # Re-read: a kill may have run during the await.
        record = self._records.get(agent_id)
        if record is None:
            return None
        capital = Decimal(str(agent.config.capital))
        if capital <= 0:
            return record
        roi = float((Decimal(str(balance)) - capital) / capital * 100)
        perf = record.metrics.performance
        perf.roi = roi
        if roi < 0:
            perf.drawdown = abs(roi)
        record.metrics.last_update = self._clock()
        return record

    async def check_agent(self, agent_id: str) -> Optional[str]:
        """Run one health tick. Returns the kill reason when the agent was terminated."""
        try:
            record = await self.update_metrics(agent_id)
        except HealthCheckError as exc:
            self.log.error(f"Health check skipped for {agent_id}: {exc}")
            return None
        if record is None:
            return None

        now = self._clock()
        reason = evaluate_health(record, now)
        perf = record.metrics.performance
        self.log.info(
            f"Health check {agent_id}: healthy={reason is None} roi={perf.roi:.2f} "
            f"drawdown={perf.drawdown:.2f} idle_h={(now - record.last_activity) / MS_PER_HOUR:.2f}"
        )
        if reason is None:
            return None
        await self.kill_agent(agent_id, reason)
        return reason

    async def run_due_checks(self, now: Optional[int] = None) -> int:
        """Check every agent whose due time has passed. Returns checks run."""
        now = self._clock() if now is None else now
        due: List[str] = []
        while self._queue and self._queue[0][0] <= now:
            when, _, agent_id = heapq.heappop(self._queue)
            if self._next_due.get(agent_id) != when:
                continue
            del self._next_due[agent_id]
            due.append(agent_id)

        ran = 0
        for agent_id in due:
            if agent_id not in self._records:
                continue
            try:
                await self.check_agent(agent_id)
            except Exception as exc:
                self.log.error(f"Health check crashed for {agent_id}: {exc}")
            ran += 1
            record = self._records.get(agent_id)
            if record is not None and agent_id not in self._next_due:
                self._schedule(agent_id, self._clock() + int(record.config.check_interval * 1000))
        return ran

    # ------------------------------------------------------------ kill
    async def kill_agent(self, agent_id: str, reason: str) -> Optional[HealthRecord]:
        record = self._records.pop(agent_id, None)
        if record is None:
            return None
        agent = record.agent
        self._cancel(agent_id)
        self.registry.remove(agent_id)
        agent.terminate()
        self.log.info(f"Killing agent {agent_id} reason={reason} metrics={record.metrics.to_dict()}")

        withdrawal: Dict[str, Any] = {"succeeded": False}
        try:
            handle = await self.executor.withdraw_agent(agent.account)
            withdrawal = {"succeeded": True, "reference": handle.reference, "amount_wei": handle.amount_in}
        except WithdrawalError as exc:
            withdrawal = {"succeeded": False, "error": str(exc)}
            self.log.warning(f"Withdrawal failed for {agent_id}; funds may remain at {agent.address}: {exc}")

        terminated_at = self._clock()
        entry = {
            "agent_id": agent_id,
            "token": agent.token,
            "address": agent.address,
            "reason": reason,
            "deployed_at": agent.deployed_at,
            "terminated_at": terminated_at,
            "lifetime_ms": terminated_at - agent.deployed_at,
            "metrics": record.metrics.to_dict(),
            "withdrawal": withdrawal,
        }
        self.terminations.append(entry)
        if self.audit_path and not append_jsonl(self.audit_path, entry):
            self.log.error(f"Failed to write termination audit record to {self.audit_path}")
        self.log.info(f"Agent terminated {agent_id} lifetime_ms={entry['lifetime_ms']}")
        return record

    def recent_terminations(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Newest-last termination records, read from the audit log when one is configured."""
        if limit <= 0:
            return []
        rows = read_jsonl(self.audit_path) if self.audit_path else self.terminations
        return list(rows[-limit:])

    # ------------------------------------------------------------ loop
    def _seconds_until_next(self) -> float:
        while self._queue:
            when, _, agent_id = self._queue[0]
            if self._next_due.get(agent_id) == when:
                return max(0.0, (when - self._clock()) / 1000.0)
            heapq.heappop(self._queue)
        return IDLE_POLL_SEC

    async def run(self, stop_event: asyncio.Event) -> None:
        self.log.info("Health supervisor loop started")
        while not stop_event.is_set():
            try:
                await self.run_due_checks()
            except Exception as exc:
                self.log.error(f"Health supervisor pass failed: {exc}")
            self._wake.clear()
            delay = self._seconds_until_next()
            stop_task = asyncio.create_task(stop_event.wait())
            wake_task = asyncio.create_task(self._wake.wait())
            try:
                await asyncio.wait({stop_task, wake_task}, timeout=delay, return_when=asyncio.FIRST_COMPLETED)
            finally:
                stop_task.cancel()
                wake_task.cancel()
        self.log.info("Health supervisor loop stopped")
