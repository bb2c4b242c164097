#!/usr/bin/env python3
"""Agent model, factory and the owned active-agent registry."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from eth_account import Account

from exchanges.base import ExecutionError
from logging_utils import get_logger

STATUS_ACTIVE = "active"
STATUS_TERMINATED = "terminated"


class AgentSpawnError(RuntimeError):
    """Agent identity or funding could not be set up after a trade."""


def strategy_template(sentiment: float) -> str:
    if sentiment > 0.7:
        return "aggressive-long"
    if sentiment > 0.3:
        return "conservative-long"
    if sentiment < -0.7:
        return "aggressive-short"
    if sentiment < -0.3:
        return "conservative-short"
    return "neutral"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class AgentConfig:
    capital: Decimal
    target_pool: str
    max_slippage: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "capital": str(self.capital),
            "target_pool": self.target_pool,
            "max_slippage": self.max_slippage,
        }


@dataclass
class Agent:
    id: str
    token: str
    address: str
    config: AgentConfig
    deployed_at: int  # epoch ms
    status: str = STATUS_ACTIVE
    strategy: str = "neutral"
    account: Any = field(default=None, repr=False, compare=False)

    @property
    def active(self) -> bool:
        return self.status == STATUS_ACTIVE

    def terminate(self) -> bool:
        """Mark terminated. Returns False if it already was (one-way)."""
        if self.status == STATUS_TERMINATED:
            return False
        self.status = STATUS_TERMINATED
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "token": self.token,
            "address": self.address,
            "config": self.config.to_dict(),
            "deployed_at": self.deployed_at,
            "status": self.status,
            "strategy": self.strategy,
        }


class AgentRegistry:
    """Active agents grouped per token. Single owner of the active set."""

    def __init__(self) -> None:
        self._by_token: Dict[str, Dict[str, Agent]] = {}
        self._index: Dict[str, str] = {}

    def add(self, agent: Agent) -> None:
        self._by_token.setdefault(agent.token, {})[agent.id] = agent
        self._index[agent.id] = agent.token

    def remove(self, agent_id: str) -> Optional[Agent]:
        token = self._index.pop(agent_id, None)
        if token is None:
            return None
        agents = self._by_token.get(token, {})
        agent = agents.pop(agent_id, None)
        if not agents:
            self._by_token.pop(token, None)
        return agent

    def get(self, agent_id: str) -> Optional[Agent]:
        token = self._index.get(agent_id)
        if token is None:
            return None
        return self._by_token.get(token, {}).get(agent_id)

    def count(self, token: str) -> int:
        return len(self._by_token.get(token, {}))

    def for_token(self, token: str) -> List[Agent]:
        return list(self._by_token.get(token, {}).values())

    def all(self) -> List[Agent]:
        return [a for agents in self._by_token.values() for a in agents.values()]

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._index


class AgentFactory:
    """Creates agent identities and funds them from the treasury."""

    def __init__(self, executor: Any, clock: Optional[Callable[[], int]] = None):
        self.executor = executor
        self._clock = clock or _now_ms
        self.log = get_logger("agent_factory")

    def _new_id(self, token: str, now: int) -> str:
        return f"{token}-{now}-{secrets.token_hex(4)}"

    async def spawn(self, token: str, config: AgentConfig, strategy: str = "neutral") -> Agent:
        now = self._clock()
        account = Account.create()
        agent = Agent(
            id=self._new_id(token, now),
            token=token,
            address=account.address,
            config=config,
            deployed_at=now,
            strategy=strategy,
            account=account,
        )
        self.log.info(
            f"Spawning agent {agent.id} strategy={strategy} capital={config.capital} address={agent.address}"
        )
        try:
            await self.executor.fund_agent(agent.address, config.capital)
        except ExecutionError as exc:
            raise AgentSpawnError(f"Funding agent {agent.id} failed: {exc}") from exc
        return agent
