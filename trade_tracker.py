#!/usr/bin/env python3
"""Trade ledger + per-token position book.

The ledger is append-only and bounded to the most recent N trades. Positions
are mutated only by record(): a buy raises the amount and moves the entry
price to the volume-weighted average; a sell lowers the amount and leaves the
entry price alone (realized PnL is not booked).
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Deque, Dict, List, Optional

from logging_utils import get_logger

DIRECTIONS = ("buy", "sell")
STATUSES = ("pending", "completed", "failed")


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Trade:
    timestamp: int  # epoch ms
    token: str
    direction: str
    amount: Decimal  # token quantity
    price: Decimal  # base-asset units per token
    tx_ref: str
    status: str = "completed"
    agent_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.direction not in DIRECTIONS:
            raise ValueError(f"unknown trade direction: {self.direction}")
        if self.status not in STATUSES:
            raise ValueError(f"unknown trade status: {self.status}")
        self.amount = Decimal(str(self.amount))
        self.price = Decimal(str(self.price))

    @property
    def volume(self) -> Decimal:
        return self.amount * self.price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "token": self.token,
            "direction": self.direction,
            "amount": str(self.amount),
            "price": str(self.price),
            "tx_ref": self.tx_ref,
            "status": self.status,
            "agent_id": self.agent_id,
        }


@dataclass
class Position:
    token: str
    token_ref: str
    amount: Decimal = Decimal(0)
    entry_price: Decimal = Decimal(0)
    current_price: Decimal = Decimal(0)
    pnl: Decimal = Decimal(0)
    strategy: str = "neutral"
    last_update: int = 0

    def mark(self, price: Decimal, now: int) -> None:
        self.current_price = Decimal(str(price))
        self.pnl = (self.current_price - self.entry_price) * self.amount
        self.last_update = now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "token_ref": self.token_ref,
            "amount": str(self.amount),
            "entry_price": str(self.entry_price),
            "current_price": str(self.current_price),
            "pnl": str(self.pnl),
            "strategy": self.strategy,
            "last_update": self.last_update,
        }


class TradeTracker:
    """Owns the bounded trade ledger and the position map."""

    def __init__(self, ledger_size: int = 100, clock: Optional[Callable[[], int]] = None):
        if ledger_size <= 0:
            raise ValueError(f"ledger_size must be positive, got {ledger_size}")
        self._ledger: Deque[Trade] = deque(maxlen=int(ledger_size))
        self._positions: Dict[str, Position] = {}
        self._clock = clock or _now_ms
        self.log = get_logger("trade_tracker")

    def record(
        self,
        trade: Trade,
        *,
        token_ref: str = "",
        strategy: Optional[str] = None,
        current_price: Optional[Decimal] = None,
    ) -> Optional[Position]:
        """Append *trade* to the ledger and apply it to the position book.

        Only completed trades move positions. No suspension happens here, so
        the ledger append and the position update land together.
        """
        self._ledger.append(trade)
        if trade.status != "completed":
            return None

        now = self._clock()
        pos = self._positions.get(trade.token)
        if pos is None:
            pos = Position(token=trade.token, token_ref=token_ref, strategy=strategy or "neutral")
            self._positions[trade.token] = pos
        if token_ref and not pos.token_ref:
            pos.token_ref = token_ref
        if strategy:
            pos.strategy = strategy

        if trade.direction == "buy":
            new_amount = pos.amount + trade.amount
            if new_amount > 0:
                pos.entry_price = (pos.amount * pos.entry_price + trade.amount * trade.price) / new_amount
            pos.amount = new_amount
        else:
            pos.amount = max(Decimal(0), pos.amount - trade.amount)

        mark = trade.price if current_price is None or current_price <= 0 else current_price
        pos.mark(mark, now)
        self.log.info(
            f"Recorded {trade.direction} {trade.token} amount={trade.amount} price={trade.price} "
            f"position={pos.amount} entry={pos.entry_price}"
        )
        return pos

    def refresh_price(self, token: str, price: Decimal) -> Optional[Position]:
        """Mark a position to *price*; a non-positive price (failed read) is ignored."""
        pos = self._positions.get(token)
        if pos is None or price is None or price <= 0:
            return pos
        pos.mark(price, self._clock())
        return pos

    def get_position(self, token: str) -> Optional[Position]:
        return self._positions.get(token)

    def positions(self) -> List[Position]:
        return list(self._positions.values())

    def history(self, limit: Optional[int] = None) -> List[Trade]:
        trades = list(self._ledger)
        if limit is not None and limit >= 0:
            trades = trades[-limit:] if limit else []
        return trades

    def __len__(self) -> int:
        return len(self._ledger)
