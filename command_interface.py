#!/usr/bin/env python3
"""Read-only operator commands over spawner / supervisor state."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional

from logging_utils import get_logger

HELP_TEXT = {
    "status": "Show overall system status",
    "positions": "List all active trading positions",
    "agents": "List all active monitoring agents",
    "trades": "Show recent trade history",
    "balance": "Show wallet balances",
    "help": "Show this help message",
}


def _response(message: str, data: Any = None, error: Optional[str] = None) -> Dict[str, Any]:
    out: Dict[str, Any] = {"message": message}
    if data is not None:
        out["data"] = data
    if error is not None:
        out["error"] = error
    return out


class CommandInterface:
    def __init__(self, spawner: Any):
        self.spawner = spawner
        self.log = get_logger("command_interface")
        self._handlers: Dict[str, Callable[[], Awaitable[Dict[str, Any]]]] = {
            "status": self._status,
            "positions": self._positions,
            "agents": self._agents,
            "trades": self._trades,
            "balance": self._balance,
            "help": self._help,
        }

    async def handle_command(self, command: str) -> Dict[str, Any]:
        parts = str(command or "").strip().lower().split()
        action = parts[0] if parts else ""
        handler = self._handlers.get(action)
        if handler is None:
            return _response(
                "Unknown command",
                error=f"Command '{action}' not recognized. Available: {', '.join(HELP_TEXT)}",
            )
        try:
            return await handler()
        except Exception as exc:
            self.log.error(f"Error handling command '{action}': {exc}")
            return _response("Error executing command", error=str(exc))

    async def _status(self) -> Dict[str, Any]:
        status = self.spawner.get_status()
        return _response("System Status", {
            "status": "active",
            "monitored_tokens": list(status["tokens"]),
            "tokens": status["tokens"],
            "active_agents": status["total_agents"],
            "last_tick": status["last_tick"],
            "uptime_ms": status["uptime_ms"],
            "recent_terminations": status["recent_terminations"],
        })

    async def _positions(self) -> Dict[str, Any]:
        return _response("Active Positions", await self.spawner.get_active_positions())

    async def _agents(self) -> Dict[str, Any]:
        return _response("Active Agents", self.spawner.get_active_agents())

    async def _trades(self) -> Dict[str, Any]:
        return _response("Recent Trades", self.spawner.get_trade_history())

    async def _balance(self) -> Dict[str, Any]:
        executor = self.spawner.executor
        address = executor.treasury_address
        native = await executor.get_balance(address)
        tokens = await self.spawner.get_token_balances(address)
        return _response("Wallet Balance", {
            "address": address,
            "eth": str(native),
            "tokens": {symbol: str(amount) for symbol, amount in tokens.items()},
        })

    async def _help(self) -> Dict[str, Any]:
        return _response("Available Commands", dict(HELP_TEXT))
