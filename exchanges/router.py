#!/usr/bin/env python3
"""Token router: symbol -> venue address resolution."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from .base import ExecutionError


class ExchangeRoutingError(ExecutionError):
    """Raised when routing cannot resolve a viable swap pair."""


@dataclass
class RouterConfig:
    base_asset: str = "ETH"
    # Counter side when the traded token is the base asset itself.
    quote_asset: str = "USDC"
    tokens: Dict[str, str] = field(default_factory=dict)


class TokenRouter:
    """Resolves monitored token symbols to venue addresses."""

    def __init__(self, config: RouterConfig, log=None) -> None:
        self.config = config
        self.log = log
        self.base_asset = str(config.base_asset or "").upper()
        self.quote_asset = str(config.quote_asset or "").upper()

        self._addresses: Dict[str, str] = {}
        for symbol, address in (config.tokens or {}).items():
            if not symbol or not address:
                continue
            self._addresses[str(symbol).upper()] = str(address)

    def address_for(self, symbol: str) -> Optional[str]:
        return self._addresses.get(str(symbol or "").upper())

    def symbols(self) -> Dict[str, str]:
        return dict(self._addresses)

    def resolve(self, symbol: str) -> str:
        """Return the venue address for *symbol* or raise ExchangeRoutingError."""
        address = self.address_for(symbol)
        if not address:
            raise ExchangeRoutingError(f"No venue address configured for {symbol}")
        return address

    def counter_asset(self, symbol: str) -> str:
        """Symbol *symbol* is swapped against: the base asset, or the quote asset for the base itself."""
        sym = str(symbol or "").upper()
        if sym != self.base_asset:
            return self.base_asset
        if not self.quote_asset or self.quote_asset == self.base_asset:
            raise ExchangeRoutingError(f"{sym} is the base asset and no quote asset is configured")
        return self.quote_asset

    def pair_for(self, symbol: str, direction: str) -> Tuple[str, str]:
        """Return (token_in, token_out) for a buy/sell of *symbol* against its counter asset.

        Raises ExchangeRoutingError if either side is unknown or the direction
        is neither buy nor sell.
        """
        sym = str(symbol or "").upper()
        token = self.resolve(sym)
        counter = self.resolve(self.counter_asset(sym))
        side = str(direction or "").lower()
        if side == "buy":
            return counter, token
        if side == "sell":
            return token, counter
        raise ExchangeRoutingError(f"Unknown trade direction '{direction}' for {sym}")
