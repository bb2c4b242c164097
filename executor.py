#!/usr/bin/env python3
"""
Trade executor for autospawn.

Handles:
- Buy/sell swaps against the configured venue (Uniswap V3 live, paper in dry-run)
- Allowance check + approval before token-to-token swaps
- amountOutMinimum from the slippage tolerance
- Price, native balance and token balance reads
- Agent funding from the treasury and withdrawal back to it

Amounts crossing this module's public API are Decimals in human units; the
venue layer below works in integer base units.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_FLOOR
from typing import Any, Callable, Dict, Optional

from exchanges.base import (
    ApprovalError,
    ExecutionError,
    SwapVenue,
    TransactionHandle,
    WithdrawalError,
)
from exchanges.paper_adapter import PaperVenue
from exchanges.router import RouterConfig, TokenRouter
from logging_utils import get_logger

DEFAULT_SLIPPAGE = 0.005
DEFAULT_DEADLINE_SEC = 20 * 60


def min_amount_out(amount_in: int, slippage: float) -> int:
    """floor(amount_in * (1 - slippage)) in integer base units."""
    if not 0.0 <= float(slippage) <= 1.0:
        raise ValueError(f"slippage must be within [0, 1], got {slippage}")
    value = Decimal(int(amount_in)) * (Decimal(1) - Decimal(str(slippage)))
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def to_base_units(amount: Decimal, decimals: int) -> int:
    scaled = Decimal(str(amount)) * (Decimal(10) ** int(decimals))
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


def from_base_units(amount: int, decimals: int) -> Decimal:
    return Decimal(int(amount)) / (Decimal(10) ** int(decimals))


def _same(a: str, b: str) -> bool:
    return str(a or "").lower() == str(b or "").lower()


@dataclass
class ExecutionConfig:
    """Configuration for executor."""
    dry_run: bool = True
    rpc_url: str = "https://mainnet.base.org"
    base_asset: str = "ETH"
    quote_asset: str = "USDC"
    tokens: Dict[str, str] = field(default_factory=dict)
    router_address: str = "0x2626664c2603336E57B271c5C0b26F421741e481"
    factory_address: str = "0x33128a8fC17869897dcE68Ed026d694621f6FDfD"
    pool_fee: int = 3000
    gas_limit: int = 300_000
    slippage: float = DEFAULT_SLIPPAGE
    deadline_sec: int = DEFAULT_DEADLINE_SEC
    # Paper venue seed (dry-run only)
    paper_starting_balance: float = 10.0
    paper_prices: Dict[str, float] = field(default_factory=dict)
    paper_token_balances: Dict[str, float] = field(default_factory=dict)


@dataclass
class ExecutionResult:
    """Outcome of a completed spawn-sized swap."""
    handle: TransactionHandle
    token: str
    token_address: str
    direction: str
    amount: Decimal  # token quantity moved
    price: Decimal  # base-asset units per token
    capital: Decimal  # base-asset value of the trade


class Executor:
    """Executes swaps and balance operations against one venue."""

    def __init__(
        self,
        config: Optional[ExecutionConfig] = None,
        *,
        venue: Optional[SwapVenue] = None,
        account: Any = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = config or ExecutionConfig()
        self.log = get_logger("executor")
        self._clock = clock or time.time
        self.router = TokenRouter(
            RouterConfig(
                base_asset=self.config.base_asset,
                quote_asset=self.config.quote_asset,
                tokens=self.config.tokens,
            ),
            log=self.log,
        )
        self.account = account
        self.venue = venue or self._build_venue()
        self._initialized = False

    def _build_venue(self) -> SwapVenue:
        if self.config.dry_run:
            prices = {}
            for symbol, price in (self.config.paper_prices or {}).items():
                address = self.router.address_for(symbol)
                if address:
                    prices[address] = Decimal(str(price))
            venue = PaperVenue(
                self.log,
                starting_balance_wei=to_base_units(Decimal(str(self.config.paper_starting_balance)), 18),
                prices=prices,
                native_token=self.router.address_for("ETH") or "0x4200000000000000000000000000000000000006",
            )
            for symbol, amount in (self.config.paper_token_balances or {}).items():
                address = self.router.address_for(symbol)
                if address and not _same(address, venue.native_token_address):
                    venue.set_token_balance(address, venue.treasury_address, to_base_units(Decimal(str(amount)), 18))
            return venue
        if self.account is None:
            raise RuntimeError("Live execution requires a signer (MNEMONIC or AUTOSPAWN_PRIVATE_KEY)")
        from exchanges.uniswap_adapter import UniswapV3Adapter

        return UniswapV3Adapter(
            self.log,
            rpc_url=self.config.rpc_url,
            account=self.account,
            router_address=self.config.router_address,
            factory_address=self.config.factory_address,
            native_token=self.router.address_for("ETH") or "0x4200000000000000000000000000000000000006",
            pool_fee=self.config.pool_fee,
            gas_limit=self.config.gas_limit,
        )

    @classmethod
    async def create(
        cls,
        config: Optional[ExecutionConfig] = None,
        *,
        venue: Optional[SwapVenue] = None,
        account: Any = None,
    ) -> "Executor":
        """Construct and initialize an executor in one call."""
        instance = cls(config, venue=venue, account=account)
        ok = await instance.initialize()
        if not ok:
            raise RuntimeError("Executor initialization failed")
        return instance

    async def initialize(self) -> bool:
        self.log.info(
            f"Initializing executor venue={self.venue.name} dry_run={self.config.dry_run} "
            f"base_asset={self.config.base_asset} tokens={sorted(self.router.symbols())}"
        )
        ok = await self.venue.initialize()
        if not ok:
            self.log.error(f"Venue {self.venue.name} failed to initialize")
            return False
        self._initialized = True
        return True

    async def close(self) -> None:
        await self.venue.close()

    @property
    def treasury_address(self) -> str:
        return self.venue.treasury_address

    def default_deadline(self) -> int:
        return int(self._clock()) + int(self.config.deadline_sec)

    # ------------------------------------------------------------------ swap
    async def _expected_out(self, token_in: str, token_out: str, amount_in_wei: int,
                            dec_in: int, dec_out: int) -> int:
        """amount_in expressed in token_out base units at current pool prices.

        Raises ExecutionError when either price is unavailable.
        """
        price_in = await self.get_price(token_in)
        price_out = await self.get_price(token_out)
        if price_in <= 0 or price_out <= 0:
            raise ExecutionError(f"No price available to bound {token_in} -> {token_out} output")
        human_in = from_base_units(amount_in_wei, dec_in)
        return to_base_units(human_in * price_in / price_out, dec_out)

    async def swap(
        self,
        direction: str,
        token_in: str,
        token_out: str,
        amount_in: Decimal,
        slippage: Optional[float] = None,
        deadline: Optional[int] = None,
    ) -> TransactionHandle:
        """Swap exactly *amount_in* of token_in for token_out.

        Raises ExecutionError (ApprovalError for a failed approval) on a missing
        venue address, insufficient funds, an expired deadline, a missing price
        quote, or a revert.
        """
        if not token_in or not token_out:
            raise ExecutionError(f"No venue address configured for {direction} swap")
        slippage = self.config.slippage if slippage is None else float(slippage)
        deadline = self.default_deadline() if deadline is None else int(deadline)
        if deadline <= int(self._clock()):
            raise ExecutionError(f"Swap deadline {deadline} already passed")
        amount_in = Decimal(str(amount_in))
        if amount_in <= 0:
            raise ExecutionError(f"Swap amount must be positive, got {amount_in}")

        venue = self.venue
        native = _same(token_in, venue.native_token_address)
        try:
            dec_in = await venue.token_decimals(token_in)
            dec_out = await venue.token_decimals(token_out)
            amount_in_wei = to_base_units(amount_in, dec_in)
            if native:
                available = await venue.get_native_balance(venue.treasury_address)
            else:
                available = await venue.get_token_balance(token_in, venue.treasury_address)
        except Exception as exc:
            raise ExecutionError(f"Venue read failed before {direction} swap: {exc}") from exc
        if available < amount_in_wei:
            raise ExecutionError(
                f"Insufficient funds for {direction}: have {available}, need {amount_in_wei} of {token_in}"
            )

        expected = await self._expected_out(token_in, token_out, amount_in_wei, dec_in, dec_out)
        amount_out_min = min_amount_out(expected, slippage)

        try:
            if native:
                handle = await venue.swap_exact_native(token_out, amount_in_wei, amount_out_min, deadline)
            else:
                allowed = await venue.allowance(token_in)
                if allowed < amount_in_wei:
                    self.log.info(f"Allowance {allowed} < {amount_in_wei} for {token_in}; approving")
                    approval = await venue.approve(token_in, amount_in_wei)
                    if not approval.succeeded:
                        raise ApprovalError(
                            f"Approval of {token_in} failed: {approval.error or approval.reference}"
                        )
                handle = await venue.swap_exact_tokens(
                    token_in, token_out, amount_in_wei, amount_out_min, deadline
                )
        except ExecutionError:
            raise
        except Exception as exc:
            raise ExecutionError(f"{direction} swap submission failed: {exc}") from exc

        if not handle.succeeded:
            raise ExecutionError(f"{direction} swap reverted tx={handle.reference}: {handle.error}")
        self.log.info(
            f"Swap {direction} ok tx={handle.reference} amountIn={amount_in_wei} minOut={amount_out_min} "
            f"amountOut={handle.amount_out}"
        )
        return handle

    async def execute(self, symbol: str, direction: str, capital: Decimal) -> ExecutionResult:
        """Buy or sell *symbol* worth *capital* base-asset units.

        buy: spend the counter asset worth capital on the token.
        sell: sell the token quantity currently worth capital.

        The counter asset is the base asset, except for the base asset itself,
        which trades against the configured quote asset.
        """
        token_in, token_out = self.router.pair_for(symbol, direction)
        capital = Decimal(str(capital))
        token_address = token_out if direction == "buy" else token_in
        quote = await self.quote(symbol)

        if direction == "buy":
            counter = self.router.counter_asset(symbol)
            counter_quote = await self.quote(counter)
            if counter_quote <= 0:
                raise ExecutionError(f"No price available to size {symbol} buy with {counter}")
            amount_in = capital / counter_quote
        else:
            if quote <= 0:
                raise ExecutionError(f"No price available to size {symbol} sell")
            amount_in = capital / quote

        handle = await self.swap(direction, token_in, token_out, amount_in)

        if direction == "buy":
            if handle.amount_out is not None:
                dec_out = await self.venue.token_decimals(token_out)
                amount = from_base_units(handle.amount_out, dec_out)
            elif quote > 0:
                amount = capital / quote
            else:
                amount = Decimal(0)
            price = capital / amount if amount > 0 else quote
        else:
            amount = amount_in
            price = quote

        return ExecutionResult(
            handle=handle,
            token=str(symbol).upper(),
            token_address=token_address,
            direction=direction,
            amount=amount,
            price=price,
            capital=capital,
        )

    # ------------------------------------------------------------------ reads
    async def get_price(self, token_address: str) -> Decimal:
        """Pool price of a token in native units; Decimal(0) when the read fails."""
        try:
            return Decimal(await self.venue.get_pool_price(token_address))
        except Exception as exc:
            self.log.warning(f"Price read failed for {token_address}: {exc}")
            return Decimal(0)

    async def quote(self, symbol: str) -> Decimal:
        """Price of *symbol* in base-asset units; Decimal(0) when unavailable."""
        address = self.router.address_for(symbol)
        base = self.router.address_for(self.config.base_asset)
        if not address or not base:
            return Decimal(0)
        price = await self.get_price(address)
        base_price = await self.get_price(base)
        if price <= 0 or base_price <= 0:
            return Decimal(0)
        return price / base_price

    async def get_balance(self, address: Optional[str] = None) -> Decimal:
        """Native balance in whole units. Read failures propagate."""
        wei = await self.venue.get_native_balance(address or self.treasury_address)
        return from_base_units(wei, 18)

    async def get_token_balances(self, address: Optional[str] = None) -> Dict[str, Decimal]:
        owner = address or self.treasury_address
        balances: Dict[str, Decimal] = {}
        for symbol, token in sorted(self.router.symbols().items()):
            try:
                if _same(token, self.venue.native_token_address):
                    raw = await self.venue.get_native_balance(owner)
                    balances[symbol] = from_base_units(raw, 18)
                    continue
                raw = await self.venue.get_token_balance(token, owner)
                decimals = await self.venue.token_decimals(token)
                balances[symbol] = from_base_units(raw, decimals)
            except Exception as exc:
                self.log.warning(f"Balance read failed for {symbol} owner={owner}: {exc}")
        return balances

    # ------------------------------------------------------------------ agent funds
    async def fund_agent(self, address: str, amount: Decimal) -> TransactionHandle:
        wei = to_base_units(Decimal(str(amount)), 18)
        try:
            handle = await self.venue.transfer_native(None, address, wei)
        except Exception as exc:
            raise ExecutionError(f"Funding {address} failed: {exc}") from exc
        if not handle.succeeded:
            raise ExecutionError(f"Funding {address} reverted tx={handle.reference}: {handle.error}")
        self.log.info(f"Funded agent {address} with {amount} tx={handle.reference}")
        return handle

    async def withdraw_agent(self, account: Any) -> TransactionHandle:
        """Sweep an agent's native balance back to the treasury."""
        address = getattr(account, "address", None)
        if account is None or not address:
            raise WithdrawalError("Agent has no signer to withdraw with")
        try:
            balance = await self.venue.get_native_balance(address)
            if balance <= 0:
                return TransactionHandle(reference="", succeeded=True, amount_in=0, error="nothing to withdraw")
            handle = await self.venue.transfer_native(account, self.treasury_address, balance)
        except Exception as exc:
            raise WithdrawalError(f"Withdrawal from {address} failed: {exc}") from exc
        if not handle.succeeded:
            raise WithdrawalError(f"Withdrawal from {address} reverted tx={handle.reference}: {handle.error}")
        self.log.info(f"Withdrew {from_base_units(handle.amount_in, 18)} from {address} tx={handle.reference}")
        return handle


__all__ = [
    "DEFAULT_DEADLINE_SEC",
    "DEFAULT_SLIPPAGE",
    "ExecutionConfig",
    "ExecutionResult",
    "Executor",
    "from_base_units",
    "min_amount_out",
    "to_base_units",
]
