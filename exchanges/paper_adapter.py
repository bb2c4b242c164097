#!/usr/bin/env python3
"""In-memory paper venue used for dry-run mode.

Simulates a constant-price pool per token against the native asset. Every
token is treated as 18-decimal. Failure switches let callers exercise the
revert / approval / balance-read error paths without a chain.
"""

from __future__ import annotations

import itertools
from decimal import Decimal, ROUND_FLOOR
from typing import Any, Dict, Optional, Tuple

from .base import SwapVenue, TransactionHandle

PAPER_TREASURY = "0x000000000000000000000000000000000000dEaD"
PAPER_WETH = "0x4200000000000000000000000000000000000006"
WEI = 10 ** 18


def _key(address: str) -> str:
    return str(address or "").lower()


class PaperVenue(SwapVenue):
    """Dry-run venue with in-memory balances, allowances and prices."""

    def __init__(
        self,
        log,
        *,
        starting_balance_wei: int = 10 * WEI,
        prices: Optional[Dict[str, Decimal]] = None,
        treasury: str = PAPER_TREASURY,
        native_token: str = PAPER_WETH,
    ):
        super().__init__(log)
        self._treasury = treasury
        self._native_token = native_token
        self._native: Dict[str, int] = {_key(treasury): int(starting_balance_wei)}
        self._tokens: Dict[Tuple[str, str], int] = {}
        self._allowances: Dict[str, int] = {}
        self._prices: Dict[str, Decimal] = {_key(native_token): Decimal(1)}
        for token, price in (prices or {}).items():
            self._prices[_key(token)] = Decimal(str(price))
        self._seq = itertools.count(1)

        # Failure switches
        self.revert_swaps = False
        self.fail_approvals = False
        self.fail_balance_reads = False
        self.fail_price_reads = False
        self.fail_transfers = False

        self.approvals: list = []
        self.swaps: list = []

    @property
    def name(self) -> str:
        return "Paper"

    @property
    def native_token_address(self) -> str:
        return self._native_token

    @property
    def treasury_address(self) -> str:
        return self._treasury

    async def initialize(self) -> bool:
        self._initialized = True
        self.log.info(f"Paper venue ready treasury={self._treasury}")
        return True

    # ------------------------------------------------------------ helpers
    def _next_ref(self) -> str:
        return f"paper-{next(self._seq):08d}"

    def set_price(self, token: str, price: Decimal) -> None:
        self._prices[_key(token)] = Decimal(str(price))

    def set_native_balance(self, address: str, amount_wei: int) -> None:
        self._native[_key(address)] = int(amount_wei)

    def set_token_balance(self, token: str, address: str, amount: int) -> None:
        self._tokens[(_key(token), _key(address))] = int(amount)

    def _price(self, token: str) -> Decimal:
        price = self._prices.get(_key(token))
        if price is None or price <= 0:
            raise RuntimeError(f"no paper pool for {token}")
        return price

    def _convert(self, token_in: str, token_out: str, amount_in: int) -> int:
        value_native = Decimal(amount_in) * self._price(token_in)
        out = value_native / self._price(token_out)
        return int(out.to_integral_value(rounding=ROUND_FLOOR))

    def _debit(self, token: str, address: str, amount: int) -> bool:
        if _key(token) == _key(self._native_token):
            bal = self._native.get(_key(address), 0)
            if bal < amount:
                return False
            self._native[_key(address)] = bal - amount
            return True
        k = (_key(token), _key(address))
        bal = self._tokens.get(k, 0)
        if bal < amount:
            return False
        self._tokens[k] = bal - amount
        return True

    def _credit(self, token: str, address: str, amount: int) -> None:
        if _key(token) == _key(self._native_token):
            self._native[_key(address)] = self._native.get(_key(address), 0) + amount
            return
        k = (_key(token), _key(address))
        self._tokens[k] = self._tokens.get(k, 0) + amount

    def _swap(self, token_in: str, token_out: str, amount_in: int, amount_out_minimum: int) -> TransactionHandle:
        ref = self._next_ref()
        self.swaps.append((token_in, token_out, amount_in, amount_out_minimum))
        if self.revert_swaps:
            return TransactionHandle(ref, False, amount_in=amount_in,
                                     amount_out_minimum=amount_out_minimum, error="reverted")
        try:
            amount_out = self._convert(token_in, token_out, amount_in)
        except RuntimeError as exc:
            return TransactionHandle(ref, False, amount_in=amount_in,
                                     amount_out_minimum=amount_out_minimum, error=str(exc))
        if amount_out < amount_out_minimum:
            return TransactionHandle(ref, False, amount_in=amount_in,
                                     amount_out_minimum=amount_out_minimum, error="Too little received")
        if not self._debit(token_in, self._treasury, amount_in):
            return TransactionHandle(ref, False, amount_in=amount_in,
                                     amount_out_minimum=amount_out_minimum, error="insufficient funds")
        self._credit(token_out, self._treasury, amount_out)
        return TransactionHandle(ref, True, amount_in=amount_in,
                                 amount_out_minimum=amount_out_minimum, amount_out=amount_out)

    # ------------------------------------------------------------ swaps
    async def swap_exact_native(self, token_out, amount_in, amount_out_minimum, deadline) -> TransactionHandle:
        return self._swap(self._native_token, token_out, amount_in, amount_out_minimum)

    async def swap_exact_tokens(self, token_in, token_out, amount_in, amount_out_minimum, deadline) -> TransactionHandle:
        allowed = self._allowances.get(_key(token_in), 0)
        if allowed < amount_in:
            return TransactionHandle(self._next_ref(), False, amount_in=amount_in,
                                     amount_out_minimum=amount_out_minimum, error="insufficient allowance")
        handle = self._swap(token_in, token_out, amount_in, amount_out_minimum)
        if handle.succeeded:
            self._allowances[_key(token_in)] = allowed - amount_in
        return handle

    async def allowance(self, token: str) -> int:
        return self._allowances.get(_key(token), 0)

    async def approve(self, token: str, amount: int) -> TransactionHandle:
        ref = self._next_ref()
        self.approvals.append((token, amount))
        if self.fail_approvals:
            return TransactionHandle(ref, False, error="approval reverted")
        self._allowances[_key(token)] = int(amount)
        return TransactionHandle(ref, True)

    # ------------------------------------------------------------ reads
    async def get_native_balance(self, address: str) -> int:
        if self.fail_balance_reads:
            raise ConnectionError("paper balance read disabled")
        return self._native.get(_key(address), 0)

    async def get_token_balance(self, token: str, address: str) -> int:
        if self.fail_balance_reads:
            raise ConnectionError("paper balance read disabled")
        return self._tokens.get((_key(token), _key(address)), 0)

    async def token_decimals(self, token: str) -> int:
        return 18

    async def get_pool_price(self, token: str) -> Decimal:
        if self.fail_price_reads:
            raise ConnectionError("paper price read disabled")
        return self._price(token)

    # ------------------------------------------------------------ transfers
    async def transfer_native(self, sender: Any, to: str, amount: int) -> TransactionHandle:
        ref = self._next_ref()
        if self.fail_transfers:
            return TransactionHandle(ref, False, amount_in=amount, error="transfer reverted")
        source = self._treasury if sender is None else getattr(sender, "address", str(sender))
        if not self._debit(self._native_token, source, amount):
            return TransactionHandle(ref, False, amount_in=amount, error="insufficient funds")
        self._credit(self._native_token, to, amount)
        return TransactionHandle(ref, True, amount_in=amount)
