#!/usr/bin/env python3
"""
Shared swap-venue interface, transaction handle and venue errors.

Provides abstract base class for DEX venue adapters with support for:
- Exact-input swaps paid with the native asset
- Exact-input token-to-token swaps
- ERC20 allowance reads and approvals
- Native / token balance reads and pool price reads
- Native transfers (agent funding and withdrawal)

All amounts at this layer are integer base units (wei); conversion to
human units happens in the executor.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional


class ExecutionError(RuntimeError):
    """Raised when a swap cannot be executed or reverts at the venue."""


class ApprovalError(ExecutionError):
    """Raised when the allowance approval preceding a swap fails."""


class WithdrawalError(RuntimeError):
    """Raised when agent funds cannot be moved back to the treasury."""


@dataclass
class TransactionHandle:
    """Result of a submitted venue transaction."""
    reference: str
    succeeded: bool
    block_number: Optional[int] = None
    amount_in: int = 0
    amount_out_minimum: int = 0
    amount_out: Optional[int] = None
    error: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reference": self.reference,
            "succeeded": self.succeeded,
            "block_number": self.block_number,
            "amount_in": self.amount_in,
            "amount_out_minimum": self.amount_out_minimum,
            "amount_out": self.amount_out,
            "error": self.error,
        }


class SwapVenue(abc.ABC):
    """Base class for swap venue adapters."""

    def __init__(self, log):
        self.log = log
        self._initialized = False

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @property
    @abc.abstractmethod
    def native_token_address(self) -> str:
        """Wrapped-native token address used as tokenIn for native swaps."""
        raise NotImplementedError

    @property
    @abc.abstractmethod
    def treasury_address(self) -> str:
        """Address of the signing treasury wallet."""
        raise NotImplementedError

    @abc.abstractmethod
    async def initialize(self) -> bool:
        """Connect to the venue. Returns False when the venue is unreachable."""
        raise NotImplementedError

    async def close(self) -> None:
        return None

    @abc.abstractmethod
    async def swap_exact_native(
        self,
        token_out: str,
        amount_in: int,
        amount_out_minimum: int,
        deadline: int,
    ) -> TransactionHandle:
        """Swap native asset for *token_out*. Returns the mined transaction handle."""
        raise NotImplementedError

    @abc.abstractmethod
    async def swap_exact_tokens(
        self,
        token_in: str,
        token_out: str,
        amount_in: int,
        amount_out_minimum: int,
        deadline: int,
    ) -> TransactionHandle:
        """Swap *token_in* for *token_out*. Caller is responsible for allowance."""
        raise NotImplementedError

    @abc.abstractmethod
    async def allowance(self, token: str) -> int:
        """Standing allowance granted by the treasury to the swap router."""
        raise NotImplementedError

    @abc.abstractmethod
    async def approve(self, token: str, amount: int) -> TransactionHandle:
        """Approve the swap router to spend *amount* of *token*."""
        raise NotImplementedError

    @abc.abstractmethod
    async def get_native_balance(self, address: str) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    async def get_token_balance(self, token: str, address: str) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    async def token_decimals(self, token: str) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    async def get_pool_price(self, token: str) -> Decimal:
        """Price of *token* in native units from current pool state. Raises on read failure."""
        raise NotImplementedError

    @abc.abstractmethod
    async def transfer_native(self, sender: Any, to: str, amount: int) -> TransactionHandle:
        """Send native asset. *sender* is a signer; None means the treasury."""
        raise NotImplementedError
