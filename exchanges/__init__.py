"""Swap venue adapters and token router."""

from .base import (
    ApprovalError,
    ExecutionError,
    SwapVenue,
    TransactionHandle,
    WithdrawalError,
)
from .paper_adapter import PaperVenue
from .router import ExchangeRoutingError, RouterConfig, TokenRouter

__all__ = [
    "ApprovalError",
    "ExecutionError",
    "SwapVenue",
    "TransactionHandle",
    "WithdrawalError",
    "PaperVenue",
    "ExchangeRoutingError",
    "RouterConfig",
    "TokenRouter",
]
