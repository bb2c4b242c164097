#!/usr/bin/env python3

import sys
from decimal import Decimal
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from exchanges.base import ExecutionError
from exchanges.router import ExchangeRoutingError, RouterConfig, TokenRouter
from exchanges.uniswap_adapter import price_from_sqrt_x96

WETH = "0x4200000000000000000000000000000000000006"
AERO = "0x940181a94A35A4569E4529A3CDfB74e38FD98631"


def _router(base: str = "ETH") -> TokenRouter:
    return TokenRouter(RouterConfig(base_asset=base, tokens={"eth": WETH, "AERO": AERO, "BTC": ""}))


def test_pair_for_buy_and_sell() -> None:
    router = _router()
    assert router.pair_for("aero", "buy") == (WETH, AERO)
    assert router.pair_for("AERO", "sell") == (AERO, WETH)


def test_unknown_token_and_base_asset_raise_execution_errors() -> None:
    router = _router()
    with pytest.raises(ExchangeRoutingError):
        router.pair_for("BTC", "buy")
    with pytest.raises(ExecutionError):
        router.pair_for("ETH", "buy")
    with pytest.raises(ExchangeRoutingError):
        router.pair_for("AERO", "hold")
    assert router.address_for("BTC") is None
    assert sorted(router.symbols()) == ["AERO", "ETH"]


def test_sqrt_price_conversion_handles_token_order_and_decimals() -> None:
    q96 = 2 ** 96
    assert price_from_sqrt_x96(q96, token_is_token0=True, token_decimals=18) == Decimal(1)
    assert price_from_sqrt_x96(2 * q96, token_is_token0=True, token_decimals=18) == Decimal(4)
    assert price_from_sqrt_x96(2 * q96, token_is_token0=False, token_decimals=18) == Decimal("0.25")
    # 6-decimal token0 priced in an 18-decimal native token1.
    assert price_from_sqrt_x96(q96, token_is_token0=True, token_decimals=6) == Decimal("1E-12")
    assert price_from_sqrt_x96(0, token_is_token0=True, token_decimals=18) == Decimal(0)


def test_base_asset_trades_against_quote_asset() -> None:
    usdc = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
    router = TokenRouter(RouterConfig(base_asset="ETH", quote_asset="usdc", tokens={"ETH": WETH, "USDC": usdc}))
    assert router.counter_asset("eth") == "USDC"
    assert router.counter_asset("USDC") == "ETH"
    assert router.pair_for("ETH", "buy") == (usdc, WETH)
    assert router.pair_for("ETH", "sell") == (WETH, usdc)

    no_quote = TokenRouter(RouterConfig(base_asset="ETH", quote_asset="ETH", tokens={"ETH": WETH}))
    with pytest.raises(ExchangeRoutingError, match="no quote asset"):
        no_quote.pair_for("ETH", "buy")
