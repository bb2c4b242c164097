#!/usr/bin/env python3
"""Uniswap V3 venue adapter on Base.

web3 for contract calls + eth_account signer. web3's HTTP provider is
blocking, so every RPC round-trip runs in a worker thread via
asyncio.to_thread; treasury-signed transactions are serialized under one
asyncio.Lock to keep nonces monotonic.

Swaps go through SwapRouter02.multicall(deadline, [exactInputSingle]) so the
venue enforces the absolute deadline.
"""

from __future__ import annotations

import asyncio
import time
from decimal import Decimal, localcontext
from typing import Any, Dict, Optional

from web3 import Web3

from .base import SwapVenue, TransactionHandle

ROUTER_ADDRESS = "0x2626664c2603336E57B271c5C0b26F421741e481"
FACTORY_ADDRESS = "0x33128a8fC17869897dcE68Ed026d694621f6FDfD"
WETH_ADDRESS = "0x4200000000000000000000000000000000000006"
POOL_FEE = 3000  # 0.3%
GAS_LIMIT = 300_000
TRANSFER_GAS = 21_000
RECEIPT_GRACE_SEC = 60
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

ROUTER_ABI = [
    {
        "inputs": [
            {
                "components": [
                    {"name": "tokenIn", "type": "address"},
                    {"name": "tokenOut", "type": "address"},
                    {"name": "fee", "type": "uint24"},
                    {"name": "recipient", "type": "address"},
                    {"name": "amountIn", "type": "uint256"},
                    {"name": "amountOutMinimum", "type": "uint256"},
                    {"name": "sqrtPriceLimitX96", "type": "uint160"},
                ],
                "name": "params",
                "type": "tuple",
            }
        ],
        "name": "exactInputSingle",
        "outputs": [{"name": "amountOut", "type": "uint256"}],
        "stateMutability": "payable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "deadline", "type": "uint256"},
            {"name": "data", "type": "bytes[]"},
        ],
        "name": "multicall",
        "outputs": [{"name": "results", "type": "bytes[]"}],
        "stateMutability": "payable",
        "type": "function",
    },
]

ERC20_ABI = [
    {"inputs": [{"name": "owner", "type": "address"}, {"name": "spender", "type": "address"}],
     "name": "allowance", "outputs": [{"name": "", "type": "uint256"}],
     "stateMutability": "view", "type": "function"},
    {"inputs": [{"name": "spender", "type": "address"}, {"name": "amount", "type": "uint256"}],
     "name": "approve", "outputs": [{"name": "", "type": "bool"}],
     "stateMutability": "nonpayable", "type": "function"},
    {"inputs": [{"name": "account", "type": "address"}],
     "name": "balanceOf", "outputs": [{"name": "", "type": "uint256"}],
     "stateMutability": "view", "type": "function"},
    {"inputs": [], "name": "decimals", "outputs": [{"name": "", "type": "uint8"}],
     "stateMutability": "view", "type": "function"},
]

FACTORY_ABI = [
    {"inputs": [{"name": "tokenA", "type": "address"}, {"name": "tokenB", "type": "address"},
                {"name": "fee", "type": "uint24"}],
     "name": "getPool", "outputs": [{"name": "pool", "type": "address"}],
     "stateMutability": "view", "type": "function"},
]

POOL_ABI = [
    {"inputs": [], "name": "slot0",
     "outputs": [
         {"name": "sqrtPriceX96", "type": "uint160"},
         {"name": "tick", "type": "int24"},
         {"name": "observationIndex", "type": "uint16"},
         {"name": "observationCardinality", "type": "uint16"},
         {"name": "observationCardinalityNext", "type": "uint16"},
         {"name": "feeProtocol", "type": "uint8"},
         {"name": "unlocked", "type": "bool"},
     ],
     "stateMutability": "view", "type": "function"},
    {"inputs": [], "name": "token0", "outputs": [{"name": "", "type": "address"}],
     "stateMutability": "view", "type": "function"},
]


def price_from_sqrt_x96(
    sqrt_price_x96: int,
    *,
    token_is_token0: bool,
    token_decimals: int,
    native_decimals: int = 18,
) -> Decimal:
    """Price of the token in native units from a pool's sqrtPriceX96."""
    if sqrt_price_x96 <= 0:
        return Decimal(0)
    with localcontext() as ctx:
        ctx.prec = 60
        ratio = (Decimal(sqrt_price_x96) / Decimal(2 ** 96)) ** 2  # token1 per token0, raw units
        scale = Decimal(10) ** (token_decimals - native_decimals)
        price = ratio * scale if token_is_token0 else scale / ratio
    return +price


class UniswapV3Adapter(SwapVenue):
    """Adapter for Uniswap V3 SwapRouter02 + factory pools."""

    def __init__(
        self,
        log,
        *,
        rpc_url: str,
        account: Any,
        router_address: str = ROUTER_ADDRESS,
        factory_address: str = FACTORY_ADDRESS,
        native_token: str = WETH_ADDRESS,
        pool_fee: int = POOL_FEE,
        gas_limit: int = GAS_LIMIT,
        request_timeout: float = 10.0,
    ):
        super().__init__(log)
        self.rpc_url = rpc_url
        self.account = account
        self.pool_fee = int(pool_fee)
        self.gas_limit = int(gas_limit)
        self._w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout}))
        self._router_address = Web3.to_checksum_address(router_address)
        self._native_token = Web3.to_checksum_address(native_token)
        self._router = self._w3.eth.contract(address=self._router_address, abi=ROUTER_ABI)
        self._factory = self._w3.eth.contract(
            address=Web3.to_checksum_address(factory_address), abi=FACTORY_ABI
        )
        self._decimals_cache: Dict[str, int] = {}
        self._chain_id: Optional[int] = None
        self._tx_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return "UniswapV3"

    @property
    def native_token_address(self) -> str:
        return self._native_token

    @property
    def treasury_address(self) -> str:
        return self.account.address

    # ------------------------------------------------------------ init
    async def initialize(self) -> bool:
        def _connect() -> Optional[tuple]:
            if not self._w3.is_connected():
                return None
            return self._w3.eth.chain_id, self._w3.eth.get_balance(self.account.address)

        try:
            result = await asyncio.to_thread(_connect)
        except Exception as exc:
            self.log.error(f"Uniswap venue init failed rpc={self.rpc_url}: {exc}")
            return False
        if result is None:
            self.log.error(f"Uniswap venue unreachable rpc={self.rpc_url}")
            return False
        self._chain_id, balance = result
        self._initialized = True
        self.log.info(
            f"Initialized Uniswap V3 venue chain_id={self._chain_id} router={self._router_address} "
            f"wallet={self.account.address} balance={Web3.from_wei(balance, 'ether')}"
        )
        return True

    # ------------------------------------------------------------ helpers
    def _token(self, address: str):
        return self._w3.eth.contract(address=Web3.to_checksum_address(address), abi=ERC20_ABI)

    def _send(self, signer: Any, tx: Dict[str, Any], timeout: float) -> TransactionHandle:
        """Sign, submit and wait for the receipt (blocking)."""
        tx.setdefault("nonce", self._w3.eth.get_transaction_count(signer.address))
        tx.setdefault("gasPrice", self._w3.eth.gas_price)
        tx.setdefault("chainId", self._chain_id or self._w3.eth.chain_id)
        signed = signer.sign_transaction(tx)
        tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        ok = int(receipt.get("status", 0)) == 1
        return TransactionHandle(
            reference=Web3.to_hex(tx_hash),
            succeeded=ok,
            block_number=receipt.get("blockNumber"),
            error="" if ok else "transaction reverted",
        )

    def _swap_tx(self, token_in: str, token_out: str, amount_in: int, amount_out_minimum: int,
                 deadline: int, value: int) -> Dict[str, Any]:
        params = (
            Web3.to_checksum_address(token_in),
            Web3.to_checksum_address(token_out),
            self.pool_fee,
            self.account.address,
            int(amount_in),
            int(amount_out_minimum),
            0,
        )
        call = self._router.encode_abi("exactInputSingle", args=[params])
        return self._router.functions.multicall(int(deadline), [call]).build_transaction(
            {"from": self.account.address, "value": int(value), "gas": self.gas_limit}
        )

    async def _submit_swap(self, token_in: str, token_out: str, amount_in: int,
                           amount_out_minimum: int, deadline: int, value: int) -> TransactionHandle:
        # The venue enforces the deadline; waiting past it only observes the outcome.
        timeout = max(1.0, float(deadline) - time.time() + RECEIPT_GRACE_SEC)

        def _do() -> TransactionHandle:
            tx = self._swap_tx(token_in, token_out, amount_in, amount_out_minimum, deadline, value)
            return self._send(self.account, tx, timeout)

        async with self._tx_lock:
            handle = await asyncio.to_thread(_do)
        handle.amount_in = int(amount_in)
        handle.amount_out_minimum = int(amount_out_minimum)
        self.log.info(
            f"Swap submitted tokenIn={token_in} tokenOut={token_out} amountIn={amount_in} "
            f"minOut={amount_out_minimum} tx={handle.reference} ok={handle.succeeded}"
        )
        return handle

    # ------------------------------------------------------------ swaps
    async def swap_exact_native(self, token_out, amount_in, amount_out_minimum, deadline) -> TransactionHandle:
        return await self._submit_swap(
            self._native_token, token_out, amount_in, amount_out_minimum, deadline, value=amount_in
        )

    async def swap_exact_tokens(self, token_in, token_out, amount_in, amount_out_minimum, deadline) -> TransactionHandle:
        return await self._submit_swap(
            token_in, token_out, amount_in, amount_out_minimum, deadline, value=0
        )

    async def allowance(self, token: str) -> int:
        contract = self._token(token)
        return int(await asyncio.to_thread(
            contract.functions.allowance(self.account.address, self._router_address).call
        ))

    async def approve(self, token: str, amount: int) -> TransactionHandle:
        contract = self._token(token)

        def _do() -> TransactionHandle:
            tx = contract.functions.approve(self._router_address, int(amount)).build_transaction(
                {"from": self.account.address, "gas": 100_000}
            )
            return self._send(self.account, tx, timeout=120)

        async with self._tx_lock:
            handle = await asyncio.to_thread(_do)
        self.log.info(f"Approved token spending token={token} amount={amount} tx={handle.reference}")
        return handle

    # ------------------------------------------------------------ reads
    async def get_native_balance(self, address: str) -> int:
        return int(await asyncio.to_thread(
            self._w3.eth.get_balance, Web3.to_checksum_address(address)
        ))

    async def get_token_balance(self, token: str, address: str) -> int:
        contract = self._token(token)
        return int(await asyncio.to_thread(
            contract.functions.balanceOf(Web3.to_checksum_address(address)).call
        ))

    async def token_decimals(self, token: str) -> int:
        key = str(token).lower()
        if key in self._decimals_cache:
            return self._decimals_cache[key]
        contract = self._token(token)
        decimals = int(await asyncio.to_thread(contract.functions.decimals().call))
        self._decimals_cache[key] = decimals
        return decimals

    async def get_pool_price(self, token: str) -> Decimal:
        token_cs = Web3.to_checksum_address(token)
        if token_cs == self._native_token:
            return Decimal(1)
        decimals = await self.token_decimals(token_cs)

        def _read() -> tuple:
            pool_addr = self._factory.functions.getPool(token_cs, self._native_token, self.pool_fee).call()
            if not pool_addr or pool_addr == ZERO_ADDRESS:
                raise RuntimeError(f"no pool for {token_cs} fee={self.pool_fee}")
            pool = self._w3.eth.contract(address=pool_addr, abi=POOL_ABI)
            slot0 = pool.functions.slot0().call()
            token0 = pool.functions.token0().call()
            return int(slot0[0]), Web3.to_checksum_address(token0) == token_cs

        sqrt_price, is_token0 = await asyncio.to_thread(_read)
        return price_from_sqrt_x96(sqrt_price, token_is_token0=is_token0, token_decimals=decimals)

    # ------------------------------------------------------------ transfers
    async def transfer_native(self, sender: Any, to: str, amount: int) -> TransactionHandle:
        signer = sender or self.account

        def _do() -> TransactionHandle:
            gas_price = self._w3.eth.gas_price
            value = int(amount)
            if signer is not self.account:
                # Agent sweeps pay their own gas out of the swept balance.
                value = max(0, value - gas_price * TRANSFER_GAS)
            tx = {
                "from": signer.address,
                "to": Web3.to_checksum_address(to),
                "value": value,
                "gas": TRANSFER_GAS,
                "gasPrice": gas_price,
            }
            handle = self._send(signer, tx, timeout=120)
            handle.amount_in = value
            return handle

        if signer is self.account:
            async with self._tx_lock:
                return await asyncio.to_thread(_do)
        return await asyncio.to_thread(_do)
