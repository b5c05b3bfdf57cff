"""
Liquidity Bridge

The sale seeds a (token, currency) pool once it succeeds and keeps the pool
shares in its own custody until the unlock date. The pool service itself is an
external collaborator; this module provides the two ways the sale can reach it:

- InMemoryLiquidityBridge: a constant-product pool kept in process. Deposits are
  pulled from the provider with transfer_from against allowances the provider
  granted beforehand, and shares are minted as sqrt(a * b) for the first
  deposit, proportionally afterwards.
- HttpLiquidityBridge: a JSON-RPC 2.0 client (httpx) for a remote pool
  service exposing createPool / addLiquidity / balanceOf / transfer.

Both return a pool handle exposing balance_of(holder) and
transfer(sender, to, amount) for the pool shares.
"""
import math
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

import httpx
from solders.pubkey import Pubkey

from mcp_token_sale.errors import LiquidityBridgeError, SlippageError, TransferFailedError
from mcp_token_sale.ledger import FungibleLedger
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

Deposit = Tuple[FungibleLedger, int]


class PairDescriptor(NamedTuple):
    token: str
    currency: str


class LiquidityPool:
    """Pool handle of the in-memory bridge; shares are a fungible ledger of their own."""

    def __init__(self, pool_id: str, pair: PairDescriptor):
        self.pool_id = pool_id
        self.pair = pair
        self.reserves: Dict[str, int] = {pair.token: 0, pair.currency: 0}
        self.shares = FungibleLedger(f"LP-{pair.token}-{pair.currency}", 18)

    @property
    def total_shares(self) -> int:
        return self.shares.total_supply

    def balance_of(self, holder: Pubkey) -> int:
        return self.shares.balance_of(holder)

    def transfer(self, sender: Pubkey, to: Pubkey, amount: int) -> None:
        self.shares.transfer(sender, to, amount)


class InMemoryLiquidityBridge:
    def __init__(self, address: Pubkey):
        self.address = address
        self._pools: Dict[PairDescriptor, LiquidityPool] = {}

    def get_pool(self, pair: PairDescriptor) -> Optional[LiquidityPool]:
        return self._pools.get(pair)

    def create_pool(self, pair: PairDescriptor) -> LiquidityPool:
        if pair in self._pools:
            raise LiquidityBridgeError(f"Pool for {pair.token}/{pair.currency} already exists")
        pool = LiquidityPool(f"{pair.token}-{pair.currency}", pair)
        self._pools[pair] = pool
        logger.info(f"Created pool {pool.pool_id}")
        return pool

    def add_liquidity(
        self,
        pool: LiquidityPool,
        deposits: Sequence[Deposit],
        min_liquidity_out: int,
        provider: Pubkey,
    ) -> int:
        """
        Deposits both sides of the pair and mints pool shares to the provider.

        Raises:
            LiquidityBridgeError: deposits do not match the pool pair.
            SlippageError: the minted shares would be below min_liquidity_out.
            TransferFailedError: a deposit could not be pulled from the provider.
        """
        amounts = {ledger.symbol: amount for ledger, amount in deposits}
        if len(deposits) != 2 or set(amounts) != set(pool.reserves):
            raise LiquidityBridgeError(f"Deposits {sorted(amounts)} do not match pool {pool.pool_id}")

        a, b = amounts[pool.pair.token], amounts[pool.pair.currency]
        if pool.total_shares == 0:
            liquidity = math.isqrt(a * b)
        else:
            liquidity = min(
                a * pool.total_shares // pool.reserves[pool.pair.token],
                b * pool.total_shares // pool.reserves[pool.pair.currency],
            )
        if liquidity <= 0 or liquidity < min_liquidity_out:
            raise SlippageError(f"Liquidity out {liquidity} below minimum {min_liquidity_out}")

        for ledger, amount in deposits:
            ledger.transfer_from(self.address, provider, self.address, amount)
            pool.reserves[ledger.symbol] += amount
        pool.shares.mint(provider, liquidity)

        logger.info(f"Added liquidity to {pool.pool_id}: {a} {pool.pair.token} + {b} {pool.pair.currency} -> {liquidity} shares")
        return liquidity

    def snapshot(self) -> Dict[PairDescriptor, Tuple[LiquidityPool, Dict[str, int], tuple]]:
        return {pair: (pool, dict(pool.reserves), pool.shares.snapshot()) for pair, pool in self._pools.items()}

    def restore(self, snapshot: Dict[PairDescriptor, Tuple[LiquidityPool, Dict[str, int], tuple]]) -> None:
        self._pools = {}
        for pair, (pool, reserves, shares) in snapshot.items():
            pool.reserves = dict(reserves)
            pool.shares.restore(shares)
            self._pools[pair] = pool


class RemotePool:
    """Pool handle of the HTTP bridge; every call is a JSON-RPC round trip."""

    def __init__(self, bridge: "HttpLiquidityBridge", pool_id: str, pair: PairDescriptor):
        self.bridge = bridge
        self.pool_id = pool_id
        self.pair = pair

    def balance_of(self, holder: Pubkey) -> int:
        return int(self.bridge._call("balanceOf", [self.pool_id, str(holder)]))

    def transfer(self, sender: Pubkey, to: Pubkey, amount: int) -> None:
        ok = self.bridge._call("transfer", [self.pool_id, str(sender), str(to), amount])
        if not ok:
            raise TransferFailedError(f"Pool share transfer of {amount} from {sender} to {to} was rejected")


class HttpLiquidityBridge:
    """
    JSON-RPC client for a remote liquidity bridge.

    Deposits approved by the provider are first pulled into the bridge custody
    address on the local ledgers, then reported to the remote service. Remote
    state cannot be rolled back; only the local ledger movements are undone when
    the enclosing operation fails.
    """

    def __init__(self, endpoint: str, address: Pubkey, client: Optional[httpx.Client] = None, timeout: float = 10.0):
        self.endpoint = endpoint
        self.address = address
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout, connect=5.0))
        self._id = 0

    def _call(self, method: str, params: List[Any]) -> Any:
        self._id += 1
        payload = {"jsonrpc": "2.0", "id": self._id, "method": method, "params": params}
        try:
            response = self._client.post(self.endpoint, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error calling {method}: {e.response.status_code} - {e.response.text}")
            raise LiquidityBridgeError(f"HTTP error calling {method}: {e.response.status_code}")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Bridge call {method} failed: {e}")
            raise LiquidityBridgeError(f"Bridge call {method} failed: {e}")

        if data.get("error"):
            error = data["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise LiquidityBridgeError(f"Bridge error on {method}: {message}")
        if "result" not in data:
            raise LiquidityBridgeError(f"Malformed response to {method}: missing result")
        return data["result"]

    def create_pool(self, pair: PairDescriptor) -> RemotePool:
        result = self._call("createPool", [{"token": pair.token, "currency": pair.currency}])
        try:
            pool_id = result["pool_id"]
        except (KeyError, TypeError):
            raise LiquidityBridgeError(f"Malformed createPool result: {result!r}")
        logger.info(f"Remote bridge created pool {pool_id}")
        return RemotePool(self, pool_id, pair)

    def add_liquidity(
        self,
        pool: RemotePool,
        deposits: Sequence[Deposit],
        min_liquidity_out: int,
        provider: Pubkey,
    ) -> int:
        for ledger, amount in deposits:
            ledger.transfer_from(self.address, provider, self.address, amount)
        result = self._call(
            "addLiquidity",
            [
                pool.pool_id,
                [{"asset": ledger.symbol, "amount": amount} for ledger, amount in deposits],
                min_liquidity_out,
                str(provider),
            ],
        )
        try:
            liquidity = int(result["liquidity"])
        except (KeyError, TypeError, ValueError):
            raise LiquidityBridgeError(f"Malformed addLiquidity result: {result!r}")
        if liquidity < min_liquidity_out:
            raise SlippageError(f"Liquidity out {liquidity} below minimum {min_liquidity_out}")
        return liquidity

    def snapshot(self) -> None:
        return None

    def restore(self, snapshot: None) -> None:
        logger.warning("Rolling back an operation that reached the remote liquidity bridge; remote state is unchanged")

    def close(self) -> None:
        self._client.close()
