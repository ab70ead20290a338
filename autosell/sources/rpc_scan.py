"""
RPC Scan Source - Buy/sell flow from the node's own transaction index.

No third-party API: recent signatures touching the mint are pulled from
the RPC, each transaction is fetched jsonParsed, and the fee payer's
token and SOL balance deltas decide side and USD value.

Usage:
    from autosell.sources import RpcScanSource

    source = RpcScanSource(rpc_url, sol_price=price_feed.sol_price)
    sample = await source.fetch(mint, window_seconds=30)
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from solana.rpc.async_api import AsyncClient
from solders.pubkey import Pubkey

from ..errors import SourceError
from ..models import TradeSide
from .base import MarketDataSource, VolumeSample

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000

# Limits per cycle
SIGNATURE_LIMIT = 100
MAX_TRANSACTIONS = 25


def classify_deltas(token_delta: float, lamport_delta: int,
                    sol_price_usd: float) -> Optional[Tuple[TradeSide, float]]:
    """
    Side and USD value of one trade from the trader's balance deltas.

    Tokens in -> buy, tokens out -> sell. The SOL leg is valued at the
    current SOL price. Returns None for transactions that did not move
    the asset.
    """
    if token_delta == 0:
        return None
    side = TradeSide.BUY if token_delta > 0 else TradeSide.SELL
    usd = abs(lamport_delta) / LAMPORTS_PER_SOL * sol_price_usd
    return side, usd


def _ui_amount(balance: Any) -> float:
    amount = balance.ui_token_amount.ui_amount
    return float(amount) if amount is not None else 0.0


def trader_deltas(meta: Any, mint: str, owner: str) -> Tuple[float, int]:
    """Token delta for `mint` owned by `owner`, and the fee payer's lamport delta."""
    pre = {
        b.account_index: _ui_amount(b)
        for b in (meta.pre_token_balances or [])
        if str(b.mint) == mint and str(b.owner) == owner
    }
    post = {
        b.account_index: _ui_amount(b)
        for b in (meta.post_token_balances or [])
        if str(b.mint) == mint and str(b.owner) == owner
    }
    token_delta = sum(post.get(i, 0.0) - pre.get(i, 0.0) for i in set(pre) | set(post))
    lamport_delta = meta.post_balances[0] - meta.pre_balances[0]
    return token_delta, lamport_delta


class RpcScanSource(MarketDataSource):
    """Transaction scan over the mint's recent signatures."""

    def __init__(
        self,
        rpc_url: str,
        sol_price: Callable[[], Awaitable[float]],
        max_transactions: int = MAX_TRANSACTIONS,
    ):
        super().__init__()
        self.rpc_url = rpc_url
        self.sol_price = sol_price
        self.max_transactions = max_transactions

    @property
    def name(self) -> str:
        return "rpc_scan"

    async def fetch(self, mint: str, window_seconds: float) -> VolumeSample:
        since = time.time() - window_seconds
        sol_price_usd = await self.sol_price()
        if sol_price_usd <= 0:
            raise SourceError("No SOL price to value trades")

        async with AsyncClient(self.rpc_url) as client:
            resp = await client.get_signatures_for_address(
                Pubkey.from_string(mint),
                limit=SIGNATURE_LIMIT,
            )
            signatures = [
                s.signature for s in (resp.value or [])
                if s.err is None and s.block_time is not None and s.block_time >= since
            ][:self.max_transactions]

            if not signatures:
                return self.sample(0.0, 0.0)

            results = await asyncio.gather(
                *[self._fetch_trade(client, sig, mint, sol_price_usd) for sig in signatures],
                return_exceptions=True,
            )

        buy = 0.0
        sell = 0.0
        count = 0
        for result in results:
            if isinstance(result, Exception):
                logger.debug(f"[rpc_scan] transaction fetch failed: {result}")
                continue
            if result is None:
                continue
            side, usd = result
            count += 1
            if side is TradeSide.BUY:
                buy += usd
            else:
                sell += usd

        logger.debug(f"[rpc_scan] {count}/{len(signatures)} trades: buy ${buy:.2f} sell ${sell:.2f}")
        return self.sample(buy, sell, trade_count=count)

    async def _fetch_trade(self, client: AsyncClient, signature, mint: str,
                           sol_price_usd: float) -> Optional[Tuple[TradeSide, float]]:
        resp = await client.get_transaction(
            signature,
            encoding="jsonParsed",
            max_supported_transaction_version=0,
        )
        tx = resp.value
        if tx is None or tx.transaction.meta is None:
            return None
        meta = tx.transaction.meta
        if meta.err is not None:
            return None

        account_keys: List[Any] = tx.transaction.transaction.message.account_keys
        fee_payer = str(account_keys[0].pubkey)
        token_delta, lamport_delta = trader_deltas(meta, mint, fee_payer)
        return classify_deltas(token_delta, lamport_delta, sol_price_usd)
