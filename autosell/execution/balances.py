"""
Balances - SOL / token balance reads and the per-account refresher.

A failed read never raises out of refresh(): the account keeps its last
known balance (zero if it was never read).
"""
import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

from solana.rpc.async_api import AsyncClient
from solana.rpc.types import TokenAccountOpts
from solders.pubkey import Pubkey

from ..models import Account

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000


class SolanaBalanceReader:
    """RPC-backed balance reads, with mint decimals cached per mint."""

    def __init__(self, rpc_url: str):
        self.rpc_url = rpc_url
        self._client: Optional[AsyncClient] = None
        self._decimals: Dict[str, int] = {}

    @property
    def client(self) -> AsyncClient:
        if self._client is None:
            self._client = AsyncClient(self.rpc_url)
        return self._client

    async def get_sol_balance(self, owner: str) -> float:
        resp = await self.client.get_balance(Pubkey.from_string(owner))
        return resp.value / LAMPORTS_PER_SOL

    async def get_token_balance(self, owner: str, mint: str) -> float:
        resp = await self.client.get_token_accounts_by_owner_json_parsed(
            Pubkey.from_string(owner),
            TokenAccountOpts(mint=Pubkey.from_string(mint)),
        )
        total = 0.0
        for keyed in resp.value or []:
            info = keyed.account.data.parsed.get("info", {})
            amount = info.get("tokenAmount", {}).get("uiAmount")
            if amount is not None:
                total += float(amount)
        return total

    async def get_decimals(self, mint: str) -> int:
        if mint not in self._decimals:
            resp = await self.client.get_token_supply(Pubkey.from_string(mint))
            self._decimals[mint] = resp.value.decimals
        return self._decimals[mint]

    async def close(self):
        if self._client is not None:
            await self._client.close()
            self._client = None


class BalanceRefresher:
    """
    Reads every account's balances concurrently, then applies them in one
    synchronous step so no other task observes a half-updated roster.

    Usage:
        refresher = BalanceRefresher(SolanaBalanceReader(rpc_url), timeout=10.0)
        await refresher.refresh(accounts, mint)
    """

    def __init__(self, reader, timeout: float = 10.0):
        self.reader = reader
        self.timeout = timeout
        self.total_refreshes = 0
        self.total_read_failures = 0

    async def _read(self, account: Account, mint: str) -> Tuple[float, float]:
        sol, tokens = await asyncio.wait_for(
            asyncio.gather(
                self.reader.get_sol_balance(account.public_key),
                self.reader.get_token_balance(account.public_key, mint),
            ),
            timeout=self.timeout,
        )
        return sol, tokens

    async def refresh(
        self,
        accounts: List[Account],
        mint: str,
        is_current: Callable[[], bool] = lambda: True,
    ) -> int:
        """
        Refresh all accounts. Results are dropped if `is_current()` turns
        False while reads are in flight. Returns the number of accounts
        updated.
        """
        if not accounts:
            return 0

        readings = await asyncio.gather(
            *[self._read(account, mint) for account in accounts],
            return_exceptions=True,
        )

        if not is_current():
            logger.debug("[balances] run changed during refresh, discarding readings")
            return 0

        now = time.time()
        updated = 0
        for account, reading in zip(accounts, readings):
            if isinstance(reading, BaseException):
                self.total_read_failures += 1
                logger.warning(
                    f"[balances] {account.label}: read failed ({reading!r}), "
                    f"keeping {account.token_balance:.6f} tokens"
                )
                continue
            account.sol_balance, account.token_balance = reading
            account.balance_known = True
            account.last_refresh_at = now
            updated += 1

        self.total_refreshes += 1
        logger.debug(f"[balances] refreshed {updated}/{len(accounts)} accounts")
        return updated
