"""
Execution Coordinator - Proportional multi-account sell.

Given a USD target and the current price:
1. keep accounts holding more than the dust floor
2. tokens_to_sell = target_usd / price, clamped to
   [min_sell_fraction, max_sell_fraction] of the total held
3. each account sells tokens_to_sell * (its balance / total held),
   never more than its own balance
4. all accounts run concurrently; one account failing never touches another

The coordinator does not mutate accounts. The engine applies the returned
BatchResult in a single synchronous step.
"""
import asyncio
import logging
import time
from typing import Callable, List, Optional, Tuple

from ..config import EngineConfig
from ..models import Account, AccountResult, BatchResult
from .swap import sign_transaction, to_atomic_units

logger = logging.getLogger(__name__)


def eligible_accounts(
    accounts: List[Account],
    dust_tokens: float,
    ready: Optional[Callable[[Account], bool]] = None,
) -> List[Account]:
    return [
        a for a in accounts
        if a.token_balance > dust_tokens and (ready is None or ready(a))
    ]


def allocate(
    accounts: List[Account],
    target_usd: float,
    price_usd: float,
    min_sell_fraction: float,
    max_sell_fraction: float,
) -> Tuple[float, List[Tuple[Account, float]]]:
    """
    Split a USD target across accounts in proportion to their holdings.

    Returns:
        (tokens_to_sell, [(account, token_amount), ...])
    """
    total_held = sum(a.token_balance for a in accounts)
    if not accounts or total_held <= 0 or price_usd <= 0:
        return 0.0, []

    tokens_to_sell = target_usd / price_usd
    tokens_to_sell = max(tokens_to_sell, total_held * min_sell_fraction)
    tokens_to_sell = min(tokens_to_sell, total_held * max_sell_fraction)

    allocations = [
        (a, min(tokens_to_sell * (a.token_balance / total_held), a.token_balance))
        for a in accounts
    ]
    return tokens_to_sell, allocations


class ExecutionCoordinator:
    """
    Fans a sell out over accounts: quote -> build -> sign -> broadcast race.

    Usage:
        coordinator = ExecutionCoordinator(swap_client, racer, reader.get_decimals)
        batch = await coordinator.execute(25.0, accounts, price_usd=0.25, config=config)
    """

    def __init__(self, swap_client, racer, get_decimals):
        self.swap_client = swap_client
        self.racer = racer
        self.get_decimals = get_decimals
        self.total_batches = 0

    async def execute(
        self,
        target_usd: float,
        accounts: List[Account],
        price_usd: float,
        config: EngineConfig,
        ready: Optional[Callable[[Account], bool]] = None,
    ) -> BatchResult:
        batch = BatchResult(target_usd=target_usd, price_usd=price_usd)

        eligible = eligible_accounts(accounts, config.dust_tokens, ready)
        if not eligible:
            logger.info("[coordinator] no eligible accounts, nothing to sell")
            return batch

        tokens_to_sell, allocations = allocate(
            eligible, target_usd, price_usd,
            config.min_sell_fraction, config.max_sell_fraction,
        )
        allocations = [(a, amount) for a, amount in allocations if amount > 0]
        if not allocations:
            return batch

        decimals = await self.get_decimals(config.mint)
        batch.tokens_to_sell = tokens_to_sell
        self.total_batches += 1

        logger.info(
            f"[coordinator] selling {tokens_to_sell:.6f} tokens (${target_usd:.2f} "
            f"@ ${price_usd:.8f}) across {len(allocations)} accounts"
        )

        batch.results = list(await asyncio.gather(*[
            self._sell_one(account, amount, price_usd, decimals, config)
            for account, amount in allocations
        ]))

        logger.info(
            f"[coordinator] batch done: {len(batch.succeeded)} ok, {len(batch.failed)} failed, "
            f"{batch.tokens_sold:.6f} tokens = ${batch.usd_sold:.2f}"
        )
        return batch

    async def _sell_one(self, account: Account, amount: float, price_usd: float,
                        decimals: int, config: EngineConfig) -> AccountResult:
        start = time.time()
        result = AccountResult(
            name=account.name,
            public_key=account.public_key,
            success=False,
            token_amount=amount,
            usd_value=amount * price_usd,
        )

        try:
            atomic = to_atomic_units(amount, decimals)
            quote = await self.swap_client.quote(config.mint, atomic, config.slippage_bps)
            unsigned = await self.swap_client.build(quote, account.public_key)
            signed = sign_transaction(unsigned, account.keypair)
            confirmation = await self.racer.broadcast(signed)
        except Exception as e:
            result.error = str(e) or type(e).__name__
            result.latency_ms = (time.time() - start) * 1000
            logger.error(f"[coordinator] {account.label}: sell failed: {result.error}")
            return result

        result.success = True
        result.signature = confirmation.signature
        result.channel = confirmation.channel
        result.latency_ms = (time.time() - start) * 1000
        logger.info(
            f"[coordinator] {account.label}: sold {amount:.6f} tokens "
            f"(${result.usd_value:.2f}) via {confirmation.channel}"
        )
        return result
