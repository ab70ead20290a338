"""
Broadcast Racer - Submit one signed transaction over every channel at once.

The first channel to return a signature wins; the rest are cancelled and
their outcome ignored. Every channel runs under its own timeout, so the
race never outlives the slowest configured timeout.

Channels:
- bloXroute priority relay (only when an auth header is configured)
- direct RPC sendTransaction

Usage:
    racer = BroadcastRacer([BloxrouteChannel(auth), RpcChannel(rpc_url)])
    confirmation = await racer.broadcast(signed_bytes)
    print(confirmation.channel, confirmation.signature)
"""
import asyncio
import base64
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

import aiohttp
from solana.rpc.async_api import AsyncClient
from solana.rpc.types import TxOpts

from ..config import ENDPOINTS
from ..errors import BroadcastError
from ..models import Confirmation

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================================
# FIRST-SUCCESS COMBINATOR
# ============================================================

async def first_success(
    calls: Sequence[Tuple[str, Callable[[], Awaitable[T]], float]],
) -> Tuple[str, T]:
    """
    Run every (name, factory, timeout) concurrently; return the first
    (name, result) that completes without raising.

    Losers are cancelled. If every call fails or times out, raises
    BroadcastError with a reason per name.
    """
    if not calls:
        raise BroadcastError("No broadcast channels configured")

    tasks: Dict[asyncio.Future, str] = {
        asyncio.ensure_future(asyncio.wait_for(factory(), timeout)): name
        for name, factory, timeout in calls
    }
    reasons: Dict[str, str] = {}
    pending = set(tasks)

    try:
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                name = tasks[task]
                if task.cancelled():
                    reasons[name] = "cancelled"
                    continue
                exc = task.exception()
                if exc is None:
                    return name, task.result()
                if isinstance(exc, asyncio.TimeoutError):
                    reasons[name] = "timeout"
                else:
                    reasons[name] = str(exc) or type(exc).__name__
    finally:
        for task in pending:
            task.cancel()

    raise BroadcastError(f"All channels failed: {reasons}", reasons)


# ============================================================
# CHANNELS
# ============================================================

class BroadcastChannel(ABC):
    """One way of getting a signed transaction onto the network."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        self.submitted = 0
        self.wins = 0

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def submit(self, raw: bytes) -> str:
        """Submit and return the transaction signature."""
        pass

    async def close(self):
        pass


class BloxrouteChannel(BroadcastChannel):
    """bloXroute Trader API submit endpoint."""

    def __init__(self, auth: str, submit_url: str = ENDPOINTS['BLOXROUTE_SUBMIT'],
                 timeout: float = 8.0):
        super().__init__(timeout)
        self.auth = auth
        self.submit_url = submit_url.rstrip("/")

    @property
    def name(self) -> str:
        return "bloxroute"

    async def submit(self, raw: bytes) -> str:
        body = {
            "transaction": {"content": base64.b64encode(raw).decode()},
            "skipPreFlight": True,
            "submitProtection": "SP_LOW",
        }
        headers = {"Authorization": self.auth, "Content-Type": "application/json"}

        async with aiohttp.ClientSession() as session:
            async with session.post(f"{self.submit_url}/api/v2/submit",
                                    json=body, headers=headers) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise BroadcastError(f"bloXroute HTTP {resp.status}: {text[:200]}")
                data = await resp.json(content_type=None)

        signature = (data or {}).get("signature")
        if not signature:
            raise BroadcastError("No signature returned from bloXroute")
        return signature


class RpcChannel(BroadcastChannel):
    """Direct sendTransaction against the configured RPC node."""

    def __init__(self, rpc_url: str, timeout: float = 8.0, max_retries: int = 2):
        super().__init__(timeout)
        self.rpc_url = rpc_url
        self.max_retries = max_retries
        self._client: Optional[AsyncClient] = None

    @property
    def name(self) -> str:
        return "rpc"

    async def submit(self, raw: bytes) -> str:
        if self._client is None:
            self._client = AsyncClient(self.rpc_url)
        resp = await self._client.send_raw_transaction(
            raw,
            opts=TxOpts(skip_preflight=True, max_retries=self.max_retries),
        )
        return str(resp.value)

    async def close(self):
        if self._client is not None:
            await self._client.close()
            self._client = None


# ============================================================
# RACER
# ============================================================

class BroadcastRacer:
    """Races all configured channels per transaction."""

    def __init__(self, channels: List[BroadcastChannel]):
        self.channels = list(channels)
        self.total_broadcasts = 0
        self.total_failures = 0

    async def broadcast(self, raw: bytes) -> Confirmation:
        start = time.time()
        self.total_broadcasts += 1

        calls: List[Tuple[str, Callable[[], Awaitable[Any]], float]] = []
        for channel in self.channels:
            channel.submitted += 1
            calls.append((channel.name, (lambda c=channel: c.submit(raw)), channel.timeout))

        try:
            winner, signature = await first_success(calls)
        except BroadcastError:
            self.total_failures += 1
            raise

        for channel in self.channels:
            if channel.name == winner:
                channel.wins += 1

        latency_ms = (time.time() - start) * 1000
        logger.info(f"[broadcast] {winner} won in {latency_ms:.0f}ms: {signature}")
        return Confirmation(signature=signature, channel=winner, latency_ms=latency_ms)

    async def close(self):
        for channel in self.channels:
            await channel.close()

    def get_stats(self) -> dict:
        return {
            'total_broadcasts': self.total_broadcasts,
            'total_failures': self.total_failures,
            'channels': {
                c.name: {'timeout': c.timeout, 'submitted': c.submitted, 'wins': c.wins}
                for c in self.channels
            },
        }
