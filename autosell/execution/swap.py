"""
Swap Client - Jupiter v6 quote + swap-transaction build, local signing.

Flow per account:
    quote  = await client.quote(mint, atomic_amount, slippage_bps)
    unsigned = await client.build(quote, account.public_key)
    signed = sign_transaction(unsigned, account.keypair)   # never leaves the process

Amounts are floored to atomic units so a sell never requests more than the
held balance.
"""
import base64
import logging
from decimal import Decimal, ROUND_FLOOR
from typing import Any, Dict, Optional

import aiohttp
from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from ..config import ENDPOINTS, WSOL_MINT
from ..errors import SwapError
from ..models import Quote

logger = logging.getLogger(__name__)


def to_atomic_units(amount: float, decimals: int) -> int:
    """Human amount -> smallest integer unit, truncating."""
    if amount <= 0:
        return 0
    scaled = Decimal(str(amount)) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


def sign_transaction(unsigned: bytes, keypair: Keypair) -> bytes:
    """Sign a serialized versioned transaction built for `keypair`."""
    try:
        tx = VersionedTransaction.from_bytes(unsigned)
        signed = VersionedTransaction(tx.message, [keypair])
    except ValueError as e:
        raise SwapError(f"Could not sign swap transaction: {e}")
    return bytes(signed)


class JupiterSwapClient:
    """
    Jupiter aggregator client (sell direction: asset -> SOL).

    Usage:
        client = JupiterSwapClient(api_key=None, timeout=10.0)
        quote = await client.quote(mint, 1_000_000, slippage_bps=300)
        unsigned = await client.build(quote, "7xKX...")
    """

    def __init__(
        self,
        base_url: str = ENDPOINTS['JUPITER_BASE'],
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        output_mint: str = WSOL_MINT,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.output_mint = output_mint

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-API-KEY"] = self.api_key
        return headers

    async def quote(self, mint: str, amount: int, slippage_bps: int) -> Quote:
        if amount <= 0:
            raise SwapError("Sell amount rounds to zero atomic units")

        params = {
            "inputMint": mint,
            "outputMint": self.output_mint,
            "amount": str(amount),
            "slippageBps": str(slippage_bps),
        }
        data = await self._request("GET", "/v6/quote", params=params)

        try:
            return Quote(
                input_mint=data["inputMint"],
                output_mint=data["outputMint"],
                in_amount=int(data["inAmount"]),
                out_amount=int(data["outAmount"]),
                slippage_bps=int(data.get("slippageBps", slippage_bps)),
                raw=data,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SwapError(f"Malformed quote response: {e}")

    async def build(self, quote: Quote, user_public_key: str) -> bytes:
        """Returns the unsigned serialized transaction."""
        body = {
            "userPublicKey": user_public_key,
            "quoteResponse": quote.raw,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
        }
        data = await self._request("POST", "/v6/swap", json=body)

        encoded = data.get("swapTransaction")
        if not encoded:
            raise SwapError("Swap response carried no transaction")
        try:
            return base64.b64decode(encoded)
        except ValueError as e:
            raise SwapError(f"Swap transaction is not base64: {e}")

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(method, f"{self.base_url}{path}",
                                           headers=self._headers(), **kwargs) as resp:
                    if resp.status != 200:
                        text = await resp.text()
                        raise SwapError(f"Jupiter {path} HTTP {resp.status}: {text[:200]}")
                    data = await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise SwapError(f"Jupiter {path} request failed: {e}")

        if not isinstance(data, dict):
            raise SwapError(f"Jupiter {path} returned unexpected payload")
        if data.get("error"):
            raise SwapError(f"Jupiter {path} error: {data['error']}")
        return data
