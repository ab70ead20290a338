"""
Webhook Feed - Classify pushed enhanced transactions into trade observations.

Body: a JSON list of enhanced transactions, or {"events": [...]} /
{"data": [...]}. Each transaction carries tokenTransfers; transfers of the
configured mint are grouped and the largest one decides the trade.

Direction:
- receiver is a known pool -> sell
- sender is a known pool   -> buy
- otherwise: receiver looks like a user wallet -> buy, else sell

Usage:
    authenticate(request.headers, settings.webhook_secret)
    trades = classify_transactions(extract_transactions(body), mint, price, pools)
"""
import hmac
import logging
import time
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .errors import WebhookAuthError
from .models import TradeObservation, TradeSide

logger = logging.getLogger(__name__)

# System-program style addresses end in 32 ones
SYSTEM_SUFFIX = "1" * 32


def authenticate(headers: Mapping[str, str], secret: Optional[str]):
    """Raise WebhookAuthError unless the shared secret matches."""
    if not secret:
        raise WebhookAuthError("Webhook secret not configured")

    provided = headers.get("x-webhook-secret")
    if not provided:
        auth = headers.get("authorization", "")
        if auth.lower().startswith("bearer "):
            provided = auth[7:].strip()

    if not provided or not hmac.compare_digest(provided.encode(), secret.encode()):
        raise WebhookAuthError("Unauthorized")


def extract_transactions(body: Any) -> List[Dict[str, Any]]:
    if isinstance(body, list):
        rows = body
    elif isinstance(body, dict):
        rows = body.get("events") or body.get("data") or []
    else:
        rows = []
    return [r for r in rows if isinstance(r, dict)] if isinstance(rows, list) else []


def looks_like_user(address: Optional[str]) -> bool:
    return bool(address) and not address.endswith(SYSTEM_SUFFIX)


def _amount(transfer: Dict[str, Any]) -> float:
    try:
        return float(transfer.get("tokenAmount") or 0)
    except (TypeError, ValueError):
        return 0.0


def classify_side(transfer: Dict[str, Any], pools: Iterable[str] = ()) -> TradeSide:
    pools = set(pools)
    receiver = transfer.get("toUserAccount")
    sender = transfer.get("fromUserAccount")
    if receiver and receiver in pools:
        return TradeSide.SELL
    if sender and sender in pools:
        return TradeSide.BUY
    return TradeSide.BUY if looks_like_user(receiver) else TradeSide.SELL


def classify_transaction(
    tx: Dict[str, Any],
    mint: str,
    price_usd: float,
    pools: Iterable[str] = (),
) -> Optional[TradeObservation]:
    """Trade observation for `mint` in one transaction, or None if it has none."""
    transfers = [
        t for t in (tx.get("tokenTransfers") or [])
        if isinstance(t, dict)
        and (t.get("mint") or t.get("tokenAddress")) == mint
        and _amount(t) != 0
    ]
    if not transfers:
        return None

    primary = max(transfers, key=_amount)
    token_amount = abs(_amount(primary))
    timestamp = tx.get("timestamp") or time.time()

    return TradeObservation(
        side=classify_side(primary, pools),
        usd_value=token_amount * price_usd,
        timestamp=float(timestamp),
        token_amount=token_amount,
        signature=str(tx.get("signature") or ""),
        source="webhook",
    )


def classify_transactions(
    rows: List[Dict[str, Any]],
    mint: str,
    price_usd: float,
    pools: Iterable[str] = (),
) -> List[TradeObservation]:
    pools = list(pools)
    trades = []
    for tx in rows:
        obs = classify_transaction(tx, mint, price_usd, pools)
        if obs is not None:
            trades.append(obs)
    logger.debug(f"[webhook] {len(trades)}/{len(rows)} transactions touched {mint[:8]}")
    return trades
