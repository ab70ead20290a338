"""
Credential Parsing
==================

Turns the opaque secret strings posted to /start into managed accounts.

Accepted per entry:
- base58 encoded 64-byte secret (Phantom / Solflare export)
- bracketed JSON byte array, e.g. "[12,34,...]" (solana-keygen file contents)
- comma separated byte list without brackets

Malformed entries are skipped individually. Zero valid entries is a
ConfigError.
"""

import json
import logging
from typing import Any, Iterable, List, Optional

import base58
from solders.keypair import Keypair

from .errors import ConfigError
from .models import Account

logger = logging.getLogger(__name__)

SECRET_KEY_LENGTH = 64


def decode_secret(raw: str) -> Optional[bytes]:
    """Decode one credential to its raw 64-byte secret, or None if malformed."""
    text = (raw or "").strip()
    if not text:
        return None

    try:
        if text.startswith("["):
            values = json.loads(text)
            secret = bytes(int(v) for v in values)
        elif "," in text:
            secret = bytes(int(v) for v in text.split(",") if v.strip())
        else:
            secret = base58.b58decode(text)
    except (ValueError, TypeError):
        return None

    if len(secret) != SECRET_KEY_LENGTH:
        return None
    return secret


def parse_credential(raw: str) -> Optional[Keypair]:
    secret = decode_secret(raw)
    if secret is None:
        return None
    try:
        return Keypair.from_bytes(secret)
    except ValueError:
        return None


def load_accounts(credentials: Iterable[Any]) -> List[Account]:
    """
    Build the ordered account roster. Accounts are named "Wallet N" in the
    order their credentials were supplied (skipped entries leave no gap).
    """
    accounts: List[Account] = []
    skipped = 0

    for index, raw in enumerate(credentials or []):
        keypair = parse_credential(raw) if isinstance(raw, str) else None
        if keypair is None:
            skipped += 1
            logger.warning(f"Skipping malformed credential #{index + 1}")
            continue
        accounts.append(Account(name=f"Wallet {len(accounts) + 1}", keypair=keypair))

    if not accounts:
        raise ConfigError("No valid account credentials supplied")

    logger.info(f"Loaded {len(accounts)} accounts ({skipped} skipped)")
    return accounts
