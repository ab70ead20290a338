"""
Execution - Swap build, broadcast racing, proportional fan-out and balances.
"""
from .swap import JupiterSwapClient, sign_transaction, to_atomic_units
from .broadcast import (
    BroadcastChannel,
    BroadcastRacer,
    BloxrouteChannel,
    RpcChannel,
    first_success,
)
from .coordinator import ExecutionCoordinator, allocate, eligible_accounts
from .balances import BalanceRefresher, SolanaBalanceReader

__all__ = [
    'JupiterSwapClient', 'sign_transaction', 'to_atomic_units',
    'BroadcastChannel', 'BroadcastRacer', 'BloxrouteChannel', 'RpcChannel', 'first_success',
    'ExecutionCoordinator', 'allocate', 'eligible_accounts',
    'BalanceRefresher', 'SolanaBalanceReader',
]
