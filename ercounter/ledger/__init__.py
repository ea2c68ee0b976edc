# MIT License
# Copyright (c) 2025 Hashborn

"""
Ledger access: JSON-RPC client and account subscriptions, one per ledger.
"""

from .rpc import LedgerClient, HttpTransport, BlockAnchor, TransportError, RpcError
from .subscription import AccountChange, AccountSubscription, SubscriptionLost

__all__ = [
    "LedgerClient",
    "HttpTransport",
    "BlockAnchor",
    "TransportError",
    "RpcError",
    "AccountChange",
    "AccountSubscription",
    "SubscriptionLost",
]
