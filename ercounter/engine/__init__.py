# MIT License
# Copyright (c) 2025 Hashborn

"""
Delegation Engine

Architecture:
- delegation.py: status derived from base-ledger ownership
- subscriptions.py: base/rollup subscriptions kept in lockstep with status
- signer.py: session or primary signer per rollup call
- dispatcher.py: public operations, busy/error contract
"""

from .dispatcher import CounterEngine
from .delegation import DelegationTracker
from .events import EventBus
from .session import SessionKeyManager, SessionToken
from .signer import PrimarySigner, SessionSigner, SignerArbiter, SignerSelection
from .state import CounterState
from .subscriptions import DualSubscriptionManager
from .wallet import KeypairWallet, Wallet

__all__ = [
    'CounterEngine',
    'DelegationTracker',
    'EventBus',
    'SessionKeyManager',
    'SessionToken',
    'PrimarySigner',
    'SessionSigner',
    'SignerArbiter',
    'SignerSelection',
    'CounterState',
    'DualSubscriptionManager',
    'KeypairWallet',
    'Wallet',
]
