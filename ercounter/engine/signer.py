# MIT License
# Copyright (c) 2025 Hashborn

"""
Signer Arbiter.

Chooses who signs and pays for a rollup-targeted call. A live session signs
and pays; otherwise the primary wallet does. Re-evaluated on every call since
a session can lapse between calls.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional, Union
from ..protocol.types.tx import Transaction
from .session import SessionKeyManager, SessionToken
from .wallet import KeypairWallet, Wallet


@dataclass(frozen=True)
class PrimarySigner:
    wallet: Wallet

    @property
    def public_key(self) -> str:
        return self.wallet.public_key

    async def sign(self, tx: Transaction) -> Transaction:
        return await self.wallet.sign_transaction(tx)


@dataclass(frozen=True)
class SessionSigner:
    session: SessionToken
    wallet: KeypairWallet

    @property
    def public_key(self) -> str:
        return self.wallet.public_key

    async def sign(self, tx: Transaction) -> Transaction:
        return await self.wallet.sign_transaction(tx)


Signer = Union[PrimarySigner, SessionSigner]


@dataclass(frozen=True)
class SignerSelection:
    signer: Signer
    fee_payer: str
    session_token: Optional[str] = None  # token account address when a session signs


class SignerArbiter:
    def __init__(self, wallet: Wallet, sessions: Optional[SessionKeyManager] = None,
                 clock: Callable[[], float] = time.time):
        self.wallet = wallet
        self.sessions = sessions
        self.clock = clock

    def select_signer(self) -> SignerSelection:
        if self.sessions is not None:
            token = self.sessions.active(self.clock())
            if token is not None:
                signer = SessionSigner(token, self.sessions.signer)
                return SignerSelection(signer, fee_payer=signer.public_key, session_token=token.address)

        primary = PrimarySigner(self.wallet)
        return SignerSelection(primary, fee_payer=primary.public_key)
