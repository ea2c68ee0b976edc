# MIT License
# Copyright (c) 2025 Hashborn

"""
Session keys.

A session is an ephemeral keypair the owner authorizes to act on one target
program until an expiry. The on-chain side keeps a session token account at
a PDA of the session keys program; the counter program accepts it in place
of the owner's signature.
"""

import logging
import time
from typing import Awaitable, Callable, Optional
from pydantic import BaseModel
from ..protocol.config.params import SESSION_KEYS_PROGRAM_ID
from ..protocol.crypto.addresses import find_program_address, decode_address
from ..protocol.types.common import NotReady
from .wallet import KeypairWallet

logger = logging.getLogger(__name__)

SESSION_TOKEN_SEED = b"session_token"


class SessionToken(BaseModel):
    authority: str
    target_program: str
    session_signer: str
    valid_until: int  # unix seconds

    @property
    def address(self) -> str:
        address, _ = find_program_address(
            [
                SESSION_TOKEN_SEED,
                decode_address(self.target_program),
                decode_address(self.session_signer),
                decode_address(self.authority),
            ],
            SESSION_KEYS_PROGRAM_ID,
        )
        return address

    def is_valid(self, now: Optional[float] = None) -> bool:
        return self.valid_until > (time.time() if now is None else now)


# Registers the token on chain and funds the session signer
SessionIssuer = Callable[[SessionToken, KeypairWallet], Awaitable[None]]


class SessionKeyManager:
    """
    Creates and holds the active session for one owner.

    Issuance itself is delegated to `issuer`. Without one no session can be
    created: a token that only exists locally would be refused on chain.
    """

    def __init__(self, authority: str, validity_sec: int = 3600,
                 issuer: Optional[SessionIssuer] = None):
        self.authority = authority
        self.validity_sec = validity_sec
        self.issuer = issuer
        self.signer: Optional[KeypairWallet] = None
        self.session_token: Optional[SessionToken] = None
        self.is_loading = False

    async def create_session(self, target_program: str) -> SessionToken:
        if self.issuer is None:
            raise NotReady("No session issuer configured")
        if self.is_loading:
            raise NotReady("Session creation already in progress")

        self.is_loading = True
        try:
            signer = KeypairWallet.generate()
            token = SessionToken(
                authority=self.authority,
                target_program=target_program,
                session_signer=signer.public_key,
                valid_until=int(time.time()) + self.validity_sec,
            )
            await self.issuer(token, signer)
            self.signer, self.session_token = signer, token
            logger.info(f"Session {signer.public_key} active until {token.valid_until}")
            return token
        finally:
            self.is_loading = False

    def revoke(self):
        self.signer = None
        self.session_token = None

    def active(self, now: Optional[float] = None) -> Optional[SessionToken]:
        """The session token if one exists and has not expired."""
        token = self.session_token
        if token is None or self.signer is None or not token.is_valid(now):
            return None
        return token
