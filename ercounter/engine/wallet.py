# MIT License
# Copyright (c) 2025 Hashborn

"""
Wallet capability: unsigned transaction in, signed transaction out.
"""

from abc import ABC, abstractmethod
from typing import List
from ..protocol.crypto.keys import public_key_from_private, generate_private_key
from ..protocol.crypto.addresses import encode_address
from ..protocol.types.tx import Transaction


class Wallet(ABC):
    @property
    @abstractmethod
    def public_key(self) -> str:
        ...

    @abstractmethod
    async def sign_transaction(self, tx: Transaction) -> Transaction:
        ...

    async def sign_all_transactions(self, txs: List[Transaction]) -> List[Transaction]:
        return [await self.sign_transaction(tx) for tx in txs]


class KeypairWallet(Wallet):
    """Signs with a local ed25519 seed."""

    def __init__(self, priv_bytes: bytes):
        self._priv = priv_bytes
        self._public_key = encode_address(public_key_from_private(priv_bytes))

    @classmethod
    def generate(cls) -> "KeypairWallet":
        return cls(generate_private_key())

    @property
    def public_key(self) -> str:
        return self._public_key

    async def sign_transaction(self, tx: Transaction) -> Transaction:
        tx.sign(self._priv)
        return tx

    def __repr__(self):
        return f"KeypairWallet({self._public_key})"
