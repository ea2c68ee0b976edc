# MIT License
# Copyright (c) 2025 Hashborn

from pydantic import BaseModel, Field
from typing import Any, Dict
import base64
from ..crypto.hash import sighash
from ..crypto.addresses import encode_address, decode_address
from .common import DecodeError

COUNTER_DISCRIMINATOR = sighash("account", "Counter")
# discriminator + count (u64) + authority (pubkey)
COUNTER_ACCOUNT_SIZE = 8 + 8 + 32
U64_MAX = 2**64 - 1

class AccountInfo(BaseModel):
    """Raw ledger view of an account, before any domain decoding."""
    owner: str
    lamports: int = 0
    data: bytes = b""
    executable: bool = False
    slot: int = 0

    @classmethod
    def from_rpc(cls, value: Dict[str, Any], slot: int = 0) -> "AccountInfo":
        """Builds from a JSON-RPC account value encoded as base64."""
        data = value.get("data") or ["", "base64"]
        if isinstance(data, list):
            if len(data) > 1 and data[1] != "base64":
                raise DecodeError(f"Unsupported account data encoding: {data[1]}")
            raw = base64.b64decode(data[0])
        else:
            raw = base64.b64decode(data)
        return cls(
            owner=value["owner"],
            lamports=value.get("lamports", 0),
            data=raw,
            executable=value.get("executable", False),
            slot=slot,
        )

class CounterAccount(BaseModel):
    count: int = Field(..., ge=0, le=U64_MAX)
    authority: str   # base58 owner identity

    @classmethod
    def decode(cls, data: bytes) -> "CounterAccount":
        """
        Parses the on-chain counter layout.

        Raises:
            DecodeError: On a wrong discriminator or length
        """
        if len(data) < COUNTER_ACCOUNT_SIZE:
            raise DecodeError(f"Counter account too short: {len(data)} bytes")
        if data[:8] != COUNTER_DISCRIMINATOR:
            raise DecodeError(f"Unexpected account discriminator {data[:8].hex()}")

        count = int.from_bytes(data[8:16], "little")
        authority = encode_address(data[16:48])
        return cls(count=count, authority=authority)

    def encode(self) -> bytes:
        return (
            COUNTER_DISCRIMINATOR
            + self.count.to_bytes(8, "little")
            + decode_address(self.authority)
        )
