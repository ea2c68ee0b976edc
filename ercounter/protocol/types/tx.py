# MIT License
# Copyright (c) 2025 Hashborn

"""
Ledger transactions in the legacy wire format.

Layout:
    compact-u16 signature count, 64-byte signatures,
    message = header (3 bytes), account keys, recent blockhash,
    compiled instructions.
"""

from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Tuple
from ..crypto.addresses import encode_address, decode_address
from ..crypto.keys import sign as crypto_sign, verify as crypto_verify, public_key_from_private, SIGNATURE_LENGTH
import base58 # type: ignore

EMPTY_SIGNATURE = bytes(SIGNATURE_LENGTH)

def encode_length(n: int) -> bytes:
    """Encodes a compact-u16 length prefix."""
    if n < 0 or n > 0xFFFF:
        raise ValueError(f"compact-u16 out of range: {n}")
    out = bytearray()
    while True:
        byte = n & 0x7F
        n >>= 7
        if n == 0:
            out.append(byte)
            return bytes(out)
        out.append(byte | 0x80)

def decode_length(raw: bytes, offset: int) -> Tuple[int, int]:
    """Decodes a compact-u16 at offset. Returns (value, new_offset)."""
    value = 0
    for i in range(3):
        if offset >= len(raw):
            raise ValueError("Truncated compact-u16")
        byte = raw[offset]
        offset += 1
        value |= (byte & 0x7F) << (7 * i)
        if byte & 0x80 == 0:
            return value, offset
    raise ValueError("compact-u16 longer than 3 bytes")

class AccountMeta(BaseModel):
    pubkey: str
    is_signer: bool = False
    is_writable: bool = False

class Instruction(BaseModel):
    program_id: str
    accounts: List[AccountMeta] = Field(default_factory=list)
    data: bytes = b""

class Transaction(BaseModel):
    fee_payer: str
    recent_blockhash: Optional[str] = None
    instructions: List[Instruction] = Field(default_factory=list)
    signatures: Dict[str, str] = Field(default_factory=dict)  # pubkey -> base58 signature

    def _account_keys(self) -> Tuple[List[str], int, int, int]:
        """
        Orders the unique keys and computes the message header.

        Returns (keys, num_required_signatures, num_readonly_signed, num_readonly_unsigned).
        """
        metas: Dict[str, AccountMeta] = {
            self.fee_payer: AccountMeta(pubkey=self.fee_payer, is_signer=True, is_writable=True)
        }
        for ix in self.instructions:
            for acc in ix.accounts:
                existing = metas.get(acc.pubkey)
                if existing:
                    existing.is_signer = existing.is_signer or acc.is_signer
                    existing.is_writable = existing.is_writable or acc.is_writable
                else:
                    metas[acc.pubkey] = acc.model_copy()
            if ix.program_id not in metas:
                metas[ix.program_id] = AccountMeta(pubkey=ix.program_id)

        # Fee payer stays first: dicts keep insertion order and sorted() is stable
        ordered = sorted(metas.values(), key=lambda m: (not m.is_signer, not m.is_writable))
        keys = [m.pubkey for m in ordered]
        num_signers = sum(1 for m in ordered if m.is_signer)
        readonly_signed = sum(1 for m in ordered if m.is_signer and not m.is_writable)
        readonly_unsigned = sum(1 for m in ordered if not m.is_signer and not m.is_writable)
        return keys, num_signers, readonly_signed, readonly_unsigned

    def signer_keys(self) -> List[str]:
        keys, num_signers, _, _ = self._account_keys()
        return keys[:num_signers]

    def compile_message(self) -> bytes:
        """Serializes the message that signers sign."""
        if not self.recent_blockhash:
            raise ValueError("Transaction has no recent blockhash")
        if not self.instructions:
            raise ValueError("Transaction has no instructions")

        keys, num_signers, readonly_signed, readonly_unsigned = self._account_keys()
        index = {k: i for i, k in enumerate(keys)}

        out = bytearray([num_signers, readonly_signed, readonly_unsigned])
        out += encode_length(len(keys))
        for k in keys:
            out += decode_address(k)
        out += decode_address(self.recent_blockhash)
        out += encode_length(len(self.instructions))
        for ix in self.instructions:
            out.append(index[ix.program_id])
            out += encode_length(len(ix.accounts))
            out += bytes(index[acc.pubkey] for acc in ix.accounts)
            out += encode_length(len(ix.data))
            out += ix.data
        return bytes(out)

    def sign(self, *priv_keys: bytes):
        """Adds signatures from the given ed25519 seeds."""
        message = self.compile_message()
        required = set(self.signer_keys())
        for priv in priv_keys:
            pub = encode_address(public_key_from_private(priv))
            if pub not in required:
                raise ValueError(f"{pub} is not a required signer")
            self.signatures[pub] = base58.b58encode(crypto_sign(message, priv)).decode("ascii")

    def add_signature(self, pubkey: str, signature: bytes):
        if pubkey not in self.signer_keys():
            raise ValueError(f"{pubkey} is not a required signer")
        self.signatures[pubkey] = base58.b58encode(signature).decode("ascii")

    def verify_signatures(self) -> bool:
        message = self.compile_message()
        for pub in self.signer_keys():
            sig = self.signatures.get(pub)
            if not sig or not crypto_verify(message, base58.b58decode(sig), decode_address(pub)):
                return False
        return True

    @property
    def signature(self) -> Optional[str]:
        """Transaction id: the fee payer's signature."""
        return self.signatures.get(self.fee_payer)

    def serialize(self, require_all_signatures: bool = True) -> bytes:
        message = self.compile_message()
        signers = self.signer_keys()
        out = bytearray(encode_length(len(signers)))
        for pub in signers:
            sig = self.signatures.get(pub)
            if sig is None:
                if require_all_signatures:
                    raise ValueError(f"Missing signature for {pub}")
                out += EMPTY_SIGNATURE
            else:
                out += base58.b58decode(sig)
        out += message
        return bytes(out)

    @classmethod
    def deserialize(cls, raw: bytes) -> "Transaction":
        num_sigs, offset = decode_length(raw, 0)
        sigs = []
        for _ in range(num_sigs):
            sigs.append(raw[offset:offset + SIGNATURE_LENGTH])
            offset += SIGNATURE_LENGTH

        num_signers, readonly_signed, readonly_unsigned = raw[offset], raw[offset + 1], raw[offset + 2]
        offset += 3
        num_keys, offset = decode_length(raw, offset)
        keys = []
        for _ in range(num_keys):
            keys.append(encode_address(raw[offset:offset + 32]))
            offset += 32
        blockhash = encode_address(raw[offset:offset + 32])
        offset += 32

        def meta(i: int) -> AccountMeta:
            is_signer = i < num_signers
            if is_signer:
                is_writable = i < num_signers - readonly_signed
            else:
                is_writable = i < num_keys - readonly_unsigned
            return AccountMeta(pubkey=keys[i], is_signer=is_signer, is_writable=is_writable)

        num_ix, offset = decode_length(raw, offset)
        instructions = []
        for _ in range(num_ix):
            program_index = raw[offset]
            offset += 1
            num_accounts, offset = decode_length(raw, offset)
            account_indexes = raw[offset:offset + num_accounts]
            offset += num_accounts
            data_len, offset = decode_length(raw, offset)
            data = raw[offset:offset + data_len]
            offset += data_len
            instructions.append(Instruction(
                program_id=keys[program_index],
                accounts=[meta(i) for i in account_indexes],
                data=bytes(data),
            ))

        tx = cls(fee_payer=keys[0], recent_blockhash=blockhash, instructions=instructions)
        for pub, sig in zip(keys[:num_signers], sigs):
            if sig != EMPTY_SIGNATURE:
                tx.signatures[pub] = base58.b58encode(sig).decode("ascii")
        return tx
