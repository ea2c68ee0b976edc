# MIT License
# Copyright (c) 2025 Hashborn

"""
Counter program interface.

Each remote method is a MethodSpec: a stable identifier (the 8-byte Anchor
discriminator), an ordered account list builder and an argument encoder.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from ..crypto.hash import sighash
from ..crypto.addresses import find_program_address, decode_address, resolve_counter_address
from ..config.params import (
    COUNTER_PROGRAM_ID, DELEGATION_PROGRAM_ID, MAGIC_PROGRAM_ID,
    MAGIC_CONTEXT_ID, SYSTEM_PROGRAM_ID,
)
from .tx import AccountMeta, Instruction
from .common import Rejected

# Custom program error codes
PROGRAM_ERRORS: Dict[int, tuple] = {
    6000: ("CounterUnderflow", "Counter cannot go below zero"),
    6001: ("InvalidAuth", "Invalid authentication"),
}

@dataclass(frozen=True)
class MethodSpec:
    name: str
    build_accounts: Callable[..., List[AccountMeta]]
    encode_args: Callable[..., bytes] = lambda: b""

    @property
    def discriminator(self) -> bytes:
        return sighash("global", self.name)

    def instruction(self, *args: Any, program_id: str = COUNTER_PROGRAM_ID, **accounts: Any) -> Instruction:
        return Instruction(
            program_id=program_id,
            accounts=self.build_accounts(program_id=program_id, **accounts),
            data=self.discriminator + self.encode_args(*args),
        )

def _u64(value: int) -> bytes:
    if value < 0 or value > 2**64 - 1:
        raise ValueError(f"Value {value} does not fit in u64")
    return int(value).to_bytes(8, "little")

def _initialize_accounts(authority: str, program_id: str) -> List[AccountMeta]:
    return [
        AccountMeta(pubkey=resolve_counter_address(authority, program_id), is_writable=True),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=True),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID),
    ]

def _update_accounts(counter: str, signer: str, program_id: str, session_token: Optional[str] = None) -> List[AccountMeta]:
    # An absent optional account is passed as the program id
    return [
        AccountMeta(pubkey=counter, is_writable=True),
        AccountMeta(pubkey=signer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=session_token or program_id),
    ]

def _delegate_accounts(payer: str, program_id: str, validator: Optional[str] = None) -> List[AccountMeta]:
    pda = resolve_counter_address(payer, program_id)
    pda_bytes = decode_address(pda)
    buffer_pda, _ = find_program_address([b"buffer", pda_bytes], program_id)
    record_pda, _ = find_program_address([b"delegation", pda_bytes], DELEGATION_PROGRAM_ID)
    metadata_pda, _ = find_program_address([b"delegation-metadata", pda_bytes], DELEGATION_PROGRAM_ID)
    accounts = [
        AccountMeta(pubkey=payer, is_signer=True),
        AccountMeta(pubkey=buffer_pda, is_writable=True),
        AccountMeta(pubkey=record_pda, is_writable=True),
        AccountMeta(pubkey=metadata_pda, is_writable=True),
        AccountMeta(pubkey=pda, is_writable=True),
        AccountMeta(pubkey=program_id),
        AccountMeta(pubkey=DELEGATION_PROGRAM_ID),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID),
    ]
    if validator:
        # Remaining account: pins the rollup validator
        accounts.append(AccountMeta(pubkey=validator))
    return accounts

def _commit_accounts(payer: str, program_id: str) -> List[AccountMeta]:
    return [
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=resolve_counter_address(payer, program_id), is_writable=True),
        AccountMeta(pubkey=MAGIC_PROGRAM_ID),
        AccountMeta(pubkey=MAGIC_CONTEXT_ID, is_writable=True),
    ]

INITIALIZE = MethodSpec("initialize", _initialize_accounts)
INCREMENT = MethodSpec("increment", _update_accounts)
DECREMENT = MethodSpec("decrement", _update_accounts)
SET = MethodSpec("set", _update_accounts, _u64)
DELEGATE = MethodSpec("delegate", _delegate_accounts)
COMMIT = MethodSpec("commit", _commit_accounts)
UNDELEGATE = MethodSpec("undelegate", _commit_accounts)

METHODS: Dict[str, MethodSpec] = {
    m.name: m for m in (INITIALIZE, INCREMENT, DECREMENT, SET, DELEGATE, COMMIT, UNDELEGATE)
}

def method_for_discriminator(data: bytes) -> Optional[MethodSpec]:
    for method in METHODS.values():
        if data[:8] == method.discriminator:
            return method
    return None

def custom_error_code(err: Any) -> Optional[int]:
    """
    Extracts the custom program error code from a ledger error value.

    Handles {"InstructionError": [idx, {"Custom": code}]}.
    """
    if not isinstance(err, dict):
        return None
    ix_err = err.get("InstructionError")
    if isinstance(ix_err, list) and len(ix_err) == 2 and isinstance(ix_err[1], dict):
        code = ix_err[1].get("Custom")
        if isinstance(code, int):
            return code
    return None

def rejection_from_error(err: Any, fallback_message: Optional[str] = None) -> Rejected:
    """Builds a Rejected error from a ledger error value."""
    code = custom_error_code(err)
    if code is not None and code in PROGRAM_ERRORS:
        name, msg = PROGRAM_ERRORS[code]
        return Rejected(f"{name}: {msg}", code=code, name=name)
    if code is not None:
        return Rejected(fallback_message or f"Custom program error: {code:#x}", code=code)
    return Rejected(fallback_message or f"Transaction failed: {err}")
