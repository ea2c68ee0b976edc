# MIT License
# Copyright (c) 2025 Hashborn

import base58 # type: ignore
from typing import Sequence, Tuple, Optional
from .hash import sha256
from .keys import is_on_curve, PUBLIC_KEY_LENGTH
from ..types.common import InvalidIdentity
from ..config.params import COUNTER_PROGRAM_ID

PDA_MARKER = b"ProgramDerivedAddress"
MAX_SEED_LENGTH = 32
MAX_SEEDS = 16

def encode_address(pub_bytes: bytes) -> str:
    """Renders a 32-byte public key as a base58 address."""
    if len(pub_bytes) != PUBLIC_KEY_LENGTH:
        raise InvalidIdentity(f"Expected {PUBLIC_KEY_LENGTH} bytes, got {len(pub_bytes)}")
    return base58.b58encode(pub_bytes).decode("ascii")

def decode_address(addr: str) -> bytes:
    """Decodes a base58 address to its 32 raw bytes."""
    if not isinstance(addr, str) or not addr:
        raise InvalidIdentity(f"Invalid address: {addr!r}")
    try:
        raw = base58.b58decode(addr)
    except ValueError as e:
        raise InvalidIdentity(f"Invalid base58 address {addr!r}: {e}")
    if len(raw) != PUBLIC_KEY_LENGTH:
        raise InvalidIdentity(f"Address {addr!r} decodes to {len(raw)} bytes, expected {PUBLIC_KEY_LENGTH}")
    return raw

def is_valid_address(addr: str) -> bool:
    try:
        decode_address(addr)
        return True
    except InvalidIdentity:
        return False

def create_program_address(seeds: Sequence[bytes], program_id: str) -> str:
    """
    Hashes seeds with the program id into an address.

    Raises:
        InvalidIdentity: If a seed is too long or the result lies on the curve
    """
    if len(seeds) > MAX_SEEDS:
        raise InvalidIdentity(f"Too many seeds: {len(seeds)}")
    buf = b""
    for seed in seeds:
        if len(seed) > MAX_SEED_LENGTH:
            raise InvalidIdentity(f"Seed longer than {MAX_SEED_LENGTH} bytes")
        buf += seed
    candidate = sha256(buf + decode_address(program_id) + PDA_MARKER)
    if is_on_curve(candidate):
        raise InvalidIdentity("Derived address lies on the ed25519 curve")
    return encode_address(candidate)

def find_program_address(seeds: Sequence[bytes], program_id: str) -> Tuple[str, int]:
    """Finds the first off-curve address, trying bump seeds from 255 down."""
    for bump in range(255, -1, -1):
        try:
            return create_program_address(list(seeds) + [bytes([bump])], program_id), bump
        except InvalidIdentity:
            continue
    raise InvalidIdentity("Unable to find a viable program address bump seed")

def resolve_counter_address(owner: str, program_id: Optional[str] = None) -> str:
    """
    Derives the counter account address owned by `owner`.

    Pure and deterministic: the only seed is the owner's public key.
    """
    address, _ = find_program_address([decode_address(owner)], program_id or COUNTER_PROGRAM_ID)
    return address
