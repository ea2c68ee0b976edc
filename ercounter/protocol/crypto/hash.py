# MIT License
# Copyright (c) 2025 Hashborn

import hashlib

def sha256(data: bytes) -> bytes:
    """Returns SHA256 hash of bytes."""
    return hashlib.sha256(data).digest()

def sha256_hex(data: bytes) -> str:
    """Returns SHA256 hash of bytes as hex string."""
    return sha256(data).hex()

def sighash(namespace: str, name: str) -> bytes:
    """
    Returns the 8-byte Anchor discriminator for `namespace:name`.

    Instructions use the "global" namespace, account layouts use "account".
    """
    return sha256(f"{namespace}:{name}".encode("utf-8"))[:8]
