# MIT License
# Copyright (c) 2025 Hashborn

from ecdsa import SigningKey, VerifyingKey, Ed25519, BadSignatureError # type: ignore
from ecdsa.errors import MalformedPointError # type: ignore
import os

PRIVATE_KEY_LENGTH = 32
PUBLIC_KEY_LENGTH = 32
SIGNATURE_LENGTH = 64

def generate_private_key() -> bytes:
    """Generates a random 32-byte ed25519 seed."""
    return os.urandom(PRIVATE_KEY_LENGTH)

def public_key_from_private(priv_bytes: bytes) -> bytes:
    """Returns the 32-byte ed25519 public key for a seed."""
    sk = SigningKey.from_string(priv_bytes, curve=Ed25519)
    return sk.get_verifying_key().to_string()

def sign(message: bytes, priv_bytes: bytes) -> bytes:
    """Signs a message with an ed25519 seed. Returns a 64-byte signature."""
    sk = SigningKey.from_string(priv_bytes, curve=Ed25519)
    return sk.sign(message)

def verify(message: bytes, signature: bytes, pub_bytes: bytes) -> bool:
    """Verifies an ed25519 signature."""
    try:
        vk = VerifyingKey.from_string(pub_bytes, curve=Ed25519)
        return vk.verify(signature, message)
    except (BadSignatureError, MalformedPointError, ValueError, AssertionError):
        return False

def is_on_curve(pub_bytes: bytes) -> bool:
    """True if the 32 bytes decode to a point on the ed25519 curve."""
    if len(pub_bytes) != PUBLIC_KEY_LENGTH:
        return False
    try:
        VerifyingKey.from_string(pub_bytes, curve=Ed25519)
        return True
    except (MalformedPointError, ValueError, AssertionError):
        return False
