# MIT License
# Copyright (c) 2025 Hashborn

from enum import Enum
from typing import Optional

class DelegationStatus(str, Enum):
    CHECKING = "checking"
    UNDELEGATED = "undelegated"
    DELEGATED = "delegated"

class Ledger(str, Enum):
    BASE = "base"
    ROLLUP = "rollup"

class ProtocolError(Exception):
    pass

class InvalidIdentity(ProtocolError):
    """Owner identity or address is not a well-formed 32-byte public key."""

class NotReady(ProtocolError):
    """A precondition (wallet, address, delegation) is missing."""

class NotFound(ProtocolError):
    """Account does not exist on the ledger. Expected before initialization."""

class DecodeError(ProtocolError):
    """Account bytes exist but do not match the counter layout."""

class SubmissionError(ProtocolError):
    """Transport or RPC failure while submitting or confirming a transaction."""

class Rejected(ProtocolError):
    """The remote program rejected the transaction."""

    def __init__(self, message: str, code: Optional[int] = None, name: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.name = name
