# MIT License
# Copyright (c) 2025 Hashborn

"""
Observer-facing engine state.

Single writer (the engine), any number of readers. Every setter emits an
event on the bus when the value actually changes.
"""

from typing import Any, Dict, Optional
from ..protocol.types.account import CounterAccount
from ..protocol.types.common import DelegationStatus
from .events import (
    EventBus, ACCOUNT_CHANGED, STATUS_CHANGED, ROLLUP_VALUE_CHANGED,
    BUSY_CHANGED, ERROR_CHANGED,
)


class CounterState:
    def __init__(self, bus: Optional[EventBus] = None):
        self.bus = bus or EventBus()
        self.address: Optional[str] = None
        self.account: Optional[CounterAccount] = None
        self.status: DelegationStatus = DelegationStatus.CHECKING
        self.rollup_value: Optional[int] = None
        self.rollup_slot: int = 0  # ledger slot the rollup value was read at
        self.busy: bool = False
        self.is_delegating: bool = False
        self.error: Optional[str] = None
        self.last_commitment_signature: Optional[str] = None

    def set_account(self, account: Optional[CounterAccount]):
        if account != self.account:
            self.account = account
            self.bus.emit(ACCOUNT_CHANGED, account=account)

    def set_status(self, status: DelegationStatus):
        if status != self.status:
            previous, self.status = self.status, status
            self.bus.emit(STATUS_CHANGED, status=status, previous=previous)

    def set_rollup_value(self, value: Optional[int], slot: Optional[int] = None):
        """Drops values read at an older slot than the one already held."""
        if value is None:
            self.rollup_slot = 0
        elif slot is not None:
            if slot < self.rollup_slot:
                return
            self.rollup_slot = slot
        if value != self.rollup_value:
            self.rollup_value = value
            self.bus.emit(ROLLUP_VALUE_CHANGED, value=value)

    def set_busy(self, busy: bool):
        if busy != self.busy:
            self.busy = busy
            self.bus.emit(BUSY_CHANGED, busy=busy)

    def set_error(self, error: Optional[str]):
        if error != self.error:
            self.error = error
            self.bus.emit(ERROR_CHANGED, error=error)

    def reset(self):
        """Forget everything tied to the current owner."""
        self.address = None
        self.set_account(None)
        self.set_status(DelegationStatus.CHECKING)
        self.set_rollup_value(None)
        self.last_commitment_signature = None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "account": self.account.model_dump() if self.account else None,
            "delegation_status": self.status.value,
            "rollup_value": self.rollup_value,
            "busy": self.busy,
            "is_delegating": self.is_delegating,
            "error": self.error,
            "last_commitment_signature": self.last_commitment_signature,
        }
