# MIT License
# Copyright (c) 2025 Hashborn

import logging
from ..ledger.rpc import LedgerClient
from ..protocol.config.params import DELEGATION_PROGRAM_ID
from ..protocol.types.account import CounterAccount
from ..protocol.types.common import DelegationStatus, NotFound
from ..observability.metrics import status_checks_total, record_status
from .state import CounterState

logger = logging.getLogger(__name__)


class DelegationTracker:
    """
    Derives the delegation status from the base-ledger owner of the account.

    When the delegation program owns the account it lives on the rollup;
    otherwise the counter program owns it on the base ledger.
    """

    def __init__(self, base: LedgerClient, rollup: LedgerClient, state: CounterState,
                 delegation_program_id: str = DELEGATION_PROGRAM_ID):
        self.base = base
        self.rollup = rollup
        self.state = state
        self.delegation_program_id = delegation_program_id

    def _settle(self, status: DelegationStatus, result: str) -> DelegationStatus:
        self.state.set_status(status)
        if status != DelegationStatus.DELEGATED:
            self.state.set_rollup_value(None)
        status_checks_total.labels(result=result).inc()
        record_status(status)
        return status

    async def check(self, address: str) -> DelegationStatus:
        """
        Re-derives the status. Never raises: a failed read counts as undelegated.
        """
        self.state.set_status(DelegationStatus.CHECKING)
        record_status(DelegationStatus.CHECKING)

        try:
            owner = await self.base.fetch_raw_owner(address)
        except Exception as e:
            logger.warning(f"Delegation check for {address} failed, assuming undelegated: {e}")
            return self._settle(DelegationStatus.UNDELEGATED, "error")

        if owner is None:
            logger.debug(f"Counter {address} does not exist yet")
            return self._settle(DelegationStatus.UNDELEGATED, "absent")

        if owner != self.delegation_program_id:
            return self._settle(DelegationStatus.UNDELEGATED, "undelegated")

        self._settle(DelegationStatus.DELEGATED, "delegated")
        await self.refresh_rollup_value(address)
        return DelegationStatus.DELEGATED

    async def refresh_rollup_value(self, address: str) -> None:
        """Best effort: the account may be delegated but not yet replicated."""
        try:
            info = await self.rollup.get_account_info(address)
            if info is None:
                raise NotFound(f"Account does not exist: {address} (rollup)")
            account = CounterAccount.decode(info.data)
        except Exception as e:
            logger.debug(f"Couldn't fetch counter {address} from rollup: {e}")
            return
        # The status may have moved on while the read was in flight, and a
        # newer notification may already have landed
        if self.state.status == DelegationStatus.DELEGATED:
            self.state.set_rollup_value(account.count, slot=info.slot)
