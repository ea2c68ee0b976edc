# MIT License
# Copyright (c) 2025 Hashborn

"""
Operation Dispatcher.

CounterEngine is the public surface: it owns one owner's address, state,
subscriptions and signer choice, and routes every operation to the ledger
that currently holds the counter.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Coroutine, Optional, Set

from ..ledger.rpc import LedgerClient, RpcError, TransportError
from ..protocol.config.params import ClusterConfig, COUNTER_PROGRAM_ID
from ..protocol.crypto.addresses import resolve_counter_address
from ..protocol.types.account import CounterAccount
from ..protocol.types.common import (
    DelegationStatus, Ledger, NotFound, NotReady, ProtocolError, Rejected, SubmissionError,
)
from ..protocol.types.program import (
    MethodSpec, INITIALIZE, INCREMENT, DECREMENT, SET, DELEGATE, COMMIT, UNDELEGATE,
)
from ..protocol.types.tx import Instruction, Transaction
from ..observability.metrics import operations_total, operation_duration_seconds, record_status
from .commitment import get_commitment_signature
from .delegation import DelegationTracker
from .events import EventBus, TRANSACTION_CONFIRMED
from .session import SessionKeyManager, SessionToken
from .signer import PrimarySigner, Signer, SignerArbiter
from .state import CounterState
from .subscriptions import DualSubscriptionManager
from .wallet import Wallet

logger = logging.getLogger(__name__)


class CounterEngine:
    def __init__(self,
                 config: ClusterConfig,
                 base: Optional[LedgerClient] = None,
                 rollup: Optional[LedgerClient] = None,
                 bus: Optional[EventBus] = None,
                 program_id: str = COUNTER_PROGRAM_ID):
        self.config = config
        self.program_id = program_id
        self.state = CounterState(bus)
        self.bus = self.state.bus

        self.base = base or LedgerClient.from_config(Ledger.BASE, config)
        self.rollup = rollup or LedgerClient.from_config(Ledger.ROLLUP, config)
        self.tracker = DelegationTracker(self.base, self.rollup, self.state)
        self.subscriptions = DualSubscriptionManager(
            self.base, self.rollup, self.tracker, self.state,
            reconnect_delay_sec=config.reconnect_delay_sec,
            max_reconnect_attempts=config.max_reconnect_attempts,
        )

        self.wallet: Optional[Wallet] = None
        self.sessions: Optional[SessionKeyManager] = None
        self.arbiter: Optional[SignerArbiter] = None
        self._pending: Set[asyncio.Task] = set()

    @property
    def address(self) -> Optional[str]:
        return self.state.address

    # ═══════════════════════════════════════════════════════════════════
    # LIFECYCLE
    # ═══════════════════════════════════════════════════════════════════

    async def connect(self, wallet: Wallet, sessions: Optional[SessionKeyManager] = None) -> str:
        """
        Binds the engine to an owner.

        Resolves the counter address, starts the base subscription and runs
        the first fetch and status check.
        """
        if self.wallet is not None and self.wallet.public_key == wallet.public_key:
            return self.state.address

        self.disconnect()
        address = resolve_counter_address(wallet.public_key, self.program_id)
        self.wallet = wallet
        self.sessions = sessions or SessionKeyManager(wallet.public_key, self.config.session_validity_sec)
        self.arbiter = SignerArbiter(wallet, self.sessions)
        self.subscriptions.bind(address)
        logger.info(f"Connected {wallet.public_key}, counter at {address}")

        try:
            await self.fetch_account()
        except ProtocolError as e:
            logger.warning(f"Initial fetch of {address} failed: {e}")
        await self.check_delegation()
        return address

    def disconnect(self):
        """Forgets the owner and tears down both subscriptions."""
        self.subscriptions.unbind()
        self.wallet = None
        self.sessions = None
        self.arbiter = None

    async def close(self):
        for task in list(self._pending):
            task.cancel()
        await self.wait_pending()
        self.wallet = self.sessions = self.arbiter = None
        await self.subscriptions.close()

    async def wait_pending(self):
        """Waits for scheduled background re-checks."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule(self, coro: Coroutine[Any, Any, Any]):
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _require_address(self) -> str:
        if self.state.address is None:
            raise NotReady("No counter address: wallet not connected")
        return self.state.address

    def _require_wallet(self) -> Wallet:
        if self.wallet is None:
            raise NotReady("Wallet not connected")
        return self.wallet

    def _require_delegated(self, action_name: str):
        if self.state.status != DelegationStatus.DELEGATED:
            raise NotReady(f"Cannot {action_name}: counter is {self.state.status.value}, not delegated")

    # ═══════════════════════════════════════════════════════════════════
    # READS
    # ═══════════════════════════════════════════════════════════════════

    async def fetch_account(self) -> Optional[CounterAccount]:
        """Fetches the base-ledger account. Absence is a normal state, not an error."""
        address = self._require_address()
        try:
            account = await self.base.fetch_account(address)
        except NotFound:
            logger.debug(f"Counter {address} not initialized yet")
            self.state.set_account(None)
            return None
        except ProtocolError as e:
            self.state.set_error(str(e))
            raise
        self.state.set_account(account)
        return account

    async def check_delegation(self) -> DelegationStatus:
        self._require_address()
        return await self.subscriptions.refresh_status()

    async def _refresh_account(self, address: str):
        """Best effort after a confirmed operation; never touches the error slot."""
        try:
            account = await self.base.fetch_account(address)
        except NotFound:
            account = None
        except ProtocolError as e:
            logger.warning(f"Refresh of {address} after operation failed: {e}")
            return
        if address == self.state.address:
            self.state.set_account(account)

    # ═══════════════════════════════════════════════════════════════════
    # PLUMBING
    # ═══════════════════════════════════════════════════════════════════

    @asynccontextmanager
    async def _operation(self, name: str, ledger: Ledger, failure_message: str):
        """Busy flag, error slot and metrics around one operation."""
        self.state.set_busy(True)
        self.state.set_error(None)
        start = time.monotonic()
        try:
            yield
        except NotFound:
            operations_total.labels(operation=name, ledger=ledger.value, outcome="not_found").inc()
            raise
        except Exception as e:
            outcome = "rejected" if isinstance(e, Rejected) else "failed"
            operations_total.labels(operation=name, ledger=ledger.value, outcome=outcome).inc()
            self.state.set_error(str(e) or failure_message)
            logger.error(f"{failure_message}: {e}")
            raise
        else:
            operations_total.labels(operation=name, ledger=ledger.value, outcome="ok").inc()
        finally:
            operation_duration_seconds.labels(operation=name).observe(time.monotonic() - start)
            self.state.set_busy(False)

    async def _send(self, name: str, client: LedgerClient, ix: Instruction, signer: Signer,
                    fee_payer: Optional[str] = None, skip_preflight: bool = False) -> str:
        """Builds against the target ledger's anchor, signs, submits and confirms."""
        try:
            anchor = await client.latest_anchor()
        except (TransportError, RpcError) as e:
            raise SubmissionError(f"Couldn't fetch recent blockhash from {client.ledger.value} ledger: {e}") from e

        tx = Transaction(
            fee_payer=fee_payer or signer.public_key,
            recent_blockhash=anchor.blockhash,
            instructions=[ix],
        )
        tx = await signer.sign(tx)
        signature = await client.submit(tx, skip_preflight=skip_preflight, anchor=anchor)
        self.bus.emit(TRANSACTION_CONFIRMED, operation=name, ledger=client.ledger, signature=signature)
        return signature

    async def _await_status(self, target: DelegationStatus) -> bool:
        """Re-checks until the status reaches `target` or the settle timeout elapses."""
        deadline = time.monotonic() + self.config.settle_timeout_sec
        while True:
            status = await self.subscriptions.refresh_status()
            if status == target:
                return True
            if time.monotonic() >= deadline:
                logger.warning(
                    f"Status still {status.value} after {self.config.settle_timeout_sec}s, "
                    f"expected {target.value}"
                )
                return False
            await asyncio.sleep(self.config.settle_poll_interval_sec)

    # ═══════════════════════════════════════════════════════════════════
    # BASE LEDGER OPERATIONS
    # ═══════════════════════════════════════════════════════════════════

    async def initialize(self) -> str:
        wallet = self._require_wallet()
        address = self._require_address()
        async with self._operation("initialize", Ledger.BASE, "Failed to initialize counter"):
            ix = INITIALIZE.instruction(program_id=self.program_id, authority=wallet.public_key)
            signature = await self._send("initialize", self.base, ix, PrimarySigner(wallet))
            await self._refresh_account(address)
            return signature

    async def _perform_base_action(self, method: MethodSpec, action_name: str, *args: Any) -> str:
        wallet = self._require_wallet()
        address = self._require_address()
        async with self._operation(action_name, Ledger.BASE, f"Failed to {action_name} counter"):
            ix = method.instruction(*args, program_id=self.program_id, counter=address, signer=wallet.public_key)
            signature = await self._send(action_name, self.base, ix, PrimarySigner(wallet))
            await self._refresh_account(address)
            return signature

    async def increment(self) -> str:
        return await self._perform_base_action(INCREMENT, "increment")

    async def decrement(self) -> str:
        return await self._perform_base_action(DECREMENT, "decrement")

    async def set(self, value: int) -> str:
        return await self._perform_base_action(SET, "set", value)

    # ═══════════════════════════════════════════════════════════════════
    # ROLLUP OPERATIONS
    # ═══════════════════════════════════════════════════════════════════

    async def _perform_rollup_action(self, method: MethodSpec, action_name: str, *args: Any) -> str:
        """
        Runs one counter method on the rollup ledger.

        Signed by the active session when there is one, otherwise by the
        wallet. Preflight is skipped: the rollup rejects bad transactions
        quickly anyway.
        """
        self._require_wallet()
        address = self._require_address()
        self._require_delegated(f"{action_name} on rollup")

        operation = f"{action_name}_on_rollup"
        async with self._operation(operation, Ledger.ROLLUP, f"Failed to {action_name} on rollup"):
            selection = self.arbiter.select_signer()
            ix = method.instruction(
                *args,
                program_id=self.program_id,
                counter=address,
                signer=selection.signer.public_key,
                session_token=selection.session_token,
            )
            signature = await self._send(
                operation, self.rollup, ix, selection.signer,
                fee_payer=selection.fee_payer, skip_preflight=True,
            )
            await self.tracker.refresh_rollup_value(address)
            return signature

    async def increment_on_rollup(self) -> str:
        return await self._perform_rollup_action(INCREMENT, "increment")

    async def decrement_on_rollup(self) -> str:
        return await self._perform_rollup_action(DECREMENT, "decrement")

    async def set_on_rollup(self, value: int) -> str:
        return await self._perform_rollup_action(SET, "set", value)

    # ═══════════════════════════════════════════════════════════════════
    # DELEGATION LIFECYCLE
    # ═══════════════════════════════════════════════════════════════════

    async def delegate(self) -> str:
        """
        Hands the counter to the delegation program on the base ledger.

        Returns once the status reads delegated or the settle timeout
        elapses; a timeout is not an error, the caller may re-check.
        """
        wallet = self._require_wallet()
        self._require_address()
        self.state.is_delegating = True
        try:
            async with self._operation("delegate", Ledger.BASE, "Failed to delegate counter"):
                ix = DELEGATE.instruction(
                    program_id=self.program_id,
                    payer=wallet.public_key,
                    validator=self.config.rollup_validator,
                )
                signature = await self._send("delegate", self.base, ix, PrimarySigner(wallet), skip_preflight=True)
                await self._await_status(DelegationStatus.DELEGATED)
                return signature
        finally:
            self.state.is_delegating = False

    async def commit(self) -> str:
        """Pushes the rollup value to the base ledger. The counter stays delegated."""
        wallet = self._require_wallet()
        address = self._require_address()
        self._require_delegated("commit")
        async with self._operation("commit", Ledger.ROLLUP, "Failed to commit counter"):
            ix = COMMIT.instruction(program_id=self.program_id, payer=wallet.public_key)
            signature = await self._send("commit", self.rollup, ix, PrimarySigner(wallet), skip_preflight=True)
            self.state.last_commitment_signature = await self._resolve_commitment(signature)
            await self._refresh_account(address)
            return signature

    async def _resolve_commitment(self, signature: str) -> Optional[str]:
        try:
            settled = await get_commitment_signature(self.rollup, signature)
        except Exception as e:
            # Local validators don't emit the scheduling logs
            logger.info(f"Commitment signature for {signature} unavailable: {e}")
            return None
        logger.info(f"Commit {signature} settled on base ledger as {settled}")
        return settled

    async def undelegate(self) -> str:
        """Commits and returns the counter to the base ledger."""
        wallet = self._require_wallet()
        address = self._require_address()
        self._require_delegated("undelegate")
        async with self._operation("undelegate", Ledger.ROLLUP, "Failed to undelegate counter"):
            ix = UNDELEGATE.instruction(program_id=self.program_id, payer=wallet.public_key)
            signature = await self._send("undelegate", self.rollup, ix, PrimarySigner(wallet), skip_preflight=True)
            settled = await self._await_status(DelegationStatus.UNDELEGATED)
            await self._refresh_account(address)

            # Optimistic: no awaits from here on, so the caller sees undelegated
            self.state.set_status(DelegationStatus.UNDELEGATED)
            self.state.set_rollup_value(None)
            record_status(DelegationStatus.UNDELEGATED)
            if address == self.state.address:
                self.subscriptions.reconcile()
                if not settled:
                    # Base ledger still lags; a later check corrects the forced status
                    self._schedule(self.subscriptions.refresh_status())
            return signature

    # ═══════════════════════════════════════════════════════════════════
    # SESSIONS
    # ═══════════════════════════════════════════════════════════════════

    async def create_session(self) -> SessionToken:
        self._require_wallet()
        if self.sessions.issuer is None:
            raise NotReady("No session issuer configured")
        async with self._operation("create_session", Ledger.BASE, "Failed to create session"):
            return await self.sessions.create_session(self.program_id)

    @property
    def session_token(self) -> Optional[SessionToken]:
        return self.sessions.session_token if self.sessions else None
