# MIT License
# Copyright (c) 2025 Hashborn

"""
Dual Subscription Manager.

Owns at most one live subscription per ledger for the current address:
- base subscription  <=> an address is known
- rollup subscription <=> address known and status == delegated

Each subscription is consumed by its own task, so the two streams are
independent. Within a stream, events are handled one at a time: the status
re-check triggered by a base event completes before the next base event is
read.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Set

from ..ledger.rpc import LedgerClient
from ..ledger.subscription import AccountChange, SubscriptionLost
from ..protocol.types.account import CounterAccount
from ..protocol.types.common import DecodeError, DelegationStatus, Ledger
from ..observability.metrics import (
    subscription_events_total, subscription_losses_total, subscriptions_active,
)
from .delegation import DelegationTracker
from .state import CounterState

logger = logging.getLogger(__name__)

Handler = Callable[[AccountChange], Awaitable[None]]


class DualSubscriptionManager:
    def __init__(self, base: LedgerClient, rollup: LedgerClient,
                 tracker: DelegationTracker, state: CounterState,
                 reconnect_delay_sec: float = 2.0, max_reconnect_attempts: int = 5):
        self.clients: Dict[Ledger, LedgerClient] = {Ledger.BASE: base, Ledger.ROLLUP: rollup}
        self.tracker = tracker
        self.state = state
        self.reconnect_delay_sec = reconnect_delay_sec
        self.max_reconnect_attempts = max_reconnect_attempts

        self._tasks: Dict[Ledger, asyncio.Task] = {}
        self._stopping: Set[asyncio.Task] = set()
        self._check_lock = asyncio.Lock()
        self._checks_in_flight = 0

    # --- Introspection ---
    def is_active(self, ledger: Ledger) -> bool:
        task = self._tasks.get(ledger)
        return task is not None and not task.done()

    @property
    def address(self) -> Optional[str]:
        return self.state.address

    @property
    def checking(self) -> bool:
        """True while a status re-check is running or queued."""
        return self._checks_in_flight > 0

    # --- Lifecycle ---
    def bind(self, address: str) -> None:
        """Points the manager at a new address and starts the base subscription."""
        if address == self.state.address and self.is_active(Ledger.BASE):
            return
        self.unbind()
        self.state.address = address
        self._start(Ledger.BASE, address, self.handle_base_change)
        self.reconcile()

    def unbind(self) -> None:
        """Tears down both subscriptions. Safe when nothing was established."""
        self._stop(Ledger.ROLLUP)
        self._stop(Ledger.BASE)
        self.state.reset()

    async def close(self) -> None:
        self.unbind()
        pending = list(self._stopping)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def reconcile(self) -> None:
        """Starts or stops the rollup subscription to match the current status."""
        address = self.state.address
        want_rollup = address is not None and self.state.status == DelegationStatus.DELEGATED

        if want_rollup and not self.is_active(Ledger.ROLLUP):
            self._start(Ledger.ROLLUP, address, self.handle_rollup_change)
        elif not want_rollup and Ledger.ROLLUP in self._tasks:
            self._stop(Ledger.ROLLUP)
            self.state.set_rollup_value(None)

    async def refresh_status(self) -> DelegationStatus:
        """Runs a status check and reconciles. Checks for one address never overlap."""
        self._checks_in_flight += 1
        try:
            async with self._check_lock:
                address = self.state.address
                if address is None:
                    return self.state.status
                status = await self.tracker.check(address)
                if address == self.state.address:
                    self.reconcile()
                return status
        finally:
            self._checks_in_flight -= 1

    # --- Event handlers ---
    async def handle_base_change(self, event: AccountChange) -> None:
        try:
            self.state.set_account(CounterAccount.decode(event.info.data))
            self.state.set_error(None)
        except DecodeError as e:
            logger.error(f"Failed to decode base account data for {event.address}: {e}")
        # Ownership may have changed with the very transaction that produced this event
        await self.refresh_status()

    async def handle_rollup_change(self, event: AccountChange) -> None:
        try:
            account = CounterAccount.decode(event.info.data)
        except DecodeError as e:
            logger.error(f"Failed to decode rollup account data for {event.address}: {e}")
            return
        # A re-check in flight keeps the rollup stream; it clears the value if
        # the counter turns out to be undelegated
        if self.state.status in (DelegationStatus.DELEGATED, DelegationStatus.CHECKING):
            self.state.set_rollup_value(account.count, slot=event.info.slot)

    # --- Internals ---
    def _start(self, ledger: Ledger, address: str, handler: Handler) -> None:
        task = asyncio.get_running_loop().create_task(
            self._consume(ledger, address, handler),
            name=f"{ledger.value}-subscription-{address}",
        )
        self._tasks[ledger] = task
        logger.info(f"Started {ledger.value} subscription for {address}")

    def _stop(self, ledger: Ledger) -> None:
        task = self._tasks.pop(ledger, None)
        if task is None:
            return
        if not task.done():
            task.cancel()
            self._stopping.add(task)
            task.add_done_callback(self._stopping.discard)
        logger.info(f"Stopped {ledger.value} subscription")

    async def _consume(self, ledger: Ledger, address: str, handler: Handler) -> None:
        client = self.clients[ledger]
        attempts = 0

        while True:
            subscription = client.subscribe(address)
            subscriptions_active.labels(ledger=ledger.value).inc()
            lost: Optional[SubscriptionLost] = None
            try:
                async for event in subscription:
                    if isinstance(event, SubscriptionLost):
                        lost = event
                        break
                    attempts = 0
                    subscription_events_total.labels(ledger=ledger.value).inc()
                    try:
                        await handler(event)
                    except asyncio.CancelledError:
                        raise
                    except Exception as e:
                        logger.error(f"Error handling {ledger.value} change for {address}: {e}", exc_info=True)
            finally:
                subscriptions_active.labels(ledger=ledger.value).dec()
                await subscription.close()

            if lost is None:
                return

            subscription_losses_total.labels(ledger=ledger.value).inc()
            attempts += 1
            if attempts > self.max_reconnect_attempts:
                logger.error(f"Giving up on {ledger.value} subscription for {address}: {lost.reason}")
                return
            logger.warning(
                f"Lost {ledger.value} subscription for {address} ({lost.reason}); "
                f"reconnecting in {self.reconnect_delay_sec}s ({attempts}/{self.max_reconnect_attempts})"
            )
            await asyncio.sleep(self.reconnect_delay_sec)
